"""
Revision tracking for technical publications.

Values are compared in their normalised string form: dates as
`YYYY-MM-DD`, a missing comment as "". Entries are written best-effort
after the publication change has been committed.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...security import Principal
from ...utils.dates import iso_day
from . import models

logger = logging.getLogger(__name__)

TRACKED_FIELDS = (
    "revision_date",
    "manual_description",
    "revision_number",
    "owner",
    "comment",
)


def normalize(field: str, value) -> str:
    if field == "revision_date":
        return iso_day(value) or ""
    if value is None:
        return ""
    return str(value).strip()


def snapshot(values) -> dict:
    """Normalised tracked fields of a publication row or a plain mapping."""
    get = values.get if isinstance(values, dict) else lambda name: getattr(values, name, None)
    return {field: normalize(field, get(field)) for field in TRACKED_FIELDS}


def attachment_list(attachments) -> list:
    return [
        {"file_name": a.file_name, "file_size": a.file_size, "file_type": a.file_type}
        for a in attachments
    ]


def diff_fields(old: dict, new: dict) -> dict:
    return {
        field: {"old": old[field], "new": new[field]}
        for field in TRACKED_FIELDS
        if old.get(field) != new.get(field)
    }


def describe_change(changed_fields: dict, old_file: Optional[str], new_file: Optional[str]) -> str:
    parts = []
    if new_file:
        if old_file:
            parts.append(f'Attachment replaced: "{old_file}" → "{new_file}"')
        else:
            parts.append(f'Attachment added: "{new_file}"')
    if changed_fields:
        parts.append("Updated fields: " + ", ".join(changed_fields))
    return "; ".join(parts)


def record_revision(
    db: Session,
    principal: Principal,
    publication: models.TechnicalPublication,
    *,
    change_type: models.RevisionChangeType,
    change_description: str,
    changed_fields: Optional[dict],
    previous_values: Optional[dict],
    new_values: Optional[dict],
) -> Optional[models.TechnicalPublicationRevision]:
    try:
        revision = models.TechnicalPublicationRevision(
            company_id=principal.company_id,
            publication_id=publication.id,
            change_type=change_type,
            change_description=change_description,
            changed_fields=changed_fields,
            previous_values=previous_values,
            new_values=new_values,
            modified_by=principal.user_id,
        )
        db.add(revision)
        db.commit()
        return revision
    except Exception as exc:
        db.rollback()
        logger.warning(
            "Revision history write failed",
            extra={"publication_id": publication.id, "change_type": change_type.value, "error": str(exc)},
        )
        return None

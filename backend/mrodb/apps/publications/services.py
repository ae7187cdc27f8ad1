from __future__ import annotations

import logging
import os
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ...errors import ExternalServiceError, ValidationError, require_fields
from ...scoping import ListParams, get_scoped, paginate, scoped_query
from ...security import Principal, require_admin
from ...utils.dates import at_utc_noon, parse_date
from ..activity.models import ActivityAction
from ..activity.services import RequestInfo, log_activity
from ..storage import service as attachments
from ..storage.backends import StorageBackend
from ..storage.service import IncomingFile
from . import models, revisions, schemas

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = int(os.getenv("TECH_PUB_MAX_UPLOAD_BYTES", str(50 * attachments.MB)) or "0")

RESOURCE = "Technical publication"


def _validated(payload: schemas.PublicationInput) -> dict:
    require_fields(
        {
            "revision_date": payload.revision_date,
            "manual_description": payload.manual_description,
            "revision_number": payload.revision_number,
            "owner": payload.owner,
        }
    )
    day = parse_date(payload.revision_date)
    if day is None:
        raise ValidationError("revision_date must be a date (YYYY-MM-DD)", field="revision_date")
    return {
        "revision_date": at_utc_noon(day),
        "manual_description": payload.manual_description.strip(),
        "revision_number": payload.revision_number.strip(),
        "owner": payload.owner.strip(),
        "comment": (payload.comment or "").strip() or None,
    }


def create_publication(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    payload: schemas.PublicationInput,
    file: Optional[IncomingFile],
    request_info: Optional[RequestInfo] = None,
) -> models.TechnicalPublication:
    require_admin(principal)
    values = _validated(payload)
    if file is None:
        raise ValidationError("file is required", field="file")
    attachments.enforce_size_limit([file], MAX_FILE_BYTES)

    publication = models.TechnicalPublication(
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        **values,
    )
    db.add(publication)
    db.commit()
    db.refresh(publication)

    attachments.store_attachments(
        db,
        storage,
        publication,
        model=models.TechnicalPublicationAttachment,
        parent_field="publication_id",
        folder=attachments.TECHNICAL_PUBLICATIONS_FOLDER,
        company_id=principal.company_id,
        uploaded_by=principal.user_id,
        files=[file],
    )
    db.refresh(publication)

    revisions.record_revision(
        db,
        principal,
        publication,
        change_type=models.RevisionChangeType.CREATED,
        change_description="Technical publication created",
        changed_fields=None,
        previous_values=None,
        new_values={
            **revisions.snapshot(publication),
            "attachments": revisions.attachment_list(publication.attachments),
        },
    )
    log_activity(
        db,
        principal,
        action=ActivityAction.ADDED_TECHNICAL_PUBLICATION,
        resource_type="technical_publication",
        resource_id=publication.id,
        resource_title=publication.manual_description,
        metadata={
            "revision_number": publication.revision_number,
            "owner": publication.owner,
            "file_name": file.file_name,
        },
        request_info=request_info,
    )
    return publication


def update_publication(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    publication_id: str,
    payload: schemas.PublicationInput,
    file: Optional[IncomingFile] = None,
    request_info: Optional[RequestInfo] = None,
) -> Tuple[models.TechnicalPublication, dict]:
    """
    Apply an edit and record what changed.

    Nothing is written (no revision, no activity) when the payload matches
    the stored values and no file was supplied.
    """
    require_admin(principal)
    values = _validated(payload)
    if file is not None:
        attachments.enforce_size_limit([file], MAX_FILE_BYTES)

    publication = get_scoped(db, principal, models.TechnicalPublication, publication_id, resource=RESOURCE)

    old_attachments = list(publication.attachments)
    previous = revisions.snapshot(publication)
    changed_fields = revisions.diff_fields(previous, revisions.snapshot(values))
    if not changed_fields and file is None:
        return publication, {}

    previous_values = {**previous, "attachments": revisions.attachment_list(old_attachments)}
    old_file_name = old_attachments[0].file_name if old_attachments else None

    stored = []
    if file is not None:
        # Old blobs and rows go before the new file is stored; a failed upload
        # leaves the publication without an attachment and its fields untouched.
        attachments.delete_blobs(storage, [a.file_key for a in old_attachments])
        for attachment in old_attachments:
            publication.attachments.remove(attachment)
        db.flush()
        try:
            stored = attachments.upload_files(
                storage,
                folder=attachments.TECHNICAL_PUBLICATIONS_FOLDER,
                company_id=principal.company_id,
                parent_id=publication.id,
                files=[file],
            )
        except ExternalServiceError:
            db.commit()
            raise

    for field, value in values.items():
        setattr(publication, field, value)

    if stored:
        publication.attachments.extend(
            attachments.attachment_rows(
                models.TechnicalPublicationAttachment,
                "publication_id",
                company_id=principal.company_id,
                parent_id=publication.id,
                uploaded_by=principal.user_id,
                stored=stored,
            )
        )

    try:
        db.commit()
    except Exception:
        db.rollback()
        attachments.delete_blobs(storage, [key for _, key in stored])
        raise
    db.refresh(publication)

    if stored:
        changed_fields["attachment"] = {"old": old_file_name, "new": file.file_name}

    revisions.record_revision(
        db,
        principal,
        publication,
        change_type=(
            models.RevisionChangeType.ATTACHMENT_REPLACED if stored else models.RevisionChangeType.UPDATED
        ),
        change_description=revisions.describe_change(
            {k: v for k, v in changed_fields.items() if k != "attachment"},
            old_file_name,
            file.file_name if stored else None,
        ),
        changed_fields=changed_fields,
        previous_values=previous_values,
        new_values={
            **revisions.snapshot(publication),
            "attachments": revisions.attachment_list(publication.attachments),
        },
    )

    metadata = {"changed_fields": sorted(changed_fields)}
    if stored:
        metadata["attachment_file_name"] = file.file_name
        metadata["attachment_action"] = "REPLACED" if old_attachments else "ADDED"
    log_activity(
        db,
        principal,
        action=ActivityAction.UPDATED_TECHNICAL_PUBLICATION,
        resource_type="technical_publication",
        resource_id=publication.id,
        resource_title=publication.manual_description,
        metadata=metadata,
        request_info=request_info,
    )
    return publication, changed_fields


def delete_publication(
    db: Session,
    storage: StorageBackend,
    principal: Principal,
    publication_id: str,
    request_info: Optional[RequestInfo] = None,
) -> List[dict]:
    require_admin(principal)
    publication = get_scoped(db, principal, models.TechnicalPublication, publication_id, resource=RESOURCE)

    file_results = attachments.delete_blobs(storage, [a.file_key for a in publication.attachments])

    title = publication.manual_description
    for attachment in list(publication.attachments):
        db.delete(attachment)
    db.delete(publication)
    db.commit()

    log_activity(
        db,
        principal,
        action=ActivityAction.DELETED_TECHNICAL_PUBLICATION,
        resource_type="technical_publication",
        resource_id=publication_id,
        resource_title=title,
        metadata={"file_results": file_results},
        request_info=request_info,
    )
    return file_results


def list_publications(
    db: Session,
    principal: Principal,
    *,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    TP = models.TechnicalPublication
    params = ListParams(
        search=search,
        search_fields=(TP.manual_description, TP.owner, TP.revision_number),
        date_field=TP.revision_date,
        start=start_date,
        end=end_date,
    )
    return paginate(scoped_query(db, principal, TP, params), TP.revision_date, TP.id, page, limit)


def get_publication(db: Session, principal: Principal, publication_id: str) -> models.TechnicalPublication:
    return get_scoped(db, principal, models.TechnicalPublication, publication_id, resource=RESOURCE)


def list_revisions(db: Session, principal: Principal, publication_id: str) -> List[models.TechnicalPublicationRevision]:
    get_publication(db, principal, publication_id)
    Rev = models.TechnicalPublicationRevision
    return (
        db.query(Rev)
        .filter(Rev.company_id == principal.company_id, Rev.publication_id == publication_id)
        .order_by(Rev.modified_at.desc(), Rev.id.desc())
        .all()
    )


def get_attachment(db: Session, principal: Principal, attachment_id: str) -> models.TechnicalPublicationAttachment:
    return get_scoped(db, principal, models.TechnicalPublicationAttachment, attachment_id, resource="Attachment")

"""
Attachment lifecycle: bind blobs in object storage to attachment rows.

Rules the resource services rely on:
- Keys are `{folder}/{company_id}/{parent_id}/{timestamp_ms}-{sanitized}`,
  so storage is partitioned by tenant the same way the tables are.
- Size limits are checked before any byte is uploaded.
- Uploads happen after the parent row exists; a failed upload removes
  whatever was already stored and raises ExternalServiceError so the
  caller can delete the parent.
- Blob deletes are best-effort per key and report `{file_key, success,
  error}` for each one.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from fastapi import UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...errors import ExternalServiceError, NotFound, ValidationError
from .backends import StorageBackend

logger = logging.getLogger(__name__)

MB = 1024 * 1024

FLIGHT_RECORDS_FOLDER = "flight-records"
TECHNICAL_PUBLICATIONS_FOLDER = "technical-publications"
SMS_REPORTS_FOLDER = "sms-reports"
AUDITS_FOLDER = "audits"
STOCK_INVENTORY_FOLDER = "stock-inventory"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass(frozen=True)
class IncomingFile:
    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_upload(cls, upload: UploadFile) -> "IncomingFile":
        upload.file.seek(0)
        data = upload.file.read()
        return cls(
            file_name=upload.filename or "file",
            content_type=upload.content_type or "application/octet-stream",
            data=data,
        )


def incoming_files(uploads: Optional[Iterable[UploadFile]]) -> List[IncomingFile]:
    """Convert multipart uploads, skipping empty file inputs."""
    files = []
    for upload in uploads or []:
        if upload is None or not upload.filename:
            continue
        files.append(IncomingFile.from_upload(upload))
    return files


def sanitize_file_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name or "file")


def build_file_key(folder: str, company_id: str, parent_id: str, file_name: str,
                   timestamp_ms: Optional[int] = None) -> str:
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{folder}/{company_id}/{parent_id}/{ts}-{sanitize_file_name(file_name)}"


def _format_mb(limit_bytes: int) -> str:
    return f"{limit_bytes // MB}MB"


def enforce_size_limit(files: Sequence[IncomingFile], max_bytes: int, *, aggregate: bool = False,
                       field: str = "file") -> None:
    if not max_bytes:
        return
    if aggregate:
        total = sum(f.size for f in files)
        if total > max_bytes:
            raise ValidationError(
                f"Total upload size ({total / MB:.2f}MB) exceeds the {_format_mb(max_bytes)} limit",
                field=field,
            )
        return
    for f in files:
        if f.size > max_bytes:
            raise ValidationError(
                f"File {f.file_name} exceeds {_format_mb(max_bytes)} limit",
                field=field,
            )


def upload_files(
    storage: StorageBackend,
    *,
    folder: str,
    company_id: str,
    parent_id: str,
    files: Sequence[IncomingFile],
) -> List[Tuple[IncomingFile, str]]:
    """Upload every file or none: on failure the keys already stored are removed."""
    stored: List[Tuple[IncomingFile, str]] = []
    for incoming in files:
        key = build_file_key(folder, company_id, parent_id, incoming.file_name)
        try:
            storage.upload(incoming.data, key, incoming.content_type)
        except Exception as exc:
            logger.error(
                "Attachment upload failed",
                extra={"file_key": key, "parent_id": parent_id, "error": str(exc)},
            )
            delete_blobs(storage, [k for _, k in stored])
            raise ExternalServiceError("Failed to upload file", details=str(exc)) from exc
        stored.append((incoming, key))
    return stored


def delete_blobs(storage: StorageBackend, keys: Iterable[str]) -> List[dict]:
    results = []
    for key in keys:
        if not key:
            continue
        try:
            storage.delete(key)
            results.append({"file_key": key, "success": True, "error": None})
        except Exception as exc:
            logger.warning("Blob delete failed", extra={"file_key": key, "error": str(exc)})
            results.append({"file_key": key, "success": False, "error": str(exc)})
    return results


def download(storage: StorageBackend, key: str) -> Optional[bytes]:
    try:
        return storage.download(key)
    except Exception as exc:
        raise ExternalServiceError("Failed to download file", details=str(exc)) from exc


def discard_parent(db: Session, parent) -> None:
    """Compensating delete for a parent row whose attachments never made it to storage."""
    try:
        db.delete(parent)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error(
            "Compensating delete failed",
            extra={"parent": repr(parent), "error": str(exc)},
        )
        raise


def file_response(data: bytes, file_name: str, content_type: Optional[str] = None):
    safe_name = sanitize_file_name(file_name)
    return Response(
        content=data,
        media_type=content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{safe_name}"'},
    )


def attachment_download(storage: StorageBackend, attachment):
    data = download(storage, attachment.file_key)
    if data is None:
        raise NotFound("File")
    return file_response(data, attachment.file_name, attachment.file_type)


def attachment_rows(model, parent_field: str, *, company_id: str, parent_id: str,
                    uploaded_by: Optional[str], stored) -> list:
    """Build attachment rows of `model` for `(IncomingFile, key)` pairs from upload_files."""
    return [
        model(
            company_id=company_id,
            file_name=incoming.file_name,
            file_key=key,
            file_size=incoming.size,
            file_type=incoming.content_type,
            uploaded_by=uploaded_by,
            **{parent_field: parent_id},
        )
        for incoming, key in stored
    ]


def store_attachments(
    db: Session,
    storage: StorageBackend,
    parent,
    *,
    model,
    parent_field: str,
    folder: str,
    company_id: str,
    uploaded_by: Optional[str],
    files: Sequence[IncomingFile],
    discard_on_failure: bool = True,
) -> list:
    """
    Upload `files` for an already committed `parent` and record them.

    If the upload or the attachment insert fails, stored blobs are removed
    and, with `discard_on_failure`, the parent row is deleted before the
    error propagates.
    """
    if not files:
        return []
    try:
        stored = upload_files(storage, folder=folder, company_id=company_id, parent_id=parent.id, files=files)
    except ExternalServiceError:
        if discard_on_failure:
            discard_parent(db, parent)
        raise

    rows = attachment_rows(
        model, parent_field, company_id=company_id, parent_id=parent.id, uploaded_by=uploaded_by, stored=stored
    )
    try:
        db.add_all(rows)
        db.commit()
    except Exception:
        db.rollback()
        delete_blobs(storage, [key for _, key in stored])
        if discard_on_failure:
            discard_parent(db, parent)
        raise
    return rows

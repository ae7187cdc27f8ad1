from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.orm import Session

from ...database import get_db, get_read_db
from ...schemas import envelope, page_envelope
from ...security import Principal, get_current_principal
from ..activity.services import RequestInfo
from ..storage import service as attachments
from ..storage.backends import StorageBackend, get_storage
from ..storage.schemas import FileDeleteResult
from . import schemas, services

router = APIRouter(prefix="/technical-publications", tags=["technical-publications"])


def _form_payload(
    revision_date: Optional[str] = Form(default=None),
    manual_description: Optional[str] = Form(default=None),
    revision_number: Optional[str] = Form(default=None),
    owner: Optional[str] = Form(default=None),
    comment: Optional[str] = Form(default=None),
) -> schemas.PublicationInput:
    return schemas.PublicationInput(
        revision_date=revision_date,
        manual_description=manual_description,
        revision_number=revision_number,
        owner=owner,
        comment=comment,
    )


@router.get("")
def list_publications(
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    result = services.list_publications(
        db, principal, search=search, start_date=start_date, end_date=end_date, page=page, limit=limit
    )
    return page_envelope(result, schemas.PublicationRead)


@router.post("", status_code=201)
def create_publication(
    request: Request,
    payload: schemas.PublicationInput = Depends(_form_payload),
    file: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    incoming = attachments.incoming_files([file] if file is not None else [])
    publication = services.create_publication(
        db,
        storage,
        principal,
        payload,
        incoming[0] if incoming else None,
        request_info=RequestInfo.from_request(request),
    )
    return envelope(schemas.PublicationRead.model_validate(publication), message="Technical publication created")


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: str,
    db: Session = Depends(get_read_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    attachment = services.get_attachment(db, principal, attachment_id)
    return attachments.attachment_download(storage, attachment)


@router.get("/{publication_id}")
def get_publication(
    publication_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    publication = services.get_publication(db, principal, publication_id)
    return envelope(schemas.PublicationRead.model_validate(publication))


@router.put("/{publication_id}")
def update_publication(
    publication_id: str,
    request: Request,
    payload: schemas.PublicationInput = Depends(_form_payload),
    file: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    incoming = attachments.incoming_files([file] if file is not None else [])
    publication, changed_fields = services.update_publication(
        db,
        storage,
        principal,
        publication_id,
        payload,
        incoming[0] if incoming else None,
        request_info=RequestInfo.from_request(request),
    )
    return envelope(
        schemas.PublicationRead.model_validate(publication),
        message="Technical publication updated" if changed_fields else "No changes detected",
    )


@router.delete("/{publication_id}")
def delete_publication(
    publication_id: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    results = services.delete_publication(
        db, storage, principal, publication_id, request_info=RequestInfo.from_request(request)
    )
    return envelope(
        None,
        message="Technical publication deleted",
        file_results=[FileDeleteResult(**r) for r in results],
    )


@router.get("/{publication_id}/revisions")
def list_revisions(
    publication_id: str,
    db: Session = Depends(get_read_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = services.list_revisions(db, principal, publication_id)
    return envelope([schemas.RevisionRead.model_validate(r) for r in rows])

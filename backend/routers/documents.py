# routers/documents.py — Client document store with folders and version groups
# - Folders are upserted on their natural key
# - Re-uploading a file name into the same folder starts the next version
# - Blobs live on local disk (see storage.py); rows never outlive a failed upload
import os
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse
from pydantic import Field
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import storage
from auth import CallerContext, CA_ROLES, require_capability
from database import get_db_session
from errors import Conflict, NotFound, ValidationError
from logging_system import add_audit
from models import (
    Document, DocumentFolder, DocumentStatus, NotificationType, AuditEventType,
)
from routers.notifications import notify
from schemas import CamelModel, iso, enum_value
from tenancy import (
    scoped, effective_client_id, find_or_create,
    require_client_in_scope, require_document_in_scope, require_folder_in_scope,
)

logger = logging.getLogger("ca-portal.documents")

router = APIRouter(prefix="/api/documents", tags=["Documents"])

documents_access = require_capability("can_access_documents")
documents_manage = require_capability("can_access_documents", *CA_ROLES)

VERSION_INSERT_ATTEMPTS = 3


# ============================================================
# SCHEMAS
# ============================================================

class FolderCreate(CamelModel):
    client_id: str
    financial_year: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    parent_folder_id: Optional[str] = None


class DocumentStatusUpdate(CamelModel):
    status: str


# ============================================================
# HELPERS
# ============================================================

def _folder_out(f: DocumentFolder, document_count: int = 0, subfolder_count: int = 0) -> dict:
    return {
        "id": f.id,
        "firmId": f.firm_id,
        "clientId": f.client_id,
        "financialYear": f.financial_year,
        "name": f.name,
        "parentFolderId": f.parent_folder_id,
        "createdAt": iso(f.created_at),
        "documentCount": document_count,
        "subfolderCount": subfolder_count,
    }


def document_out(d: Document, uploader_name: Optional[str] = None) -> dict:
    if uploader_name is None and "uploader" in d.__dict__ and d.uploader is not None:
        uploader_name = d.uploader.name
    return {
        "id": d.id,
        "folderId": d.folder_id,
        "firmId": d.firm_id,
        "clientId": d.client_id,
        "fileName": d.file_name,
        "mimeType": d.mime_type,
        "size": d.size or 0,
        "versionGroupId": d.version_group_id,
        "versionNumber": d.version_number,
        "status": enum_value(d.status),
        "uploadedById": d.uploaded_by_id,
        "uploader": {"id": d.uploaded_by_id, "name": uploader_name},
        "uploadedAt": iso(d.uploaded_at),
    }


def _parse_document_status(value: str) -> DocumentStatus:
    try:
        return DocumentStatus(value.upper())
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def _clean_file_name(name: Optional[str]) -> str:
    name = os.path.basename((name or "").replace("\\", "/")).strip()
    return name or "upload"


async def _insert_next_version(db: AsyncSession, make_document) -> Document:
    """Insert a document as the next version for its (folder, file name).

    The (folder_id, file_name, version_number) constraint turns a concurrent
    upload of the same name into a retry with a fresh read of the latest row,
    including when neither upload has a prior version to join.
    """
    for attempt in range(VERSION_INSERT_ATTEMPTS):
        doc = make_document()
        latest = (await db.execute(
            select(Document)
            .where(Document.folder_id == doc.folder_id, Document.file_name == doc.file_name)
            .order_by(Document.version_number.desc())
            .limit(1)
        )).scalar_one_or_none()
        if latest is not None:
            doc.version_group_id = latest.version_group_id
            doc.version_number = latest.version_number + 1
        else:
            doc.version_group_id = str(uuid.uuid4())
            doc.version_number = 1
        try:
            async with db.begin_nested():
                db.add(doc)
            return doc
        except IntegrityError:
            logger.info(f"Version clash on {doc.file_name} (attempt {attempt + 1}), retrying")
    raise Conflict("Could not allocate a document version, please retry")


# ============================================================
# FOLDERS
# ============================================================

@router.get("/folders")
async def list_folders(
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    financial_year: Optional[str] = Query(default=None, alias="financialYear"),
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = scoped(select(DocumentFolder), DocumentFolder, caller, client_id)
    if financial_year:
        stmt = stmt.where(DocumentFolder.financial_year == financial_year)
    stmt = stmt.order_by(DocumentFolder.financial_year.desc(), DocumentFolder.name.asc())
    folders = (await db.execute(stmt)).scalars().all()
    if not folders:
        return []

    folder_ids = [f.id for f in folders]
    doc_counts = dict((await db.execute(
        select(Document.folder_id, func.count(Document.id))
        .where(Document.folder_id.in_(folder_ids))
        .group_by(Document.folder_id)
    )).all())
    sub_counts = dict((await db.execute(
        select(DocumentFolder.parent_folder_id, func.count(DocumentFolder.id))
        .where(DocumentFolder.parent_folder_id.in_(folder_ids))
        .group_by(DocumentFolder.parent_folder_id)
    )).all())

    return [_folder_out(f, doc_counts.get(f.id, 0), sub_counts.get(f.id, 0)) for f in folders]


@router.post("/folders", status_code=201)
async def create_folder(
    data: FolderCreate,
    response: Response,
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    """Find-or-create a folder; 201 when created, 200 when it already existed"""
    client_id = effective_client_id(caller, data.client_id)
    client = await require_client_in_scope(db, caller, client_id)

    parent_folder_id = data.parent_folder_id or None
    if parent_folder_id:
        parent = await require_folder_in_scope(db, caller, parent_folder_id)
        if parent.client_id != client.id:
            raise NotFound("Folder not found")

    key = DocumentFolder.build_natural_key(
        caller.firm_id, client.id, data.financial_year, data.name, parent_folder_id
    )
    folder, created = await find_or_create(
        db, DocumentFolder, DocumentFolder.natural_key, key,
        lambda: DocumentFolder(
            firm_id=caller.firm_id,
            client_id=client.id,
            financial_year=data.financial_year,
            name=data.name,
            parent_folder_id=parent_folder_id,
            natural_key=key,
        ),
    )
    if not created:
        response.status_code = 200
    return _folder_out(folder)


# ============================================================
# DOCUMENTS
# ============================================================

@router.get("")
async def list_documents(
    folder_id: Optional[str] = Query(default=None, alias="folderId"),
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = scoped(select(Document), Document, caller, client_id)
    if folder_id:
        stmt = stmt.where(Document.folder_id == folder_id)
    stmt = stmt.options(selectinload(Document.uploader)).order_by(
        Document.uploaded_at.desc(), Document.version_number.desc()
    )
    result = await db.execute(stmt)
    return [document_out(d) for d in result.scalars().all()]


@router.post("", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    folder_id: str = Form(..., alias="folderId"),
    client_id: str = Form(..., alias="clientId"),
    status: Optional[str] = Form(default=None),
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    """Upload a file into a folder; same name in the same folder becomes a new version"""
    client = await require_client_in_scope(db, caller, client_id)
    folder = await require_folder_in_scope(db, caller, folder_id)
    if folder.client_id != client.id:
        raise NotFound("Folder not found")
    doc_status = _parse_document_status(status) if status else DocumentStatus.UPLOADED

    file_name = _clean_file_name(file.filename)
    stored = await storage.save_upload(file)
    try:
        doc = await _insert_next_version(db, lambda: Document(
            folder_id=folder.id,
            firm_id=caller.firm_id,
            client_id=client.id,
            file_name=file_name,
            mime_type=file.content_type or "application/octet-stream",
            size=stored.size,
            storage_path=stored.storage_name,
            status=doc_status,
            uploaded_by_id=caller.id,
        ))

        if caller.is_ca:
            notify(db, client.primary_user_id, NotificationType.DOCUMENT_UPLOADED, {
                "documentId": doc.id,
                "clientId": client.id,
                "fileName": file_name,
                "versionNumber": doc.version_number,
            })
        add_audit(
            db, AuditEventType.DOCUMENT_UPLOADED, caller.id, caller.firm_id, "document", doc.id,
            {"fileName": file_name, "versionNumber": doc.version_number, "size": stored.size},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        storage.remove_stored(stored.storage_name)
        raise

    return document_out(doc, uploader_name=caller.name)


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await require_document_in_scope(db, caller, document_id)
    if not storage.exists(doc.storage_path):
        logger.warning(f"Blob missing for document {doc.id}")
        raise NotFound("File not found")
    return FileResponse(
        storage.resolve_path(doc.storage_path),
        media_type=doc.mime_type,
        filename=doc.file_name,
    )


@router.get("/{document_id}/versions")
async def list_versions(
    document_id: str,
    caller: CallerContext = Depends(documents_access),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await require_document_in_scope(db, caller, document_id)
    stmt = scoped(
        select(Document).where(Document.version_group_id == doc.version_group_id),
        Document, caller,
    )
    stmt = stmt.options(selectinload(Document.uploader)).order_by(Document.version_number.desc())
    result = await db.execute(stmt)
    return [document_out(d) for d in result.scalars().all()]


@router.patch("/{document_id}/status")
async def update_document_status(
    document_id: str,
    data: DocumentStatusUpdate,
    caller: CallerContext = Depends(documents_manage),
    db: AsyncSession = Depends(get_db_session),
):
    new_status = _parse_document_status(data.status)
    doc = await require_document_in_scope(db, caller, document_id)
    previous = doc.status
    doc.status = new_status
    add_audit(
        db, AuditEventType.DOCUMENT_STATUS_CHANGED, caller.id, caller.firm_id, "document", doc.id,
        {"from": enum_value(previous), "to": new_status.value},
    )
    await db.commit()
    return {"message": "Status updated", "status": new_status.value}


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    caller: CallerContext = Depends(documents_manage),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await require_document_in_scope(db, caller, document_id)
    storage_name = doc.storage_path
    await db.delete(doc)
    add_audit(
        db, AuditEventType.DOCUMENT_DELETED, caller.id, caller.firm_id, "document", document_id,
        {"fileName": doc.file_name},
    )
    await db.commit()
    storage.remove_stored(storage_name)
    return Response(status_code=204)

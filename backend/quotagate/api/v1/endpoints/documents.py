import uuid
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status, UploadFile, File, Form
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core.config import settings
from quotagate.models.user import User
from quotagate.schemas.document import Document, DocumentShare, DocumentUpdate
from quotagate.core.dependencies import get_current_user
from quotagate.database import get_db
from quotagate.services import document_service
from quotagate.services.document_service import UploadedFile
from quotagate.storage.blob_store import LocalBlobStore, get_blob_store

router = APIRouter()

async def _read_upload(file: UploadFile) -> UploadedFile:
    # Read one byte past the cap so oversized uploads are detected without buffering them whole.
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit",
        )
    return UploadedFile(
        original_file_name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        data=data,
    )

@router.get("/", response_model=List[Document])
async def list_documents(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await document_service.list_documents(db, current_user)

@router.get("/search", response_model=List[Document])
async def search_documents(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Search titles and descriptions. Requires the advanced_search feature.
    """
    return await document_service.search_documents(db, current_user, q)

@router.get("/{document_id}", response_model=Document)
async def read_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await document_service.get_document(db, current_user, document_id)

@router.get("/{document_id}/download")
async def download_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    current_user: User = Depends(get_current_user)
):
    document, data = await document_service.download_document(db, blob_store, current_user, document_id)
    return Response(
        content=data,
        media_type=document.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{document.original_file_name}"'},
    )

@router.post("/", response_model=Document, status_code=status.HTTP_201_CREATED)
async def upload_document(
    title: str = Form(...),
    description: str = Form(""),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    current_user: User = Depends(get_current_user)
):
    """
    Upload a new document. Counts one document and the file size against the plan's limits.
    """
    upload = await _read_upload(file)
    return await document_service.upload_document(db, blob_store, current_user, title, description, upload)

@router.put("/{document_id}", response_model=Document)
async def update_document(
    document_id: uuid.UUID,
    document_in: DocumentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await document_service.update_document(
        db, current_user, document_id, document_in.title, document_in.description
    )

@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    current_user: User = Depends(get_current_user)
):
    await document_service.delete_document(db, blob_store, current_user, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/{document_id}/share", response_model=Document)
async def share_document(
    document_id: uuid.UUID,
    share_in: DocumentShare,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Share a document with other members of the organization. Requires the sharing feature.
    """
    return await document_service.share_document(db, current_user, document_id, share_in.user_ids)

@router.post("/{document_id}/versions", response_model=Document, status_code=status.HTTP_201_CREATED)
async def upload_document_version(
    document_id: uuid.UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    current_user: User = Depends(get_current_user)
):
    """
    Upload a new version of a document. Requires the versioning feature and counts like an upload.
    """
    upload = await _read_upload(file)
    return await document_service.upload_version(db, blob_store, current_user, document_id, upload)

@router.delete("/{document_id}/versions/{version_number}", response_model=Document)
async def delete_document_version(
    document_id: uuid.UUID,
    version_number: int,
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    current_user: User = Depends(get_current_user)
):
    return await document_service.delete_version(db, blob_store, current_user, document_id, version_number)

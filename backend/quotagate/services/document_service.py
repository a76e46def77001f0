"""
Document operations, each run through the enforcement pipeline.

Uploads consume one `documents` unit and the file size in `storage` bytes;
deletions release what the removed versions consumed.
"""
import uuid
from dataclasses import dataclass
from typing import List

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from quotagate.core.exceptions import DocumentNotFoundError, InvalidDocumentOperationError
from quotagate.core.logging import get_logger
from quotagate.models.document import Document, DocumentVersion
from quotagate.models.plan import FEATURE_ADVANCED_SEARCH, FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING
from quotagate.models.usage_record import METRIC_DOCUMENTS, METRIC_STORAGE
from quotagate.models.user import User
from quotagate.services import enforcement
from quotagate.storage.blob_store import LocalBlobStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    original_file_name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def usage(self) -> dict[str, int]:
        return {METRIC_DOCUMENTS: 1, METRIC_STORAGE: self.size}


async def _get_document(db: AsyncSession, document_id: uuid.UUID, organization_id: uuid.UUID) -> Document:
    result = await db.execute(
        select(Document).filter(Document.id == document_id, Document.organization_id == organization_id)
    )
    document = result.scalars().first()
    if document is None:
        raise DocumentNotFoundError(document_id)
    return document


async def list_documents(db: AsyncSession, user: User) -> List[Document]:
    await enforcement.enforce(db, user.organization_id, FEATURE_DOC_CRUD)
    result = await db.execute(
        select(Document)
        .filter(Document.organization_id == user.organization_id)
        .order_by(Document.created_at.desc())
    )
    return result.scalars().all()


async def get_document(db: AsyncSession, user: User, document_id: uuid.UUID) -> Document:
    await enforcement.enforce(db, user.organization_id, FEATURE_DOC_CRUD)
    return await _get_document(db, document_id, user.organization_id)


async def download_document(
    db: AsyncSession, blob_store: LocalBlobStore, user: User, document_id: uuid.UUID
) -> tuple[Document, bytes]:
    document = await get_document(db, user, document_id)
    return document, await blob_store.get(document.file_name)


async def upload_document(
    db: AsyncSession,
    blob_store: LocalBlobStore,
    user: User,
    title: str,
    description: str,
    upload: UploadedFile,
) -> Document:
    """
    Create a document with its first version, counting it against the
    organization's document and storage limits.
    """
    async def persist() -> Document:
        key = blob_store.new_key(upload.original_file_name)
        await blob_store.put(key, upload.data)
        document = Document(
            organization_id=user.organization_id,
            uploaded_by=user.id,
            title=title,
            description=description or "",
            file_name=key,
            original_file_name=upload.original_file_name,
            file_size=upload.size,
            mime_type=upload.mime_type,
            shared_with=[],
            current_version=1,
            versions=[
                DocumentVersion(
                    version_number=1,
                    file_name=key,
                    original_file_name=upload.original_file_name,
                    file_size=upload.size,
                    uploaded_by=user.id,
                )
            ],
        )
        db.add(document)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            await blob_store.delete(key)
            raise
        await db.refresh(document)
        logger.info(
            "document_uploaded",
            organization_id=str(user.organization_id),
            document_id=str(document.id),
            file_size=upload.size,
        )
        return document

    return await enforcement.run_enforced(
        db, user.organization_id, FEATURE_DOC_CRUD, upload.usage(), persist
    )


async def upload_version(
    db: AsyncSession,
    blob_store: LocalBlobStore,
    user: User,
    document_id: uuid.UUID,
    upload: UploadedFile,
) -> Document:
    """
    Add a new version to an existing document. Each version counts as a document.
    """
    async def persist() -> Document:
        document = await _get_document(db, document_id, user.organization_id)
        key = blob_store.new_key(upload.original_file_name)
        await blob_store.put(key, upload.data)

        version_number = document.current_version + 1
        document.versions.append(
            DocumentVersion(
                version_number=version_number,
                file_name=key,
                original_file_name=upload.original_file_name,
                file_size=upload.size,
                uploaded_by=user.id,
            )
        )
        document.current_version = version_number
        document.file_name = key
        document.original_file_name = upload.original_file_name
        document.file_size = upload.size
        document.mime_type = upload.mime_type
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            await blob_store.delete(key)
            raise
        await db.refresh(document)
        return document

    return await enforcement.run_enforced(
        db, user.organization_id, FEATURE_VERSIONING, upload.usage(), persist
    )


async def update_document(
    db: AsyncSession, user: User, document_id: uuid.UUID, title: str | None, description: str | None
) -> Document:
    await enforcement.enforce(db, user.organization_id, FEATURE_DOC_CRUD)
    document = await _get_document(db, document_id, user.organization_id)
    if title is not None:
        document.title = title
    if description is not None:
        document.description = description
    await db.commit()
    await db.refresh(document)
    return document


async def delete_document(
    db: AsyncSession, blob_store: LocalBlobStore, user: User, document_id: uuid.UUID
) -> None:
    """
    Delete a document and all its versions, then release their usage.
    """
    await enforcement.enforce(db, user.organization_id, FEATURE_DOC_CRUD)
    document = await _get_document(db, document_id, user.organization_id)
    keys = [version.file_name for version in document.versions]
    released = {
        METRIC_DOCUMENTS: len(document.versions),
        METRIC_STORAGE: sum(version.file_size for version in document.versions),
    }

    async def remove() -> None:
        await db.delete(document)
        await db.commit()
        for key in keys:
            await blob_store.delete(key)
        logger.info(
            "document_deleted",
            organization_id=str(user.organization_id),
            document_id=str(document_id),
        )

    await enforcement.run_release(db, user.organization_id, released, remove)


async def delete_version(
    db: AsyncSession, blob_store: LocalBlobStore, user: User, document_id: uuid.UUID, version_number: int
) -> Document:
    """
    Remove a single version and release its usage. The last remaining
    version cannot be removed; delete the document instead.
    """
    await enforcement.enforce(db, user.organization_id, FEATURE_VERSIONING)
    document = await _get_document(db, document_id, user.organization_id)
    version = next((v for v in document.versions if v.version_number == version_number), None)
    if version is None:
        raise InvalidDocumentOperationError(
            "Version not found",
            context={"document_id": str(document_id), "version_number": version_number},
        )
    if len(document.versions) == 1:
        raise InvalidDocumentOperationError(
            "Cannot remove the only version of a document",
            context={"document_id": str(document_id), "version_number": version_number},
        )

    async def remove() -> Document:
        document.versions.remove(version)
        latest = max(document.versions, key=lambda v: v.version_number)
        document.current_version = latest.version_number
        document.file_name = latest.file_name
        document.original_file_name = latest.original_file_name
        document.file_size = latest.file_size
        await db.commit()
        await blob_store.delete(version.file_name)
        await db.refresh(document)
        return document

    return await enforcement.run_release(
        db,
        user.organization_id,
        {METRIC_DOCUMENTS: 1, METRIC_STORAGE: version.file_size},
        remove,
    )


async def share_document(
    db: AsyncSession, user: User, document_id: uuid.UUID, user_ids: List[uuid.UUID]
) -> Document:
    """
    Share a document with members of the same organization.
    """
    await enforcement.enforce(db, user.organization_id, FEATURE_SHARING)
    document = await _get_document(db, document_id, user.organization_id)

    result = await db.execute(
        select(User.id).filter(User.id.in_(user_ids), User.organization_id == user.organization_id)
    )
    members = {str(member_id) for member_id in result.scalars().all()}
    outsiders = sorted({str(user_id) for user_id in user_ids} - members)
    if outsiders:
        raise InvalidDocumentOperationError(
            "Documents can only be shared within the organization",
            context={"user_ids": outsiders},
        )

    document.shared_with = sorted(set(document.shared_with or []) | members)
    await db.commit()
    await db.refresh(document)
    return document


async def search_documents(db: AsyncSession, user: User, query: str) -> List[Document]:
    await enforcement.enforce(db, user.organization_id, FEATURE_ADVANCED_SEARCH)
    pattern = f"%{query}%"
    result = await db.execute(
        select(Document)
        .filter(
            Document.organization_id == user.organization_id,
            or_(Document.title.ilike(pattern), Document.description.ilike(pattern)),
        )
        .order_by(Document.created_at.desc())
    )
    return result.scalars().all()

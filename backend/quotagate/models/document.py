import uuid
from sqlalchemy import Column, String, Text, Integer, BigInteger, DateTime, ForeignKey, JSON, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from quotagate.models.base import Base

class Document(Base):
    __tablename__ = 'documents'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey('organizations.id'), nullable=False, index=True)
    uploaded_by = Column(UUID(as_uuid=True), ForeignKey('users.id'), nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    file_name = Column(String, nullable=False) # Blob key of the current version
    original_file_name = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String, nullable=False)

    shared_with = Column(JSON, nullable=False, default=list) # User ids as strings
    current_version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.version_number",
    )

    # Server-generated timestamps are fetched on flush; async sessions cannot lazy load them.
    __mapper_args__ = {"eager_defaults": True}


class DocumentVersion(Base):
    __tablename__ = 'document_versions'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey('documents.id', ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)

    file_name = Column(String, nullable=False)
    original_file_name = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    uploaded_by = Column(UUID(as_uuid=True), ForeignKey('users.id'), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="versions")

    __mapper_args__ = {"eager_defaults": True}

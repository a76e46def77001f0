import uuid
from sqlalchemy import Column, String, Numeric, Boolean, DateTime, JSON, func
from sqlalchemy.dialects.postgresql import UUID
from quotagate.models.base import Base

# Fixed capability vocabulary a plan can grant.
FEATURE_DOC_CRUD = "doc_crud"
FEATURE_SHARING = "sharing"
FEATURE_VERSIONING = "versioning"
FEATURE_ADVANCED_SEARCH = "advanced_search"
FEATURES = (FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING, FEATURE_ADVANCED_SEARCH)

UNLIMITED = -1

class Plan(Base):
    __tablename__ = 'plans'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False) # e.g., "Free", "Pro"
    features = Column(JSON, nullable=False, default=list) # e.g., ["doc_crud", "sharing"]
    limits = Column(JSON, nullable=False, default=dict) # e.g., {"max_documents": 10}; -1 = unlimited
    price = Column(Numeric(10, 2), nullable=False, default=0) # Monthly price, e.g., 29.99
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from quotagate.models.base import Base

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

class User(Base):
    __tablename__ = 'users'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supabase_auth_id = Column(UUID(as_uuid=True), unique=True, index=True, nullable=True) # NULL until an added member first logs in
    organization_id = Column(UUID(as_uuid=True), ForeignKey('organizations.id'), nullable=False)

    email = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_MEMBER)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="users")

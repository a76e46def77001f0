import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from quotagate.models.base import Base

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"

class Subscription(Base):
    __tablename__ = 'subscriptions'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey('organizations.id'), nullable=False)
    plan_id = Column(UUID(as_uuid=True), ForeignKey('plans.id'), nullable=False)

    status = Column(String, nullable=False, default=STATUS_ACTIVE)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Joined eagerly: entitlement checks always need the plan, and async sessions cannot lazy load.
    plan = relationship("Plan", lazy="joined")
    organization = relationship("Organization", back_populates="subscriptions")

    __table_args__ = (
        Index("ix_subscriptions_organization_status", "organization_id", "status"),
        # At most one active subscription per organization.
        Index(
            "uq_subscriptions_one_active_per_org",
            "organization_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

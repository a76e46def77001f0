import uuid
from sqlalchemy import BigInteger, Column, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from quotagate.models.base import Base

METRIC_DOCUMENTS = "documents"
METRIC_STORAGE = "storage" # bytes

class UsageRecord(Base):
    __tablename__ = 'usage_records'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey('organizations.id'), nullable=False)
    metric = Column(String, nullable=False)
    count = Column(BigInteger, nullable=False, default=0)

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    last_reset_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        # The upsert target of every ledger write.
        UniqueConstraint("organization_id", "metric", "period_start", name="uq_usage_records_org_metric_period"),
        CheckConstraint("count >= 0", name="ck_usage_records_count_non_negative"),
    )

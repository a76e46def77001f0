import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict

from .plan import Plan

class SubscriptionChange(BaseModel):
    plan_id: uuid.UUID

class Subscription(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    plan: Plan
    status: str
    start_date: datetime
    end_date: datetime

    model_config = ConfigDict(from_attributes=True)

class MetricUsage(BaseModel):
    current: int
    limit: int | None # -1 = unlimited, None = not limited by the plan
    resets_at: datetime

class CurrentSubscription(BaseModel):
    subscription: Subscription
    usage: dict[str, MetricUsage]

class PlanChanged(BaseModel):
    message: str
    subscription: Subscription

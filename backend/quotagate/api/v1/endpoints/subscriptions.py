from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.models.subscription import Subscription as SubscriptionModel
from quotagate.models.usage_record import METRIC_DOCUMENTS, METRIC_STORAGE
from quotagate.models.user import User
from quotagate.schemas.subscription import CurrentSubscription, MetricUsage, PlanChanged, Subscription, SubscriptionChange
from quotagate.core.dependencies import get_current_user, require_admin
from quotagate.database import get_db
from quotagate.services import entitlement_service, gates, usage_ledger
from quotagate.services.period import ensure_utc

router = APIRouter()

@router.get("/current", response_model=CurrentSubscription)
async def read_current_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    The organization's active subscription and its usage for the current period.
    """
    entitlement = await entitlement_service.require_entitlement(db, current_user.organization_id)
    subscription = await db.get(SubscriptionModel, entitlement.subscription_id)
    records = await usage_ledger.get_usage(db, current_user.organization_id, (METRIC_DOCUMENTS, METRIC_STORAGE))

    usage = {
        metric: MetricUsage(
            current=record.count,
            limit=entitlement.plan.limits.get(gates.metric_spec(metric).limit_key),
            resets_at=ensure_utc(record.period_end),
        )
        for metric, record in records.items()
    }
    return CurrentSubscription(
        subscription=Subscription.model_validate(subscription),
        usage=usage,
    )

@router.post("/change", response_model=PlanChanged)
async def change_subscription_plan(
    change_in: SubscriptionChange,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """
    Move the organization onto another active plan. The current subscription
    is expired and a new one starts now.
    """
    subscription = await entitlement_service.change_plan(db, current_user.organization_id, change_in.plan_id)
    return PlanChanged(
        message=f"Plan changed to {subscription.plan.name}",
        subscription=Subscription.model_validate(subscription),
    )

"""
Entitlement resolution and subscription lifecycle.

Subscriptions expire lazily: there is no sweeper. Whoever reads an active
subscription past its end date flips it to `expired` before answering, so no
request is ever served from an expired row. Plan changes expire the current
row and insert the new one in a single transaction; the partial unique index
on active rows rejects any concurrent change that would leave two active.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core.exceptions import (
    ExpiredEntitlementError,
    InvalidPlanError,
    NoEntitlementError,
    PlanConfigurationError,
    SubscriptionConflictError,
)
from quotagate.core.logging import get_logger
from quotagate.core.storage_guard import storage_guard
from quotagate.models.plan import Plan
from quotagate.models.subscription import STATUS_ACTIVE, STATUS_EXPIRED, Subscription
from quotagate.services.period import add_months, ensure_utc, utcnow

logger = get_logger(__name__)

# A zero-price plan never lapses in practice.
FREE_PLAN_TERM_MONTHS = 100 * 12
PAID_PLAN_TERM_MONTHS = 1

REASON_NONE = "none"
REASON_EXPIRED = "expired"


@dataclass(frozen=True)
class PlanSnapshot:
    """Immutable view of a plan as seen by the gates."""
    id: uuid.UUID
    name: str
    features: frozenset[str]
    limits: dict[str, int] = field(default_factory=dict)
    price: Decimal = Decimal("0")

    @classmethod
    def from_model(cls, plan: Plan) -> "PlanSnapshot":
        return cls(
            id=plan.id,
            name=plan.name,
            features=frozenset(plan.features or []),
            limits={key: int(value) for key, value in (plan.limits or {}).items()},
            price=Decimal(str(plan.price)),
        )


@dataclass(frozen=True)
class Entitlement:
    subscription_id: uuid.UUID
    organization_id: uuid.UUID
    plan: PlanSnapshot
    status: str
    start_date: datetime
    end_date: datetime


@dataclass(frozen=True)
class NoEntitlement:
    organization_id: uuid.UUID
    reason: str = REASON_NONE
    expired_at: datetime | None = None

    @property
    def expired(self) -> bool:
        return self.reason == REASON_EXPIRED

    def to_error(self) -> Exception:
        if self.expired:
            return ExpiredEntitlementError(self.organization_id, self.expired_at)
        return NoEntitlementError(self.organization_id)


EntitlementResult = Union[Entitlement, NoEntitlement]


def subscription_window(plan: Any, now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    The [start, end) window of a new subscription to `plan` starting at `now`.
    """
    start = ensure_utc(now) if now is not None else utcnow()
    months = FREE_PLAN_TERM_MONTHS if Decimal(str(plan.price)) == 0 else PAID_PLAN_TERM_MONTHS
    return start, add_months(start, months)


async def _collapse_duplicate_active(
    db: AsyncSession, organization_id: uuid.UUID, active: list[Subscription]
) -> Subscription:
    """Keep the newest active row and expire the rest."""
    keep, *stale = active
    await db.execute(
        update(Subscription)
        .where(Subscription.id.in_([s.id for s in stale]), Subscription.status == STATUS_ACTIVE)
        .values(status=STATUS_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.warning(
        "duplicate_active_subscriptions_collapsed",
        organization_id=str(organization_id),
        kept=str(keep.id),
        expired=[str(s.id) for s in stale],
    )
    return keep


@storage_guard("entitlement.resolve")
async def resolve_entitlement(db: AsyncSession, organization_id: uuid.UUID) -> EntitlementResult:
    """
    Resolve the organization's current entitlement.

    Returns NoEntitlement(reason="none") when there is no active subscription,
    and NoEntitlement(reason="expired") after lazily expiring an active
    subscription whose end date has passed.
    """
    result = await db.execute(
        select(Subscription)
        .where(Subscription.organization_id == organization_id, Subscription.status == STATUS_ACTIVE)
        .order_by(Subscription.start_date.desc(), Subscription.created_at.desc())
        .execution_options(populate_existing=True)
    )
    active = list(result.unique().scalars().all())

    if not active:
        return NoEntitlement(organization_id=organization_id)

    subscription = active[0]
    if len(active) > 1:
        subscription = await _collapse_duplicate_active(db, organization_id, active)

    end_date = ensure_utc(subscription.end_date)
    if end_date < utcnow():
        await db.execute(
            update(Subscription)
            .where(Subscription.id == subscription.id, Subscription.status == STATUS_ACTIVE)
            .values(status=STATUS_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(
            "subscription_lazily_expired",
            organization_id=str(organization_id),
            subscription_id=str(subscription.id),
            expired_at=end_date.isoformat(),
        )
        return NoEntitlement(organization_id=organization_id, reason=REASON_EXPIRED, expired_at=end_date)

    return Entitlement(
        subscription_id=subscription.id,
        organization_id=organization_id,
        plan=PlanSnapshot.from_model(subscription.plan),
        status=subscription.status,
        start_date=ensure_utc(subscription.start_date),
        end_date=end_date,
    )


async def require_entitlement(db: AsyncSession, organization_id: uuid.UUID) -> Entitlement:
    """Like resolve_entitlement, but raises the matching error instead of returning NoEntitlement."""
    entitlement = await resolve_entitlement(db, organization_id)
    if isinstance(entitlement, NoEntitlement):
        raise entitlement.to_error()
    return entitlement


async def _insert_active_subscription(
    db: AsyncSession, organization_id: uuid.UUID, plan: Plan
) -> Subscription:
    start_date, end_date = subscription_window(plan)
    subscription = Subscription(
        organization_id=organization_id,
        plan_id=plan.id,
        plan=plan,
        status=STATUS_ACTIVE,
        start_date=start_date,
        end_date=end_date,
    )
    db.add(subscription)
    await db.flush()
    return subscription


@storage_guard("entitlement.change_plan")
async def change_plan(db: AsyncSession, organization_id: uuid.UUID, plan_id: uuid.UUID) -> Subscription:
    """
    Move the organization onto `plan_id`: expire every active subscription and
    insert a fresh active one, committed together.
    """
    plan = await db.get(Plan, plan_id)
    if plan is None or not plan.is_active:
        raise InvalidPlanError(plan_id)

    try:
        await db.execute(
            update(Subscription)
            .where(Subscription.organization_id == organization_id, Subscription.status == STATUS_ACTIVE)
            .values(status=STATUS_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        subscription = await _insert_active_subscription(db, organization_id, plan)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise SubscriptionConflictError(organization_id) from exc

    logger.info(
        "plan_changed",
        organization_id=str(organization_id),
        plan=plan.name,
        subscription_id=str(subscription.id),
        end_date=ensure_utc(subscription.end_date).isoformat(),
    )
    return subscription


async def get_default_plan(db: AsyncSession) -> Plan:
    """The lowest-price active plan; ties are broken by name."""
    result = await db.execute(
        select(Plan).where(Plan.is_active == True).order_by(Plan.price.asc(), Plan.name.asc()).limit(1)
    )
    plan = result.scalars().first()
    if plan is None:
        raise PlanConfigurationError(
            "No active subscription plans are configured. Please contact the platform administrator."
        )
    return plan


async def assign_default_plan(db: AsyncSession, organization_id: uuid.UUID) -> Subscription:
    """
    Create the initial subscription of a new organization. Flushes but does
    not commit, so the caller can create the organization in the same
    transaction and nothing is persisted when no plan is available.
    """
    plan = await get_default_plan(db)
    subscription = await _insert_active_subscription(db, organization_id, plan)
    logger.info("default_plan_assigned", organization_id=str(organization_id), plan=plan.name)
    return subscription

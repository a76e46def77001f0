"""
The enforcement pipeline run in front of every gated operation.

Order is fixed and short-circuits on the first denial:

    resolve entitlement -> feature gate -> limit gate (per metric)
        -> protected operation -> usage increments

Nothing is reserved before the operation runs, so a denial leaves no usage
to undo. Usage is committed only after the operation succeeded; if that
commit then fails the resource exists but is not yet counted, which is
logged as drift rather than failing the request. Deletions run the
operation first and decrement afterwards, so a failed decrement leaves the
removed resource counted (an over-count) until the period resets.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, TypeVar, Union

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core.exceptions import FeatureDeniedError, QuotaGateError, StorageUnavailableError
from quotagate.core.logging import get_logger
from quotagate.core.storage_guard import storage_guard
from quotagate.services import gates, usage_ledger
from quotagate.services.entitlement_service import Entitlement, NoEntitlement, resolve_entitlement
from quotagate.services.period import ensure_utc

logger = get_logger(__name__)

T = TypeVar("T")

REASON_NO_ENTITLEMENT = "no_entitlement"
REASON_EXPIRED_ENTITLEMENT = "expired_entitlement"
REASON_FEATURE_DENIED = "feature_denied"
REASON_LIMIT_REACHED = "limit_reached"


@dataclass(frozen=True)
class Proceed:
    entitlement: Entitlement


@dataclass(frozen=True)
class Denied:
    reason: str
    error: QuotaGateError
    detail: dict[str, Any] = field(default_factory=dict)


Outcome = Union[Proceed, Denied]


def _consumed(metric_deltas: Mapping[str, int] | None) -> dict[str, int]:
    deltas = {}
    for metric, delta in (metric_deltas or {}).items():
        if delta < 0:
            raise ValueError(f"Metric delta for '{metric}' must not be negative, got {delta}")
        if delta:
            deltas[metric] = delta
    return deltas


def _deny(reason: str, error: QuotaGateError, organization_id: uuid.UUID, capability: str) -> Denied:
    logger.info(
        "request_denied",
        organization_id=str(organization_id),
        capability=capability,
        reason=reason,
        detail=error.context,
    )
    return Denied(reason=reason, error=error, detail=error.context)


async def check_and_reserve(
    db: AsyncSession,
    organization_id: uuid.UUID,
    capability: str,
    metric_deltas: Mapping[str, int] | None = None,
) -> Outcome:
    """
    Run entitlement, feature and limit checks for an operation that will
    consume `metric_deltas`. Storage failures propagate as
    StorageUnavailableError (the request fails closed).
    """
    deltas = _consumed(metric_deltas)

    entitlement = await resolve_entitlement(db, organization_id)
    if isinstance(entitlement, NoEntitlement):
        reason = REASON_EXPIRED_ENTITLEMENT if entitlement.expired else REASON_NO_ENTITLEMENT
        return _deny(reason, entitlement.to_error(), organization_id, capability)

    plan = entitlement.plan
    if not gates.allows(plan, capability):
        error = FeatureDeniedError(plan.name, capability)
        return _deny(REASON_FEATURE_DENIED, error, organization_id, capability)

    for metric in deltas:
        if gates.limit_for(plan, metric) is None:
            continue
        record = await usage_ledger.get_or_create(db, organization_id, metric)
        decision = gates.check_limit(plan, metric, record.count)
        if not decision.allowed:
            error = gates.limit_error(decision, resets_at=ensure_utc(record.period_end))
            return _deny(REASON_LIMIT_REACHED, error, organization_id, capability)

    return Proceed(entitlement=entitlement)


async def enforce(
    db: AsyncSession,
    organization_id: uuid.UUID,
    capability: str,
    metric_deltas: Mapping[str, int] | None = None,
) -> Entitlement:
    """check_and_reserve, raising the denial's error."""
    outcome = await check_and_reserve(db, organization_id, capability, metric_deltas)
    if isinstance(outcome, Denied):
        raise outcome.error
    return outcome.entitlement


async def commit_usage(db: AsyncSession, organization_id: uuid.UUID, metric_deltas: Mapping[str, int]) -> None:
    """Increment every consumed metric. Raises StorageUnavailableError on failure."""
    for metric, delta in _consumed(metric_deltas).items():
        await usage_ledger.increment(db, organization_id, metric, delta)


async def release_usage(db: AsyncSession, organization_id: uuid.UUID, metric_deltas: Mapping[str, int]) -> None:
    """Decrement every released metric; each decrement is clamped at zero by the ledger."""
    for metric, delta in _consumed(metric_deltas).items():
        await usage_ledger.decrement(db, organization_id, metric, delta)


@storage_guard("enforcement.reload_result")
async def _reload(db: AsyncSession, result: T) -> T:
    """
    A failed ledger write rolls the session back, which expires every ORM
    instance in it, including one the operation already committed and
    returned. Reload it so callers can still read its attributes.
    """
    state = inspect(result, raiseerr=False)
    if state is not None and state.persistent:
        await db.refresh(result)
    return result


async def run_enforced(
    db: AsyncSession,
    organization_id: uuid.UUID,
    capability: str,
    metric_deltas: Mapping[str, int] | None,
    operation: Callable[[], Awaitable[T]],
) -> T:
    """
    Enforce, run the protected operation, then commit its usage.
    """
    await enforce(db, organization_id, capability, metric_deltas)
    result = await operation()
    try:
        await commit_usage(db, organization_id, metric_deltas or {})
    except StorageUnavailableError as exc:
        logger.warning(
            "usage_commit_failed",
            organization_id=str(organization_id),
            capability=capability,
            metric_deltas=dict(metric_deltas or {}),
            operation=exc.operation,
        )
        result = await _reload(db, result)
    return result


async def run_release(
    db: AsyncSession,
    organization_id: uuid.UUID,
    metric_deltas: Mapping[str, int],
    operation: Callable[[], Awaitable[T]],
) -> T:
    """
    Run a deleting operation, then release its usage.
    """
    result = await operation()
    try:
        await release_usage(db, organization_id, metric_deltas)
    except StorageUnavailableError as exc:
        logger.warning(
            "usage_release_failed",
            organization_id=str(organization_id),
            metric_deltas=dict(metric_deltas),
            operation=exc.operation,
        )
        result = await _reload(db, result)
    return result

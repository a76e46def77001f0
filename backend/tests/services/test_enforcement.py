import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.testing import capture_logs

from quotagate.core.exceptions import (
    FeatureDeniedError,
    LimitReachedError,
    NoEntitlementError,
    StorageUnavailableError,
)
from quotagate.models.plan import FEATURE_DOC_CRUD, FEATURE_SHARING
from quotagate.models.subscription import Subscription
from quotagate.models.usage_record import METRIC_DOCUMENTS, METRIC_STORAGE
from quotagate.services import enforcement, entitlement_service, usage_ledger
from quotagate.services.enforcement import Denied, Proceed


async def _use(db: AsyncSession, organization_id: uuid.UUID, metric: str, amount: int) -> None:
    await usage_ledger.increment(db, organization_id, metric, amount)


@pytest.mark.asyncio
async def test_proceeds_below_limit(db_session: AsyncSession, organization):
    await _use(db_session, organization.id, METRIC_DOCUMENTS, 9)

    outcome = await enforcement.check_and_reserve(
        db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1}
    )

    assert isinstance(outcome, Proceed)
    assert outcome.entitlement.plan.name == "Free"


@pytest.mark.asyncio
async def test_denies_at_limit_without_touching_usage(db_session: AsyncSession, organization):
    await _use(db_session, organization.id, METRIC_DOCUMENTS, 10)

    outcome = await enforcement.check_and_reserve(
        db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1}
    )

    assert isinstance(outcome, Denied)
    assert outcome.reason == enforcement.REASON_LIMIT_REACHED
    assert isinstance(outcome.error, LimitReachedError)
    assert outcome.detail["metric"] == METRIC_DOCUMENTS
    assert outcome.detail["current"] == 10
    assert outcome.detail["limit"] == 10

    record = await usage_ledger.get_or_create(db_session, organization.id, METRIC_DOCUMENTS)
    assert record.count == 10


@pytest.mark.asyncio
async def test_feature_is_checked_before_limits(db_session: AsyncSession, organization):
    await _use(db_session, organization.id, METRIC_DOCUMENTS, 10)

    outcome = await enforcement.check_and_reserve(
        db_session, organization.id, FEATURE_SHARING, {METRIC_DOCUMENTS: 1}
    )

    assert outcome.reason == enforcement.REASON_FEATURE_DENIED
    assert outcome.detail == {"current_plan": "Free", "required_feature": FEATURE_SHARING}


@pytest.mark.asyncio
async def test_no_subscription_is_denied(db_session: AsyncSession):
    outcome = await enforcement.check_and_reserve(db_session, uuid.uuid4(), FEATURE_DOC_CRUD)

    assert outcome.reason == enforcement.REASON_NO_ENTITLEMENT
    assert isinstance(outcome.error, NoEntitlementError)


@pytest.mark.asyncio
async def test_expired_subscription_is_denied(db_session: AsyncSession, organization):
    entitlement = await entitlement_service.resolve_entitlement(db_session, organization.id)
    subscription = await db_session.get(Subscription, entitlement.subscription_id)
    subscription.end_date = datetime.now(timezone.utc) - timedelta(seconds=1)
    await db_session.commit()

    outcome = await enforcement.check_and_reserve(db_session, organization.id, FEATURE_DOC_CRUD)

    assert outcome.reason == enforcement.REASON_EXPIRED_ENTITLEMENT


@pytest.mark.asyncio
async def test_unlimited_metrics_skip_the_ledger(db_session: AsyncSession, organization, plans, monkeypatch):
    await entitlement_service.change_plan(db_session, organization.id, plans["Enterprise"].id)

    async def fail_if_called(*args, **kwargs):
        raise AssertionError("usage ledger should not be read for unlimited metrics")

    monkeypatch.setattr(usage_ledger, "get_or_create", fail_if_called)

    outcome = await enforcement.check_and_reserve(
        db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1, METRIC_STORAGE: 10**12}
    )

    assert isinstance(outcome, Proceed)


@pytest.mark.asyncio
async def test_negative_deltas_are_rejected(db_session: AsyncSession, organization):
    with pytest.raises(ValueError):
        await enforcement.check_and_reserve(
            db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: -1}
        )


@pytest.mark.asyncio
async def test_enforce_raises_the_denial(db_session: AsyncSession, organization):
    with pytest.raises(FeatureDeniedError):
        await enforcement.enforce(db_session, organization.id, FEATURE_SHARING)


@pytest.mark.asyncio
async def test_run_enforced_commits_usage_after_the_operation(db_session: AsyncSession, organization):
    calls = []

    async def operation():
        calls.append("ran")
        return "created"

    result = await enforcement.run_enforced(
        db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1, METRIC_STORAGE: 2048}, operation
    )

    assert result == "created"
    assert calls == ["ran"]
    usage = await usage_ledger.get_usage(db_session, organization.id, (METRIC_DOCUMENTS, METRIC_STORAGE))
    assert usage[METRIC_DOCUMENTS].count == 1
    assert usage[METRIC_STORAGE].count == 2048


@pytest.mark.asyncio
async def test_denied_operation_never_runs(db_session: AsyncSession, organization):
    await _use(db_session, organization.id, METRIC_DOCUMENTS, 10)

    async def operation():
        raise AssertionError("operation must not run after a denial")

    with pytest.raises(LimitReachedError):
        await enforcement.run_enforced(
            db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1}, operation
        )


@pytest.mark.asyncio
async def test_failed_operation_leaves_usage_unchanged(db_session: AsyncSession, organization):
    async def operation():
        raise RuntimeError("blob store down")

    with pytest.raises(RuntimeError):
        await enforcement.run_enforced(
            db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1}, operation
        )

    record = await usage_ledger.get_or_create(db_session, organization.id, METRIC_DOCUMENTS)
    assert record.count == 0


@pytest.mark.asyncio
async def test_usage_commit_failure_is_logged_not_raised(db_session: AsyncSession, organization, monkeypatch):
    async def unavailable(*args, **kwargs):
        raise StorageUnavailableError("usage.increment")

    monkeypatch.setattr(usage_ledger, "increment", unavailable)

    async def operation():
        return "created"

    with capture_logs() as logs:
        result = await enforcement.run_enforced(
            db_session, organization.id, FEATURE_DOC_CRUD, {METRIC_DOCUMENTS: 1}, operation
        )

    assert result == "created"
    assert any(entry["event"] == "usage_commit_failed" for entry in logs)


@pytest.mark.asyncio
async def test_release_usage_decrements_and_clamps(db_session: AsyncSession, organization):
    await _use(db_session, organization.id, METRIC_DOCUMENTS, 3)
    await _use(db_session, organization.id, METRIC_STORAGE, 100)

    await enforcement.release_usage(db_session, organization.id, {METRIC_DOCUMENTS: 2, METRIC_STORAGE: 500})

    usage = await usage_ledger.get_usage(db_session, organization.id, (METRIC_DOCUMENTS, METRIC_STORAGE))
    assert usage[METRIC_DOCUMENTS].count == 1
    assert usage[METRIC_STORAGE].count == 100

"""
Usage ledger: per-(organization, metric) counters scoped to the current
accounting period.

Every mutation is a single atomic statement executed by the database
(`INSERT ... ON CONFLICT DO UPDATE` for increments, a guarded `UPDATE` for
decrements and period rollover). Nothing in this module reads a count,
changes it in Python and writes it back.
"""
import uuid
from datetime import datetime
from typing import Iterable

from sqlalchemy import exists, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from quotagate.core.logging import get_logger
from quotagate.core.storage_guard import storage_guard
from quotagate.models.usage_record import UsageRecord
from quotagate.services.period import AccountingPeriod, current_period, utcnow

logger = get_logger(__name__)

_UPSERT_TARGET = ["organization_id", "metric", "period_start"]


def _dialect_insert(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Usage ledger has no upsert support for dialect '{dialect}'")


def _validate_delta(delta: int) -> None:
    if not isinstance(delta, int) or isinstance(delta, bool) or delta <= 0:
        raise ValueError(f"Usage delta must be a positive integer, got {delta!r}")


async def _select_current(
    db: AsyncSession, organization_id: uuid.UUID, metric: str, period: AccountingPeriod
) -> UsageRecord | None:
    result = await db.execute(
        select(UsageRecord)
        .where(
            UsageRecord.organization_id == organization_id,
            UsageRecord.metric == metric,
            UsageRecord.period_start == period.start,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _roll_over_if_stale(
    db: AsyncSession, organization_id: uuid.UUID, metric: str, period: AccountingPeriod, now: datetime
) -> bool:
    """
    Move an elapsed record into the current period with a zero count.

    The conditional UPDATE only matches while the record's period has ended
    and no current-period record exists, so concurrent callers reset it at
    most once. Returns True if this call performed the reset.
    """
    if await _select_current(db, organization_id, metric, period) is not None:
        return False

    current = aliased(UsageRecord)
    latest = aliased(UsageRecord)
    # Only the most recent stale record is carried forward; older ones left
    # by a lost race stay behind as history instead of colliding on the key.
    latest_start = (
        select(func.max(latest.period_start))
        .where(latest.organization_id == organization_id, latest.metric == metric)
        .scalar_subquery()
    )
    stmt = (
        update(UsageRecord)
        .where(
            UsageRecord.organization_id == organization_id,
            UsageRecord.metric == metric,
            UsageRecord.period_end < now,
            UsageRecord.period_start == latest_start,
            ~exists().where(
                current.organization_id == organization_id,
                current.metric == metric,
                current.period_start == period.start,
            ),
        )
        .values(
            count=0,
            period_start=period.start,
            period_end=period.end,
            last_reset_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(stmt)
        await db.commit()
    except IntegrityError:
        # A current-period record was created concurrently; it wins.
        await db.rollback()
        logger.debug("usage_rollover_superseded", organization_id=str(organization_id), metric=metric)
        return False

    if result.rowcount:
        logger.info(
            "usage_period_rolled_over",
            organization_id=str(organization_id),
            metric=metric,
            period_start=period.start.isoformat(),
        )
        return True
    return False


@storage_guard("usage.get_or_create")
async def get_or_create(db: AsyncSession, organization_id: uuid.UUID, metric: str) -> UsageRecord:
    """
    Return the current-period record for (organization, metric), creating it
    with a zero count if absent and lazily resetting a record left over from
    an elapsed period.
    """
    now = utcnow()
    period = current_period(now)

    record = await _select_current(db, organization_id, metric, period)
    if record is not None:
        return record

    await _roll_over_if_stale(db, organization_id, metric, period, now)

    insert = _dialect_insert(db)
    stmt = (
        insert(UsageRecord)
        .values(
            organization_id=organization_id,
            metric=metric,
            count=0,
            period_start=period.start,
            period_end=period.end,
            last_reset_at=now,
        )
        .on_conflict_do_nothing(index_elements=_UPSERT_TARGET)
    )
    await db.execute(stmt)
    await db.commit()

    return await _select_current(db, organization_id, metric, period)


@storage_guard("usage.increment")
async def increment(
    db: AsyncSession, organization_id: uuid.UUID, metric: str, delta: int = 1
) -> UsageRecord:
    """
    Atomically add `delta` to the current-period count and return the
    post-increment record.
    """
    _validate_delta(delta)
    now = utcnow()
    period = current_period(now)

    await _roll_over_if_stale(db, organization_id, metric, period, now)

    insert = _dialect_insert(db)
    stmt = insert(UsageRecord).values(
        organization_id=organization_id,
        metric=metric,
        count=delta,
        period_start=period.start,
        period_end=period.end,
        last_reset_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_UPSERT_TARGET,
        set_={"count": UsageRecord.count + stmt.excluded.count, "updated_at": now},
    ).returning(UsageRecord)

    result = await db.execute(stmt, execution_options={"populate_existing": True})
    record = result.scalars().one()
    await db.commit()

    logger.debug(
        "usage_incremented",
        organization_id=str(organization_id),
        metric=metric,
        delta=delta,
        count=record.count,
    )
    return record


@storage_guard("usage.decrement")
async def decrement(
    db: AsyncSession, organization_id: uuid.UUID, metric: str, delta: int = 1
) -> UsageRecord | None:
    """
    Atomically subtract `delta` from the current-period count.
    No-op returning None if the count is lower than `delta` (or no
    current-period record exists), so the count never goes negative.
    """
    _validate_delta(delta)
    now = utcnow()
    period = current_period(now)

    stmt = (
        update(UsageRecord)
        .where(
            UsageRecord.organization_id == organization_id,
            UsageRecord.metric == metric,
            UsageRecord.period_start == period.start,
            UsageRecord.count >= delta,
        )
        .values(count=UsageRecord.count - delta, updated_at=now)
        .returning(UsageRecord)
    )
    result = await db.execute(stmt, execution_options={"populate_existing": True})
    record = result.scalars().one_or_none()
    await db.commit()

    if record is None:
        logger.info(
            "usage_decrement_skipped",
            organization_id=str(organization_id),
            metric=metric,
            delta=delta,
        )
    else:
        logger.debug(
            "usage_decremented",
            organization_id=str(organization_id),
            metric=metric,
            delta=delta,
            count=record.count,
        )
    return record


async def get_usage(
    db: AsyncSession, organization_id: uuid.UUID, metrics: Iterable[str]
) -> dict[str, UsageRecord]:
    """Current-period records for several metrics, keyed by metric."""
    return {metric: await get_or_create(db, organization_id, metric) for metric in metrics}

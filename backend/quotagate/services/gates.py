"""
Feature and limit gates: pure decisions over a resolved plan.

Neither gate performs I/O. The limit gate owns unit normalisation between how
a metric is counted in the usage ledger and how its limit is declared on the
plan (storage is counted in bytes, limited in megabytes).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from quotagate.core.exceptions import FeatureDeniedError, LimitReachedError
from quotagate.models.plan import UNLIMITED
from quotagate.models.usage_record import METRIC_DOCUMENTS, METRIC_STORAGE

BYTES_PER_MB = 1024 * 1024


class Unit(str, Enum):
    COUNT = "count"
    BYTES_TO_MB = "bytes_to_mb"


@dataclass(frozen=True)
class MetricSpec:
    limit_key: str
    unit: Unit = Unit.COUNT


# Metrics missing here are counted as plain items and limited by a plan
# limit of the same name.
METRIC_REGISTRY: dict[str, MetricSpec] = {
    METRIC_DOCUMENTS: MetricSpec(limit_key="max_documents"),
    METRIC_STORAGE: MetricSpec(limit_key="max_storage_mb", unit=Unit.BYTES_TO_MB),
}


@dataclass(frozen=True)
class MetricLimit:
    metric: str
    limit: int # as declared on the plan
    unit: Unit

    @property
    def usage_units(self) -> int:
        """The limit expressed in the unit the ledger counts in."""
        if self.unit is Unit.BYTES_TO_MB:
            return self.limit * BYTES_PER_MB
        return self.limit

    @property
    def display_unit(self) -> str:
        return "MB" if self.unit is Unit.BYTES_TO_MB else self.metric

    def to_display(self, usage: int) -> int | float:
        if self.unit is Unit.BYTES_TO_MB:
            return round(usage / BYTES_PER_MB, 2)
        return usage


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    metric: str
    current: int | float | None = None
    limit: int | None = None
    unit: str | None = None


def allows(plan: Any, feature: str) -> bool:
    """True if `feature` is one of the plan's features."""
    return feature in plan.features


def require_feature(plan: Any, feature: str) -> None:
    if not allows(plan, feature):
        raise FeatureDeniedError(plan.name, feature)


def metric_spec(metric: str) -> MetricSpec:
    return METRIC_REGISTRY.get(metric, MetricSpec(limit_key=metric))


def limit_for(plan: Any, metric: str) -> MetricLimit | None:
    """
    The plan's limit for `metric`, or None when the metric is unlimited
    (limit absent or -1). A None result means usage need not be read at all.
    """
    spec = metric_spec(metric)
    limit = (plan.limits or {}).get(spec.limit_key)
    if limit is None or int(limit) == UNLIMITED:
        return None
    return MetricLimit(metric=metric, limit=int(limit), unit=spec.unit)


def check_limit(plan: Any, metric: str, current_usage: int) -> LimitDecision:
    """
    Allow iff current usage is strictly below the limit; reaching the limit denies.
    """
    metric_limit = limit_for(plan, metric)
    if metric_limit is None:
        return LimitDecision(allowed=True, metric=metric)

    return LimitDecision(
        allowed=current_usage < metric_limit.usage_units,
        metric=metric,
        current=metric_limit.to_display(current_usage),
        limit=metric_limit.limit,
        unit=metric_limit.display_unit,
    )


def limit_error(decision: LimitDecision, resets_at=None) -> LimitReachedError:
    return LimitReachedError(
        metric=decision.metric,
        current=decision.current,
        limit=decision.limit,
        unit=decision.unit,
        resets_at=resets_at,
    )

import uuid
from datetime import datetime, timezone

import pytest

from quotagate.core.exceptions import FeatureDeniedError
from quotagate.models.plan import FEATURE_ADVANCED_SEARCH, FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING
from quotagate.services import gates
from quotagate.services.entitlement_service import PlanSnapshot

MB = 1024 * 1024


def make_plan(name="Free", features=(FEATURE_DOC_CRUD,), limits=None):
    return PlanSnapshot(
        id=uuid.uuid4(),
        name=name,
        features=frozenset(features),
        limits=limits if limits is not None else {"max_documents": 10, "max_storage_mb": 100},
    )


@pytest.mark.parametrize(
    "features, feature, expected",
    [
        ((FEATURE_DOC_CRUD,), FEATURE_DOC_CRUD, True),
        ((FEATURE_DOC_CRUD,), FEATURE_SHARING, False),
        ((FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING), FEATURE_SHARING, True),
        ((FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING), FEATURE_ADVANCED_SEARCH, False),
        ((), FEATURE_DOC_CRUD, False),
    ],
)
def test_feature_gate(features, feature, expected):
    assert gates.allows(make_plan(features=features), feature) is expected


def test_require_feature_names_plan_and_feature():
    with pytest.raises(FeatureDeniedError) as exc_info:
        gates.require_feature(make_plan(name="Free"), FEATURE_SHARING)

    assert exc_info.value.status_code == 403
    assert exc_info.value.context == {"current_plan": "Free", "required_feature": FEATURE_SHARING}


def test_limit_gate_allows_below_limit():
    decision = gates.check_limit(make_plan(), "documents", 9)

    assert decision.allowed
    assert decision.current == 9
    assert decision.limit == 10


def test_limit_gate_denies_at_limit():
    decision = gates.check_limit(make_plan(), "documents", 10)

    assert not decision.allowed
    assert (decision.metric, decision.current, decision.limit, decision.unit) == ("documents", 10, 10, "documents")


@pytest.mark.parametrize("limits", [{"max_documents": -1}, {}])
def test_unlimited_or_absent_limit_always_allows(limits):
    plan = make_plan(limits=limits)

    assert gates.limit_for(plan, "documents") is None
    assert gates.check_limit(plan, "documents", 10**9).allowed


def test_storage_is_counted_in_bytes_and_limited_in_megabytes():
    plan = make_plan(limits={"max_storage_mb": 100})

    assert gates.check_limit(plan, "storage", 100 * MB - 1).allowed

    decision = gates.check_limit(plan, "storage", 100 * MB)
    assert not decision.allowed
    assert decision.current == 100.0
    assert decision.limit == 100
    assert decision.unit == "MB"


def test_unknown_metric_uses_limit_of_the_same_name():
    plan = make_plan(limits={"api_calls": 5})

    assert gates.check_limit(plan, "api_calls", 4).allowed
    assert not gates.check_limit(plan, "api_calls", 5).allowed


def test_limit_error_carries_reset_time():
    resets_at = datetime(2026, 10, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
    error = gates.limit_error(gates.check_limit(make_plan(), "documents", 10), resets_at=resets_at)

    assert error.status_code == 429
    assert error.error_code == "LIMIT_REACHED"
    assert error.context["resets_at"] == resets_at.isoformat()

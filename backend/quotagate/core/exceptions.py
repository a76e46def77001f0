"""
Entitlement and metering errors.

Every denial raised by the enforcement pipeline is a subclass of
QuotaGateError so the HTTP layer can render it verbatim with its structured
context. Callers distinguish upgrade prompts (feature/limit denials) from
hard errors by `error_code`; only StorageUnavailableError is retryable.
"""

from datetime import datetime
from typing import Any


class QuotaGateError(Exception):
    """
    Base error with structured context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "QUOTAGATE_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
            "retryable": self.retryable,
        }


class EntitlementError(QuotaGateError):
    """The organization is not entitled to the requested operation."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 403,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            error_code,
            status_code=status_code,
            context=context,
            recovery_hint=recovery_hint,
        )


class NoEntitlementError(EntitlementError):
    """No active subscription exists for the organization."""

    def __init__(self, organization_id: Any) -> None:
        super().__init__(
            "No active subscription",
            "NO_ENTITLEMENT",
            context={"organization_id": str(organization_id)},
            recovery_hint="Subscribe the organization to a plan",
        )


class ExpiredEntitlementError(EntitlementError):
    """The organization's subscription was found past its end date."""

    def __init__(self, organization_id: Any, expired_at: datetime) -> None:
        super().__init__(
            "Subscription expired",
            "ENTITLEMENT_EXPIRED",
            context={
                "organization_id": str(organization_id),
                "expired_at": expired_at.isoformat(),
            },
            recovery_hint="Renew the subscription or choose a new plan",
        )
        self.expired_at = expired_at


class FeatureDeniedError(EntitlementError):
    """The requested capability is not part of the current plan."""

    def __init__(self, plan_name: str, feature: str) -> None:
        super().__init__(
            f"Feature '{feature}' is not available in your {plan_name} plan",
            "FEATURE_DENIED",
            context={"current_plan": plan_name, "required_feature": feature},
            recovery_hint="Upgrade to a plan that includes this feature",
        )
        self.plan_name = plan_name
        self.feature = feature


class LimitReachedError(EntitlementError):
    """A consumption limit has been reached for the current period."""

    def __init__(
        self,
        metric: str,
        current: int | float,
        limit: int,
        unit: str,
        resets_at: datetime | None = None,
    ) -> None:
        super().__init__(
            f"Limit reached: {current}/{limit} {unit}",
            "LIMIT_REACHED",
            status_code=429,
            context={
                "metric": metric,
                "current": current,
                "limit": limit,
                "unit": unit,
                "resets_at": resets_at.isoformat() if resets_at else None,
            },
            recovery_hint="Upgrade your plan or wait for the usage period to reset",
        )
        self.metric = metric
        self.current = current
        self.limit = limit


class StorageUnavailableError(QuotaGateError):
    """Transient storage failure; the operation failed closed."""

    retryable = True

    def __init__(self, operation: str) -> None:
        super().__init__(
            "Storage temporarily unavailable",
            "STORAGE_UNAVAILABLE",
            status_code=503,
            context={"operation": operation},
            recovery_hint="Retry the request; re-read usage before acting on it",
        )
        self.operation = operation


class PlanConfigurationError(QuotaGateError):
    """The plan catalogue cannot satisfy a required invariant."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            "PLAN_CONFIGURATION_ERROR",
            status_code=500,
            recovery_hint="Contact the platform administrator",
        )


class InvalidPlanError(QuotaGateError):
    """Plan does not exist or is not active."""

    def __init__(self, plan_id: Any) -> None:
        super().__init__(
            "Invalid or inactive plan",
            "INVALID_PLAN",
            status_code=400,
            context={"plan_id": str(plan_id)},
            recovery_hint="Choose one of the active plans",
        )


class SubscriptionConflictError(QuotaGateError):
    """A concurrent plan change won the race for the active subscription slot."""

    def __init__(self, organization_id: Any) -> None:
        super().__init__(
            "Another plan change is in progress",
            "SUBSCRIPTION_CONFLICT",
            status_code=409,
            context={"organization_id": str(organization_id)},
            recovery_hint="Reload the subscription and retry",
        )


class OrganizationExistsError(QuotaGateError):
    def __init__(self, slug: str) -> None:
        super().__init__(
            "Organization name already taken",
            "ORGANIZATION_EXISTS",
            status_code=409,
            context={"slug": slug},
        )


class DocumentNotFoundError(QuotaGateError):
    def __init__(self, document_id: Any) -> None:
        super().__init__(
            "Document not found",
            "DOCUMENT_NOT_FOUND",
            status_code=404,
            context={"document_id": str(document_id)},
        )


class InvalidDocumentOperationError(QuotaGateError):
    """The document operation is well-formed but not applicable."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            "INVALID_DOCUMENT_OPERATION",
            status_code=400,
            context=context,
        )


class UserExistsError(QuotaGateError):
    def __init__(self, email: str) -> None:
        super().__init__(
            "Email already registered",
            "USER_EXISTS",
            status_code=409,
            context={"email": email},
        )

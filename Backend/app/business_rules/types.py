from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import status

from ..core.responses import ApiError


@dataclass(frozen=True)
class BusinessRuleResult:
    """Outcome of a business-rule check: success, or an error message with a code."""

    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> "BusinessRuleResult":
        return cls(success=True)

    @classmethod
    def fail(cls, code: str, error: str, **details: Any) -> "BusinessRuleResult":
        return cls(success=False, error=error, code=code, details=details)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"success": self.success}
        if not self.success:
            result["error"] = self.error
            result["code"] = self.code
            if self.details:
                result["details"] = self.details
        return result


CONFLICT_CODES = {
    "DUPLICATE_SKU",
    "DUPLICATE_SLUG",
    "DUPLICATE_CODE",
    "USAGE_LIMIT_EXCEEDED",
    "HAS_CHILD_CATEGORIES",
    "HAS_PRODUCTS",
    "DUPLICATE_EMAIL",
    "HAS_ORDERS",
}

UNPROCESSABLE_CODES = {
    "INVALID_STATUS_TRANSITION",
    "IMMUTABLE_ORDER",
    "RESTRICTED_MODIFICATION",
}

FORBIDDEN_CODES = {
    "PRODUCT_LIMIT_EXCEEDED",
    "PLAN_DOWNGRADE_NOT_ALLOWED",
}


def status_for_code(code: Optional[str]) -> int:
    if code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    if code in UNPROCESSABLE_CODES:
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if code in FORBIDDEN_CODES:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_400_BAD_REQUEST


def raise_for_result(result: BusinessRuleResult) -> None:
    """Raise an ApiError if the rule check failed."""
    if result.success:
        return
    raise ApiError(
        status_for_code(result.code),
        result.code or "BUSINESS_RULE_VIOLATION",
        result.error or "Business rule violation",
        result.details or None,
    )

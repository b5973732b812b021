"""
Business-rule validators.

Each validator returns a ``BusinessRuleResult``; callers on the HTTP path use
``raise_for_result`` to turn a failure into an error envelope.

Modules:
    order: totals, pricing, status transitions, order numbers
    catalog: product and category rules
    tenant: slug and plan rules
    cart: per-line cart checks
"""

from .types import BusinessRuleResult, raise_for_result, status_for_code

__all__ = [
    "BusinessRuleResult",
    "raise_for_result",
    "status_for_code",
]

"""
Escalation policy -- pure threshold comparisons.

The two comparisons are asymmetric:

* ``requires_admin`` uses ``>=``: a verified claim at or above the limit
  triggers the "awaiting approval" notification to admins.
* ``engineer_may_approve`` uses ``<=``: an engineer may still approve a
  claim exactly at the limit directly.

A claim whose amount equals the limit is both approvable by an engineer
and escalated on verification.
"""

from decimal import Decimal, InvalidOperation

ENGINEER_APPROVAL_LIMIT_KEY = "engineer_approval_limit"
DEFAULT_ENGINEER_APPROVAL_LIMIT = Decimal("50000")


def requires_admin(amount: Decimal, limit: Decimal) -> bool:
    return amount >= limit


def engineer_may_approve(amount: Decimal, limit: Decimal) -> bool:
    return amount <= limit


def parse_limit(raw: str | None) -> Decimal | None:
    """
    Parse a configured limit value.

    Returns None for absent, unparseable, non-finite or non-positive
    values so the caller can apply the fallback.
    """
    if raw is None:
        return None
    text = str(raw).strip().replace(",", "")
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value

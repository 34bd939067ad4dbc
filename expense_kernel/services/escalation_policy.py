"""
EscalationPolicy -- the configured engineer approval limit.

Responsibility:
    Reads ``engineer_approval_limit`` from the configuration source and
    applies the fallback.  The comparisons themselves are the pure
    functions in ``domain/escalation.py``.

Failure modes:
    - Absent, unparseable or non-positive value: fallback limit, warning
      logged (absent logs at debug only).
    - DependencyFailureError from the source propagates; callers decide
      whether the limit is critical (approve) or not (verify escalation).
"""

from decimal import Decimal

from expense_kernel.domain.escalation import (
    DEFAULT_ENGINEER_APPROVAL_LIMIT,
    ENGINEER_APPROVAL_LIMIT_KEY,
    parse_limit,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.services.settings import ConfigurationSource

logger = get_logger("services.escalation")


class EscalationPolicy:
    def __init__(
        self,
        config: ConfigurationSource,
        fallback: Decimal = DEFAULT_ENGINEER_APPROVAL_LIMIT,
    ):
        self._config = config
        self._fallback = fallback

    @property
    def fallback(self) -> Decimal:
        return self._fallback

    def current_limit(self) -> Decimal:
        raw = self._config.get_setting(ENGINEER_APPROVAL_LIMIT_KEY)
        if raw is None:
            logger.debug(
                "approval_limit_unset",
                extra={"fallback": str(self._fallback)},
            )
            return self._fallback

        limit = parse_limit(raw)
        if limit is None:
            logger.warning(
                "approval_limit_invalid",
                extra={"raw_value": raw, "fallback": str(self._fallback)},
            )
            return self._fallback
        return limit

"""Pure domain layer: value objects, the claim state machine and pure policies."""

from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.escalation import (
    DEFAULT_ENGINEER_APPROVAL_LIMIT,
    ENGINEER_APPROVAL_LIMIT_KEY,
    engineer_may_approve,
    requires_admin,
)
from expense_kernel.domain.lifecycle import (
    CLAIM_TRANSITIONS,
    AuditAction,
    Capability,
    ClaimAction,
    ClaimStatus,
    TransitionRule,
    TransitionStep,
    resolve_transition,
)
from expense_kernel.domain.roles import Role, RoleSet

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "DEFAULT_ENGINEER_APPROVAL_LIMIT",
    "ENGINEER_APPROVAL_LIMIT_KEY",
    "requires_admin",
    "engineer_may_approve",
    "CLAIM_TRANSITIONS",
    "AuditAction",
    "Capability",
    "ClaimAction",
    "ClaimStatus",
    "TransitionRule",
    "TransitionStep",
    "resolve_transition",
    "Role",
    "RoleSet",
]

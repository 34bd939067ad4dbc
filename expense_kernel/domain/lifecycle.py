"""
Claim lifecycle domain types (``expense_kernel.domain.lifecycle``).

Responsibility
--------------
The claim state machine as data.  Every legal move is one entry in
``CLAIM_TRANSITIONS`` keyed by ``(current status, action, capability)``;
the entry names the next status and the ordered steps the controller
runs to carry it out.  Auto-verify-then-approve and the ledger debit are
steps in that list rather than branches in the controller.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Terminal statuses (``approved``, ``rejected``) have no outgoing
  entries.  The only backwards move in the table is ``assign``, which
  returns a ``verified`` claim to ``submitted``.
* Within a step list ``WRITE_STATUS`` comes before ``LEDGER_DEBIT``,
  which comes before ``AUDIT``, which comes before any notification.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ClaimStatus(str, Enum):
    """Claim lifecycle states."""

    SUBMITTED = "submitted"
    VERIFIED = "verified"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_CLAIM_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.APPROVED,
    ClaimStatus.REJECTED,
})


class ClaimAction(str, Enum):
    """Actions a caller may request on a claim."""

    SUBMIT = "submit"
    ASSIGN = "assign"
    VERIFY = "verify"
    APPROVE = "approve"
    REJECT = "reject"


class Capability(str, Enum):
    """
    What the actor is acting as for this particular claim.

    Derived per call from the actor's role set and their relation to the
    claim (owner, assigned reviewer); not stored anywhere.
    """

    OWNER = "owner"
    ADMIN = "admin"
    ADMIN_OWNER = "admin_owner"
    ENGINEER = "engineer"
    REVIEWER = "reviewer"


class TransitionStep(str, Enum):
    """Ordered steps the controller executes for a transition."""

    ROUTE_REVIEWER = "route_reviewer"
    LIMIT_GATE = "limit_gate"
    AUTO_VERIFY = "auto_verify"
    DELEGATE_APPROVE = "delegate_approve"
    WRITE_STATUS = "write_status"
    LEDGER_DEBIT = "ledger_debit"
    AUDIT = "audit"
    NOTIFY_ROUTED = "notify_routed"
    NOTIFY_OWNER = "notify_owner"
    ESCALATION_CHECK = "escalation_check"


class AuditAction(str, Enum):
    """Action tags written to the claim audit log."""

    EXPENSE_CREATED = "expense_created"
    EXPENSE_SUBMITTED = "expense_submitted"
    EXPENSE_ASSIGNED = "expense_assigned"
    EXPENSE_VERIFIED = "expense_verified"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    EXPENSE_APPROVAL_REVERTED = "expense_approval_reverted"
    EXPENSE_UPDATED = "expense_updated"


@dataclass(frozen=True)
class TransitionRule:
    """
    One legal move of the claim state machine.

    ``steps`` is executed in order.  ``audit_action`` is the tag written
    by the ``AUDIT`` step, or None when the rule writes no audit row of
    its own (delegation).
    """

    from_status: ClaimStatus
    action: ClaimAction
    capability: Capability
    to_status: ClaimStatus
    steps: tuple[TransitionStep, ...]
    audit_action: AuditAction | None = None

    @property
    def moves_money(self) -> bool:
        return TransitionStep.LEDGER_DEBIT in self.steps

    @property
    def write_pre_image(self) -> ClaimStatus:
        """Status the claim is expected to hold when WRITE_STATUS runs."""
        if TransitionStep.AUTO_VERIFY in self.steps:
            return ClaimStatus.VERIFIED
        return self.from_status


_S = TransitionStep

_ROUTE = (_S.ROUTE_REVIEWER, _S.WRITE_STATUS, _S.AUDIT, _S.NOTIFY_ROUTED)
_ASSIGN = (_S.WRITE_STATUS, _S.AUDIT)
_VERIFY = (_S.WRITE_STATUS, _S.AUDIT, _S.NOTIFY_OWNER, _S.ESCALATION_CHECK)
_APPROVE = (_S.WRITE_STATUS, _S.LEDGER_DEBIT, _S.AUDIT, _S.NOTIFY_OWNER)
_REJECT = (_S.WRITE_STATUS, _S.AUDIT, _S.NOTIFY_OWNER)


def _rules() -> list[TransitionRule]:
    st, act, cap = ClaimStatus, ClaimAction, Capability
    rules = [
        # submit
        TransitionRule(st.SUBMITTED, act.SUBMIT, cap.OWNER, st.SUBMITTED,
                       _ROUTE, AuditAction.EXPENSE_SUBMITTED),
        TransitionRule(st.SUBMITTED, act.SUBMIT, cap.ADMIN, st.SUBMITTED,
                       _ROUTE, AuditAction.EXPENSE_SUBMITTED),
        TransitionRule(st.SUBMITTED, act.SUBMIT, cap.ADMIN_OWNER, st.APPROVED,
                       (_S.DELEGATE_APPROVE,)),
        TransitionRule(st.VERIFIED, act.SUBMIT, cap.ADMIN_OWNER, st.APPROVED,
                       (_S.DELEGATE_APPROVE,)),
        # verify
        TransitionRule(st.SUBMITTED, act.VERIFY, cap.REVIEWER, st.VERIFIED,
                       _VERIFY, AuditAction.EXPENSE_VERIFIED),
        # approve
        TransitionRule(st.SUBMITTED, act.APPROVE, cap.ENGINEER, st.APPROVED,
                       (_S.LIMIT_GATE, *_APPROVE), AuditAction.EXPENSE_APPROVED),
        TransitionRule(st.SUBMITTED, act.APPROVE, cap.ADMIN, st.APPROVED,
                       (_S.AUTO_VERIFY, *_APPROVE), AuditAction.EXPENSE_APPROVED),
        TransitionRule(st.VERIFIED, act.APPROVE, cap.ADMIN, st.APPROVED,
                       _APPROVE, AuditAction.EXPENSE_APPROVED),
    ]
    for from_status in (st.SUBMITTED, st.VERIFIED):
        rules.append(
            TransitionRule(from_status, act.ASSIGN, cap.ADMIN, st.SUBMITTED,
                           _ASSIGN, AuditAction.EXPENSE_ASSIGNED)
        )
        for capability in (cap.ADMIN, cap.REVIEWER):
            rules.append(
                TransitionRule(from_status, act.REJECT, capability, st.REJECTED,
                               _REJECT, AuditAction.EXPENSE_REJECTED)
            )
    return rules


CLAIM_TRANSITIONS: dict[
    tuple[ClaimStatus, ClaimAction, Capability], TransitionRule
] = {(r.from_status, r.action, r.capability): r for r in _rules()}


def resolve_transition(
    status: ClaimStatus | str,
    action: ClaimAction,
    capability: Capability,
) -> TransitionRule | None:
    """Look up the rule for a move, or None if the move is not legal."""
    return CLAIM_TRANSITIONS.get((ClaimStatus(status), action, capability))


def legal_sources(action: ClaimAction, capability: Capability) -> frozenset[ClaimStatus]:
    """Statuses from which ``capability`` may perform ``action``."""
    return frozenset(
        rule.from_status
        for (_, a, c), rule in CLAIM_TRANSITIONS.items()
        if a == action and c == capability
    )


def is_terminal(status: ClaimStatus | str) -> bool:
    return ClaimStatus(status) in TERMINAL_CLAIM_STATUSES

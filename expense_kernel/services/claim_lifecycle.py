"""
ExpenseLifecycleController -- the claim state machine.

Responsibility:
    Validates who may move a claim, resolves the move in
    ``CLAIM_TRANSITIONS``, and executes the rule's steps in order:
    conditional status write, ledger debit, audit entry, notifications.

Architecture position:
    Kernel > Services.  Depends on every other kernel service; nothing in
    the kernel depends on it.

Invariants enforced:
    - Every status write carries the pre-image status as a filter.  Of
      two concurrent transitions from the same status exactly one writes;
      the other gets the business error for the status it now sees.  An
      approval therefore debits at most once.
    - A claim never stays ``approved`` without its debit: if the debit
      fails the status is conditionally moved back to ``verified`` and an
      ``expense_approval_reverted`` entry is written.
    - "Already approved" is checked before role and any other status
      check for approve and reject.
    - Edits (``update_claim``) write only descriptive fields, filtered on
      ``status = submitted``; a concurrent transition makes the edit fail.
    - Notifications are built and dispatched only after the audit entry
      is written.  Their failure never reaches the caller.

Failure modes:
    - PermissionDeniedError, InvalidStateTransitionError (and the
      already-approved / already-rejected subclasses), LimitExceededError,
      ClaimNotFoundError: expected business outcomes.
    - DependencyFailureError: a store call failed.  For approve the
      status compensation has already run.
    - InconsistentStateError: the compensation failed, or a committed
      transition could not be audited.  Logged at CRITICAL.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from decimal import Decimal
from uuid import UUID

from expense_kernel.domain.amounts import format_amount, require_positive
from expense_kernel.domain.dtos import AuditLogEntry, BalanceChange, Claim
from expense_kernel.domain.escalation import engineer_may_approve, requires_admin
from expense_kernel.domain.lifecycle import (
    AuditAction,
    Capability,
    ClaimAction,
    ClaimStatus,
    TransitionRule,
    TransitionStep,
    resolve_transition,
)
from expense_kernel.domain import notifications as templates
from expense_kernel.domain.notifications import NotificationEvent
from expense_kernel.domain.roles import Role, RoleSet
from expense_kernel.exceptions import (
    AccountNotFoundError,
    ClaimAlreadyApprovedError,
    ClaimAlreadyRejectedError,
    ClaimNotFoundError,
    DependencyFailureError,
    ExpenseKernelError,
    InconsistentStateError,
    InvalidStateTransitionError,
    LimitExceededError,
    PermissionDeniedError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.audit_recorder import AuditRecorder
from expense_kernel.services.authorization import (
    AuthorizationGate,
    RoleResolver,
    parse_account_id,
)
from expense_kernel.services.escalation_policy import EscalationPolicy
from expense_kernel.services.ledger_service import BalanceLedger
from expense_kernel.services.notification_dispatcher import NotificationDispatcher
from expense_kernel.store.accounts import AccountStore
from expense_kernel.store.claims import ClaimStore

logger = get_logger("services.claim_lifecycle")

AUTO_VERIFY_COMMENT = "Auto-verified by admin during approval"
ADMIN_SELF_APPROVAL_COMMENT = "Auto-approved: Admin expense"
APPROVAL_REVERTED_COMMENT = "Failed to deduct balance. Expense approval reverted."
EDIT_LOCKED_MESSAGE = (
    "Only submitted expenses can be edited. "
    "Verified or approved expenses cannot be modified."
)

_STATE_MESSAGES = {
    (ClaimAction.SUBMIT, Capability.OWNER): "Only submitted expenses can be re-submitted",
    (ClaimAction.SUBMIT, Capability.ADMIN): "Only submitted expenses can be re-submitted",
    (ClaimAction.ASSIGN, Capability.ADMIN): (
        "Only submitted or verified expenses can be assigned"
    ),
    (ClaimAction.VERIFY, Capability.REVIEWER): "Only submitted expenses can be verified",
    (ClaimAction.APPROVE, Capability.ENGINEER): (
        "Engineers can only approve submitted expenses"
    ),
    (ClaimAction.APPROVE, Capability.ADMIN): (
        "Admins can only approve submitted or verified expenses"
    ),
}

_EVENT_NAMES = {
    ClaimAction.SUBMIT: "claim_submitted",
    ClaimAction.ASSIGN: "claim_assigned",
    ClaimAction.VERIFY: "claim_verified",
    ClaimAction.APPROVE: "claim_approved",
    ClaimAction.REJECT: "claim_rejected",
}


@dataclass
class _Transition:
    """Mutable working state while a rule's steps execute."""

    claim: Claim
    actor_id: UUID
    actor_roles: RoleSet
    rule: TransitionRule
    comment: str | None = None
    fields: dict = field(default_factory=dict)
    audit_comment: str | None = None
    current: ClaimStatus | None = None
    debit: BalanceChange | None = None
    routed_to: UUID | None = None
    result: Claim | None = None

    def __post_init__(self):
        if self.current is None:
            self.current = self.rule.from_status


class ExpenseLifecycleController:
    """Drives claims through submitted -> verified -> approved / rejected."""

    def __init__(
        self,
        claims: ClaimStore,
        accounts: AccountStore,
        roles: RoleResolver,
        gate: AuthorizationGate,
        ledger: BalanceLedger,
        escalation: EscalationPolicy,
        audit: AuditRecorder,
        notifications: NotificationDispatcher,
    ):
        self._claims = claims
        self._accounts = accounts
        self._roles = roles
        self._gate = gate
        self._ledger = ledger
        self._escalation = escalation
        self._audit = audit
        self._notifications = notifications

        self._steps: dict[TransitionStep, Callable[[_Transition], None]] = {
            TransitionStep.ROUTE_REVIEWER: self._route_reviewer,
            TransitionStep.LIMIT_GATE: self._limit_gate,
            TransitionStep.AUTO_VERIFY: self._auto_verify,
            TransitionStep.DELEGATE_APPROVE: self._delegate_approve,
            TransitionStep.WRITE_STATUS: self._write_status,
            TransitionStep.LEDGER_DEBIT: self._ledger_debit,
            TransitionStep.AUDIT: self._audit_step,
            TransitionStep.NOTIFY_ROUTED: self._notify_routed,
            TransitionStep.NOTIFY_OWNER: self._notify_owner,
            TransitionStep.ESCALATION_CHECK: self._escalation_check,
        }

    # =========================================================================
    # Reads and creation
    # =========================================================================

    def get_claim(self, claim_id: UUID) -> Claim:
        return self._load(claim_id)

    def audit_trail(self, claim_id: UUID) -> list[AuditLogEntry]:
        return self._audit.trail(claim_id)

    def create_claim(
        self,
        owner_id: UUID,
        title: str,
        amount: Decimal,
        category: str,
        purpose: str | None = None,
    ) -> Claim:
        """
        Create a claim in status ``submitted`` with its transaction number.

        The claim has no reviewer until its owner calls ``submit``.
        """
        amount = require_positive(amount)
        owner = parse_account_id(owner_id)
        if owner is None or self._accounts.get(owner) is None:
            raise AccountNotFoundError(str(owner_id))

        claim = self._claims.insert_submitted(owner, title, amount, category, purpose)
        with LogContext.bind(claim_id=claim.id, actor_id=owner):
            self._record_committed(claim.id, owner, AuditAction.EXPENSE_CREATED, None, "create")
            logger.info(
                "claim_created",
                extra={
                    "transaction_number": claim.transaction_number,
                    "amount": str(amount),
                    "category": category,
                },
            )
        return claim

    def update_claim(
        self,
        claim_id: UUID,
        actor_id: UUID,
        title: str | None = None,
        amount: Decimal | None = None,
        category: str | None = None,
        purpose: str | None = None,
    ) -> Claim:
        """
        Edit the descriptive fields of a submitted claim.

        The owner may edit their own claim and an admin may edit any claim,
        but only while it is ``submitted``.  Status, reviewer and
        transaction number are never touched.  Fields left as None keep
        their value; a call that changes nothing writes nothing.
        """
        claim = self._load(claim_id)
        actor = parse_account_id(actor_id)
        if not self._gate.may_mutate(claim, actor, self._roles.roles_of(actor)):
            raise PermissionDeniedError(
                str(actor_id), "update", "You don't have permission to edit this expense"
            )
        if claim.status != ClaimStatus.SUBMITTED:
            raise InvalidStateTransitionError(
                str(claim.id), claim.status.value, "update", EDIT_LOCKED_MESSAGE
            )

        changes = {
            key: value
            for key, value in (
                ("title", title),
                ("amount", require_positive(amount) if amount is not None else None),
                ("category", category),
                ("purpose", purpose),
            )
            if value is not None
        }
        if not changes:
            return claim

        if not self._claims.update_details(claim.id, **changes):
            current = self._claims.get(claim.id)
            if current is None:
                raise ClaimNotFoundError(str(claim.id))
            raise InvalidStateTransitionError(
                str(claim.id), current.status.value, "update", EDIT_LOCKED_MESSAGE
            )

        with LogContext.bind(claim_id=claim.id, actor_id=actor):
            self._record_committed(
                claim.id,
                actor,
                AuditAction.EXPENSE_UPDATED,
                f"Updated {', '.join(sorted(changes))}",
                "update",
            )
            logger.info(
                "claim_updated",
                extra={
                    "fields": sorted(changes),
                    "amount": str(changes.get("amount", claim.amount)),
                },
            )
        return replace(claim, **changes)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(self, claim_id: UUID, actor_id: UUID) -> Claim:
        claim = self._load(claim_id)
        actor = parse_account_id(actor_id)
        roles = self._roles.roles_of(actor)

        if roles.is_admin and claim.owner_id == actor:
            capability = Capability.ADMIN_OWNER
        elif roles.is_admin:
            capability = Capability.ADMIN
        elif claim.owner_id == actor and actor is not None:
            capability = Capability.OWNER
        else:
            raise PermissionDeniedError(
                str(actor_id), "submit", "You don't have permission to submit this expense"
            )

        rule = self._resolve(claim, ClaimAction.SUBMIT, capability)
        return self._execute(_Transition(claim, actor, roles, rule))

    def assign(self, claim_id: UUID, reviewer_id: UUID, admin_id: UUID) -> Claim:
        claim = self._load(claim_id)
        admin = parse_account_id(admin_id)
        roles = self._roles.roles_of(admin)
        if not roles.is_admin:
            raise PermissionDeniedError(
                str(admin_id),
                "assign",
                "Only administrators can assign expenses to engineers",
            )

        reviewer = parse_account_id(reviewer_id)
        if not self._roles.has_role(reviewer, Role.ENGINEER):
            raise PermissionDeniedError(
                str(reviewer_id), "assign", "Assigned user must have engineer role"
            )

        rule = self._resolve(claim, ClaimAction.ASSIGN, Capability.ADMIN)
        ctx = _Transition(claim, admin, roles, rule)
        ctx.fields["assigned_reviewer_id"] = reviewer
        ctx.audit_comment = f"Assigned to engineer {reviewer}"
        return self._execute(ctx)

    def verify(
        self,
        claim_id: UUID,
        reviewer_id: UUID,
        comment: str | None = None,
    ) -> Claim:
        claim = self._load(claim_id)
        reviewer = parse_account_id(reviewer_id)
        if not self._gate.is_assigned_reviewer(claim, reviewer):
            raise PermissionDeniedError(
                str(reviewer_id), "verify", "You don't have permission to review this expense"
            )

        rule = self._resolve(claim, ClaimAction.VERIFY, Capability.REVIEWER)
        ctx = _Transition(claim, reviewer, self._roles.roles_of(reviewer), rule, comment)
        if comment:
            ctx.fields["reviewer_comment"] = comment
        return self._execute(ctx)

    def approve(
        self,
        claim_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> Claim:
        claim = self._load(claim_id)
        if claim.status == ClaimStatus.APPROVED:
            raise ClaimAlreadyApprovedError(str(claim.id), ClaimAction.APPROVE.value)

        actor = parse_account_id(actor_id)
        roles = self._roles.roles_of(actor)
        if roles.is_admin:
            capability = Capability.ADMIN
        elif roles.is_engineer:
            capability = Capability.ENGINEER
        else:
            raise PermissionDeniedError(
                str(actor_id),
                "approve",
                "Only administrators or engineers can approve expenses",
            )

        rule = self._resolve(claim, ClaimAction.APPROVE, capability)
        ctx = _Transition(claim, actor, roles, rule, comment)
        if comment:
            ctx.fields["admin_comment"] = comment
        return self._execute(ctx)

    def reject(
        self,
        claim_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> Claim:
        claim = self._load(claim_id)
        if claim.status == ClaimStatus.APPROVED:
            raise ClaimAlreadyApprovedError(str(claim.id), ClaimAction.REJECT.value)

        actor = parse_account_id(actor_id)
        roles = self._roles.roles_of(actor)
        if not roles.can_review:
            raise PermissionDeniedError(
                str(actor_id),
                "reject",
                "Only administrators or engineers can reject expenses",
            )
        if claim.status == ClaimStatus.REJECTED:
            raise ClaimAlreadyRejectedError(str(claim.id), ClaimAction.REJECT.value)

        if roles.is_admin:
            capability = Capability.ADMIN
        elif self._gate.is_assigned_reviewer(claim, actor):
            capability = Capability.REVIEWER
        else:
            raise PermissionDeniedError(
                str(actor_id), "reject", "You don't have permission to reject this expense"
            )

        rule = self._resolve(claim, ClaimAction.REJECT, capability)
        ctx = _Transition(claim, actor, roles, rule, comment)
        if comment:
            ctx.fields["admin_comment"] = comment
        return self._execute(ctx)

    # =========================================================================
    # Rule resolution and execution
    # =========================================================================

    def _load(self, claim_id: UUID) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(str(claim_id))
        return claim

    def _resolve(
        self,
        claim: Claim,
        action: ClaimAction,
        capability: Capability,
    ) -> TransitionRule:
        rule = resolve_transition(claim.status, action, capability)
        if rule is not None:
            return rule
        if claim.status == ClaimStatus.APPROVED:
            raise ClaimAlreadyApprovedError(str(claim.id), action.value)
        if claim.status == ClaimStatus.REJECTED:
            raise ClaimAlreadyRejectedError(str(claim.id), action.value)
        raise InvalidStateTransitionError(
            str(claim.id),
            claim.status.value,
            action.value,
            _STATE_MESSAGES.get((action, capability)),
        )

    def _execute(self, ctx: _Transition) -> Claim:
        rule = ctx.rule
        with LogContext.bind(claim_id=ctx.claim.id, actor_id=ctx.actor_id):
            for step in rule.steps:
                self._steps[step](ctx)
                if ctx.result is not None:
                    return ctx.result

            result = replace(ctx.claim, status=rule.to_status, **ctx.fields)
            logger.info(
                _EVENT_NAMES[rule.action],
                extra={
                    "from_status": rule.from_status.value,
                    "to_status": rule.to_status.value,
                    "capability": rule.capability.value,
                    "amount": str(ctx.claim.amount),
                },
            )
            return result

    def _conflict(self, ctx: _Transition, expected: ClaimStatus) -> None:
        """Raise the business error for a status write that matched no row."""
        action = ctx.rule.action.value
        current = self._claims.get(ctx.claim.id)
        logger.info(
            "claim_transition_conflict",
            extra={
                "action": action,
                "expected_status": expected.value,
                "current_status": current.status.value if current else None,
            },
        )
        if current is None:
            raise ClaimNotFoundError(str(ctx.claim.id))
        if current.status == ClaimStatus.APPROVED:
            raise ClaimAlreadyApprovedError(str(ctx.claim.id), action)
        if current.status == ClaimStatus.REJECTED:
            raise ClaimAlreadyRejectedError(str(ctx.claim.id), action)
        raise InvalidStateTransitionError(
            str(ctx.claim.id),
            current.status.value,
            action,
            f"Expense changed concurrently: expected '{expected.value}', "
            f"found '{current.status.value}'",
        )

    def _record_committed(
        self,
        claim_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        comment: str | None,
        operation: str,
    ) -> None:
        """Audit a change that is already committed; failure is inconsistency."""
        try:
            self._audit.record(claim_id, actor_id, action, comment)
        except DependencyFailureError as exc:
            logger.critical(
                "audit_write_failed_after_commit",
                extra={"operation": operation, "audit_action": action.value},
                exc_info=True,
            )
            raise InconsistentStateError(
                operation,
                f"committed change has no audit entry ({action.value})",
                exc.cause,
            ) from exc

    # =========================================================================
    # Steps
    # =========================================================================

    def _route_reviewer(self, ctx: _Transition) -> None:
        if ctx.actor_roles.is_engineer:
            reviewer = None
            ctx.audit_comment = "Expense submitted by engineer - sent directly to admin"
        else:
            actor = self._accounts.get(ctx.actor_id)
            reviewer = actor.reporting_engineer_id if actor else None
            if reviewer is not None:
                ctx.audit_comment = (
                    f"Expense submitted and auto-assigned to engineer {reviewer}"
                )
            else:
                ctx.audit_comment = (
                    "Expense submitted by employee without assigned engineer "
                    "- sent directly to admin"
                )
        ctx.fields["assigned_reviewer_id"] = reviewer
        ctx.routed_to = reviewer

    def _limit_gate(self, ctx: _Transition) -> None:
        try:
            limit = self._escalation.current_limit()
        except DependencyFailureError as exc:
            raise DependencyFailureError(
                "approve",
                exc.cause,
                "Unable to verify approval limit. Please contact administrator.",
            ) from exc
        if not engineer_may_approve(ctx.claim.amount, limit):
            logger.info(
                "engineer_approval_limit_exceeded",
                extra={"amount": str(ctx.claim.amount), "limit": str(limit)},
            )
            raise LimitExceededError(str(ctx.claim.id), ctx.claim.amount, limit)

    def _auto_verify(self, ctx: _Transition) -> None:
        claim = ctx.claim
        if not self._claims.transition(
            claim.id, {ClaimStatus.SUBMITTED}, ClaimStatus.VERIFIED
        ):
            self._conflict(ctx, ClaimStatus.SUBMITTED)
        ctx.current = ClaimStatus.VERIFIED
        self._record_committed(
            claim.id,
            ctx.actor_id,
            AuditAction.EXPENSE_VERIFIED,
            AUTO_VERIFY_COMMENT,
            "approve",
        )
        logger.info("claim_auto_verified", extra={"amount": str(claim.amount)})
        self._publish(
            lambda: templates.expense_verified(
                claim.owner_id,
                claim.id,
                claim.title,
                self._name(ctx.actor_id, "Admin"),
            )
        )

    def _delegate_approve(self, ctx: _Transition) -> None:
        logger.info("admin_self_submission_auto_approved")
        ctx.result = self.approve(ctx.claim.id, ctx.actor_id, ADMIN_SELF_APPROVAL_COMMENT)

    def _write_status(self, ctx: _Transition) -> None:
        expected = ctx.current
        if not self._claims.transition(
            ctx.claim.id, {expected}, ctx.rule.to_status, **ctx.fields
        ):
            self._conflict(ctx, expected)
        ctx.current = ctx.rule.to_status

    def _ledger_debit(self, ctx: _Transition) -> None:
        claim = ctx.claim
        try:
            ctx.debit = self._ledger.debit(claim.owner_id, claim.amount)
        except ExpenseKernelError as exc:
            self._compensate_approval(ctx, exc)

    def _compensate_approval(self, ctx: _Transition, original: Exception) -> None:
        claim = ctx.claim
        logger.warning(
            "approval_compensation_started",
            extra={"amount": str(claim.amount), "original_error": str(original)},
        )
        try:
            reverted = self._claims.transition(
                claim.id, {ClaimStatus.APPROVED}, ClaimStatus.VERIFIED
            )
        except DependencyFailureError as comp_exc:
            logger.critical(
                "approval_compensation_failed",
                extra={"amount": str(claim.amount)},
                exc_info=True,
            )
            raise InconsistentStateError(
                "approve", str(original), comp_exc.cause
            ) from comp_exc
        if not reverted:
            logger.critical(
                "approval_compensation_failed",
                extra={"amount": str(claim.amount), "reason": "status_changed"},
            )
            raise InconsistentStateError(
                "approve",
                str(original),
                "claim no longer approved when reverting",
            ) from original

        try:
            self._audit.record(
                claim.id,
                ctx.actor_id,
                AuditAction.EXPENSE_APPROVAL_REVERTED,
                APPROVAL_REVERTED_COMMENT,
            )
        except DependencyFailureError:
            logger.error("approval_revert_audit_failed", exc_info=True)

        logger.warning("approval_compensated", extra={"amount": str(claim.amount)})
        raise DependencyFailureError(
            "approve",
            str(original),
            APPROVAL_REVERTED_COMMENT,
        ) from original

    def _audit_step(self, ctx: _Transition) -> None:
        comment = ctx.audit_comment if ctx.audit_comment is not None else ctx.comment
        if ctx.debit is not None:
            comment = self._approval_comment(ctx.comment, ctx.claim.amount, ctx.debit.balance)
        self._record_committed(
            ctx.claim.id,
            ctx.actor_id,
            ctx.rule.audit_action,
            comment,
            ctx.rule.action.value,
        )

    @staticmethod
    def _approval_comment(comment: str | None, amount: Decimal, balance: Decimal) -> str:
        if balance < 0:
            status = f"Negative balance: {format_amount(abs(balance))}"
        else:
            status = f"Remaining balance: {format_amount(balance)}"
        return f"{comment or ''} Balance deducted: {format_amount(amount)}. {status}".strip()

    def _notify_routed(self, ctx: _Transition) -> None:
        claim = ctx.claim

        def build() -> NotificationEvent:
            recipients = (
                [ctx.routed_to]
                if ctx.routed_to is not None
                else self._accounts.ids_with_role(Role.ADMIN)
            )
            fallback = "Engineer" if ctx.actor_roles.is_engineer else "Employee"
            return templates.expense_submitted(
                recipients, claim.id, claim.title, self._name(ctx.actor_id, fallback)
            )

        self._publish(build)

    def _notify_owner(self, ctx: _Transition) -> None:
        claim = ctx.claim
        action = ctx.rule.action
        fallback = "Admin" if ctx.actor_roles.is_admin else "Engineer"

        def build() -> NotificationEvent:
            actor_name = self._name(ctx.actor_id, fallback)
            if action == ClaimAction.VERIFY:
                return templates.expense_verified(
                    claim.owner_id, claim.id, claim.title, actor_name
                )
            if action == ClaimAction.APPROVE:
                if self._roles.has_role(claim.owner_id, Role.ENGINEER):
                    return templates.engineer_expense_approved(
                        claim.owner_id, claim.id, claim.title, claim.amount, actor_name
                    )
                return templates.expense_approved(
                    claim.owner_id, claim.id, claim.title, claim.amount, actor_name
                )
            return templates.expense_rejected(
                claim.owner_id, claim.id, claim.title, actor_name, ctx.comment
            )

        self._publish(build)

    def _escalation_check(self, ctx: _Transition) -> None:
        claim = ctx.claim
        try:
            limit = self._escalation.current_limit()
        except DependencyFailureError:
            logger.warning("escalation_check_skipped", exc_info=True)
            return
        if not requires_admin(claim.amount, limit):
            return

        logger.info(
            "claim_escalated_to_admin",
            extra={"amount": str(claim.amount), "limit": str(limit)},
        )

        def build() -> NotificationEvent:
            return templates.expense_awaiting_approval(
                self._accounts.ids_with_role(Role.ADMIN),
                claim.id,
                claim.title,
                claim.amount,
                self._name(ctx.actor_id, "Engineer"),
                self._name(claim.owner_id, "Employee"),
            )

        self._publish(build)

    # =========================================================================
    # Notification helpers
    # =========================================================================

    def _name(self, account_id: UUID | None, fallback: str) -> str:
        if account_id is None:
            return fallback
        return self._accounts.names([account_id]).get(account_id, fallback)

    def _publish(self, build: Callable[[], NotificationEvent]) -> None:
        try:
            event = build()
        except DependencyFailureError:
            logger.warning("notification_build_failed", exc_info=True)
            return
        if event.recipients:
            self._notifications.dispatch(event)

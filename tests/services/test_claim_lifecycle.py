"""
Tests for ExpenseLifecycleController.

Covers editing of submitted claims, routing on submit, reviewer
assignment, verification with the admin escalation notification, the
approval paths (engineer limit gate, admin auto-verify, admin
self-approval), rejection precedence, and the approve compensation when
the ledger debit fails.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.lifecycle import AuditAction, ClaimStatus
from expense_kernel.domain.roles import Role
from expense_kernel.exceptions import (
    AccountNotFoundError,
    ClaimAlreadyApprovedError,
    ClaimAlreadyRejectedError,
    ClaimNotFoundError,
    DependencyFailureError,
    InconsistentStateError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LimitExceededError,
    PermissionDeniedError,
)
from expense_kernel.services.claim_lifecycle import (
    ADMIN_SELF_APPROVAL_COMMENT,
    APPROVAL_REVERTED_COMMENT,
    AUTO_VERIFY_COMMENT,
    EDIT_LOCKED_MESSAGE,
)


def _actions(kernel, claim_id):
    return [e.action for e in kernel.lifecycle.audit_trail(claim_id)]


def _titles(kernel, account_id):
    return [n.title for n in kernel.notification_store.for_user(account_id)]


class TestCreateClaim:
    def test_created_in_submitted_with_transaction_number(self, kernel, employee, make_claim):
        claim = make_claim(employee, "250")

        assert claim.status == ClaimStatus.SUBMITTED
        assert claim.transaction_number == "00001"
        assert claim.assigned_reviewer_id is None
        assert _actions(kernel, claim.id) == [AuditAction.EXPENSE_CREATED.value]

    def test_transaction_numbers_increase(self, employee, make_claim):
        first = make_claim(employee)
        second = make_claim(employee)
        assert (first.transaction_number, second.transaction_number) == ("00001", "00002")

    def test_non_positive_amount_rejected(self, employee, make_claim):
        with pytest.raises(InvalidAmountError):
            make_claim(employee, "0")

    def test_unknown_owner(self, kernel):
        with pytest.raises(AccountNotFoundError):
            kernel.lifecycle.create_claim(uuid4(), "Taxi", Decimal("10"), "travel")


class TestUpdateClaim:
    def test_owner_edits_submitted_claim(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)

        result = kernel.lifecycle.update_claim(
            claim.id, employee.id, title="Client dinner", amount=Decimal("120.50")
        )

        stored = kernel.lifecycle.get_claim(claim.id)
        assert result == stored
        assert (stored.title, stored.amount) == ("Client dinner", Decimal("120.50"))
        assert stored.status == ClaimStatus.SUBMITTED
        assert stored.assigned_reviewer_id == engineer.id
        assert stored.transaction_number == claim.transaction_number
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert trail[-1].action == AuditAction.EXPENSE_UPDATED.value
        assert trail[-1].comment == "Updated amount, title"
        assert trail[-1].actor_id == employee.id

    def test_owner_cannot_edit_after_verification(
        self, kernel, employee, engineer, make_claim
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.update_claim(claim.id, employee.id, title="Changed")

        assert kernel.lifecycle.get_claim(claim.id).title == claim.title

    def test_admin_edits_any_submitted_claim(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee)

        result = kernel.lifecycle.update_claim(claim.id, admin.id, category="travel")

        assert result.category == "travel"
        assert kernel.lifecycle.get_claim(claim.id).category == "travel"
        assert kernel.lifecycle.audit_trail(claim.id)[-1].actor_id == admin.id

    @pytest.mark.parametrize("status", ["verified", "approved", "rejected"])
    def test_admin_cannot_edit_decided_claim(
        self, kernel, employee, engineer, admin, make_claim, status
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        if status == "verified":
            kernel.lifecycle.verify(claim.id, engineer.id)
        elif status == "approved":
            kernel.lifecycle.approve(claim.id, admin.id)
        else:
            kernel.lifecycle.reject(claim.id, admin.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            kernel.lifecycle.update_claim(claim.id, admin.id, title="Late edit")

        assert exc_info.value.current_status == status
        assert str(exc_info.value) == EDIT_LOCKED_MESSAGE

    def test_other_employee_cannot_edit(
        self, kernel, employee, unassigned_employee, make_claim
    ):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.update_claim(claim.id, unassigned_employee.id, title="Mine")

    def test_reviewer_cannot_edit(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.update_claim(claim.id, engineer.id, amount=Decimal("1"))

    def test_non_positive_amount_rejected(self, kernel, employee, make_claim):
        claim = make_claim(employee, "100")
        with pytest.raises(InvalidAmountError):
            kernel.lifecycle.update_claim(claim.id, employee.id, amount=Decimal("-5"))
        assert kernel.lifecycle.get_claim(claim.id).amount == Decimal("100")

    def test_empty_edit_writes_nothing(self, kernel, employee, make_claim):
        claim = make_claim(employee)

        assert kernel.lifecycle.update_claim(claim.id, employee.id) == claim
        assert _actions(kernel, claim.id) == [AuditAction.EXPENSE_CREATED.value]

    def test_verification_between_read_and_write_blocks_edit(
        self, kernel, employee, engineer, make_claim, monkeypatch
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        snapshot = kernel.claims.get(claim.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        original_get = kernel.claims.get
        stale = [snapshot]

        def get(claim_id):
            return stale.pop() if stale else original_get(claim_id)

        monkeypatch.setattr(kernel.claims, "get", get)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            kernel.lifecycle.update_claim(claim.id, employee.id, title="Too late")

        assert exc_info.value.current_status == "verified"
        stored = original_get(claim.id)
        assert stored.title == claim.title
        assert stored.status == ClaimStatus.VERIFIED
        assert AuditAction.EXPENSE_UPDATED.value not in _actions(kernel, claim.id)


class TestSubmit:
    def test_employee_routed_to_reporting_engineer(
        self, kernel, employee, engineer, admin, make_claim
    ):
        claim = make_claim(employee)

        result = kernel.lifecycle.submit(claim.id, employee.id)

        assert result.status == ClaimStatus.SUBMITTED
        assert result.assigned_reviewer_id == engineer.id
        assert kernel.lifecycle.get_claim(claim.id).assigned_reviewer_id == engineer.id
        assert _titles(kernel, engineer.id) == ["New Expense Claim"]
        assert _titles(kernel, admin.id) == []
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert trail[-1].action == AuditAction.EXPENSE_SUBMITTED.value
        assert trail[-1].comment == (
            f"Expense submitted and auto-assigned to engineer {engineer.id}"
        )

    def test_employee_without_engineer_routed_to_all_admins(
        self, kernel, unassigned_employee, admin, make_account, make_claim
    ):
        second_admin = make_account("Second Admin", roles=(Role.ADMIN,))
        claim = make_claim(unassigned_employee, "100")

        result = kernel.lifecycle.submit(claim.id, unassigned_employee.id)

        assert result.assigned_reviewer_id is None
        assert _titles(kernel, admin.id) == ["New Expense Claim"]
        assert _titles(kernel, second_admin.id) == ["New Expense Claim"]

    def test_engineer_own_claim_goes_to_admin_pool(self, kernel, engineer, admin, make_claim):
        claim = make_claim(engineer)

        result = kernel.lifecycle.submit(claim.id, engineer.id)

        assert result.assigned_reviewer_id is None
        assert _titles(kernel, admin.id) == ["New Expense Claim"]
        assert kernel.lifecycle.audit_trail(claim.id)[-1].comment == (
            "Expense submitted by engineer - sent directly to admin"
        )

    def test_admin_own_claim_auto_approves(self, kernel, admin, make_claim):
        claim = make_claim(admin, "100")

        result = kernel.lifecycle.submit(claim.id, admin.id)

        assert result.status == ClaimStatus.APPROVED
        assert result.admin_comment == ADMIN_SELF_APPROVAL_COMMENT
        assert kernel.accounts.balance(admin.id) == Decimal("-100")
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert [e.action for e in trail] == [
            AuditAction.EXPENSE_CREATED.value,
            AuditAction.EXPENSE_VERIFIED.value,
            AuditAction.EXPENSE_APPROVED.value,
        ]
        assert trail[-1].comment == (
            "Auto-approved: Admin expense Balance deducted: 100.00. "
            "Negative balance: 100.00"
        )

    def test_stranger_cannot_submit(self, kernel, employee, unassigned_employee, make_claim):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.submit(claim.id, unassigned_employee.id)

    def test_malformed_actor_id_is_denied(self, kernel, employee, make_claim):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.submit(claim.id, "not-a-uuid")

    def test_owner_cannot_resubmit_verified_claim(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            kernel.lifecycle.submit(claim.id, employee.id)
        assert exc_info.value.current_status == "verified"

    def test_missing_claim(self, kernel, employee):
        with pytest.raises(ClaimNotFoundError):
            kernel.lifecycle.submit(uuid4(), employee.id)


class TestAssign:
    def test_admin_assigns_engineer(self, kernel, admin, unassigned_employee, engineer, make_claim):
        claim = make_claim(unassigned_employee)
        kernel.lifecycle.submit(claim.id, unassigned_employee.id)

        result = kernel.lifecycle.assign(claim.id, engineer.id, admin.id)

        assert result.assigned_reviewer_id == engineer.id
        assert result.status == ClaimStatus.SUBMITTED
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert trail[-1].action == AuditAction.EXPENSE_ASSIGNED.value
        assert trail[-1].comment == f"Assigned to engineer {engineer.id}"

    def test_assign_verified_claim_returns_it_to_submitted(
        self, kernel, admin, employee, engineer, make_account, make_claim
    ):
        other_engineer = make_account("Other Engineer", roles=(Role.ENGINEER,))
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        result = kernel.lifecycle.assign(claim.id, other_engineer.id, admin.id)

        assert result.status == ClaimStatus.SUBMITTED
        assert kernel.lifecycle.get_claim(claim.id).assigned_reviewer_id == other_engineer.id

    def test_non_admin_cannot_assign(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.assign(claim.id, engineer.id, engineer.id)

    def test_reviewer_must_be_engineer(self, kernel, admin, employee, make_claim):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError, match="engineer role"):
            kernel.lifecycle.assign(claim.id, employee.id, admin.id)


class TestVerify:
    def test_assigned_reviewer_verifies(self, kernel, employee, engineer, admin, make_claim):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)

        result = kernel.lifecycle.verify(claim.id, engineer.id, "Receipt checked")

        assert result.status == ClaimStatus.VERIFIED
        assert result.reviewer_comment == "Receipt checked"
        assert "Expense Verified" in _titles(kernel, employee.id)
        # Below the limit: admins are not told
        assert _titles(kernel, admin.id) == []

    def test_claim_at_limit_escalates_to_admins(
        self, kernel, employee, engineer, admin, make_claim
    ):
        claim = make_claim(employee, "50000")
        kernel.lifecycle.submit(claim.id, employee.id)

        kernel.lifecycle.verify(claim.id, engineer.id)

        assert _titles(kernel, admin.id) == ["Expense Verified - Awaiting Approval"]

    def test_escalation_uses_configured_limit(
        self, kernel, employee, engineer, admin, make_claim, set_setting
    ):
        set_setting("engineer_approval_limit", "1000")
        claim = make_claim(employee, "1500")
        kernel.lifecycle.submit(claim.id, employee.id)

        kernel.lifecycle.verify(claim.id, engineer.id)

        assert _titles(kernel, admin.id) == ["Expense Verified - Awaiting Approval"]

    def test_other_engineer_cannot_verify(self, kernel, employee, make_account, make_claim):
        stranger = make_account("Stranger", roles=(Role.ENGINEER,))
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)

        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.verify(claim.id, stranger.id)

    def test_verify_twice_fails(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        with pytest.raises(InvalidStateTransitionError, match="Only submitted"):
            kernel.lifecycle.verify(claim.id, engineer.id)

    def test_verify_approved_claim_reports_already_approved(
        self, kernel, employee, engineer, admin, make_claim
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.approve(claim.id, admin.id)

        with pytest.raises(ClaimAlreadyApprovedError):
            kernel.lifecycle.verify(claim.id, engineer.id)


class TestEngineerApproval:
    def test_engineer_approves_own_claim_within_limit(
        self, kernel, engineer, admin, make_claim
    ):
        claim = make_claim(engineer, "40000")
        kernel.lifecycle.submit(claim.id, engineer.id)

        result = kernel.lifecycle.approve(claim.id, engineer.id)

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(engineer.id) == Decimal("60000")

    def test_engineer_cannot_verify_unassigned_own_claim(self, kernel, engineer, make_claim):
        claim = make_claim(engineer, "40000")
        kernel.lifecycle.submit(claim.id, engineer.id)

        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.verify(claim.id, engineer.id)

    def test_engineer_over_limit_raises_and_claim_stays_submitted(
        self, kernel, employee, engineer, make_claim
    ):
        claim = make_claim(employee, "60000")
        kernel.lifecycle.submit(claim.id, employee.id)

        with pytest.raises(LimitExceededError) as exc_info:
            kernel.lifecycle.approve(claim.id, engineer.id)

        assert exc_info.value.amount == Decimal("60000")
        assert exc_info.value.limit == Decimal("50000")
        assert "60000" in str(exc_info.value)
        assert "50000" in str(exc_info.value)
        assert kernel.lifecycle.get_claim(claim.id).status == ClaimStatus.SUBMITTED
        assert kernel.accounts.balance(employee.id) == Decimal("100000")

    def test_engineer_may_approve_exactly_at_limit(self, kernel, employee, engineer, make_claim):
        claim = make_claim(employee, "50000")
        kernel.lifecycle.submit(claim.id, employee.id)

        result = kernel.lifecycle.approve(claim.id, engineer.id)

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(employee.id) == Decimal("50000")

    def test_configured_limit_raises_ceiling(
        self, kernel, employee, engineer, make_claim, set_setting
    ):
        set_setting("engineer_approval_limit", "70000")
        claim = make_claim(employee, "60000")
        kernel.lifecycle.submit(claim.id, employee.id)

        assert kernel.lifecycle.approve(claim.id, engineer.id).status == ClaimStatus.APPROVED

    def test_invalid_configured_limit_falls_back(
        self, kernel, employee, engineer, make_claim, set_setting, captured_logs
    ):
        set_setting("engineer_approval_limit", "lots")
        claim = make_claim(employee, "60000")
        kernel.lifecycle.submit(claim.id, employee.id)

        with pytest.raises(LimitExceededError):
            kernel.lifecycle.approve(claim.id, engineer.id)
        assert any(r["message"] == "approval_limit_invalid" for r in captured_logs())

    def test_engineer_cannot_approve_verified_claim(
        self, kernel, employee, engineer, make_claim
    ):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        with pytest.raises(InvalidStateTransitionError, match="Engineers can only approve"):
            kernel.lifecycle.approve(claim.id, engineer.id)

    def test_limit_read_failure_blocks_approval(
        self, kernel, employee, engineer, make_claim, monkeypatch
    ):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)

        def broken(key):
            raise DependencyFailureError("setting_get", "connection lost")

        monkeypatch.setattr(kernel.settings, "get_setting", broken)

        with pytest.raises(DependencyFailureError, match="Unable to verify approval limit"):
            kernel.lifecycle.approve(claim.id, engineer.id)
        assert kernel.lifecycle.get_claim(claim.id).status == ClaimStatus.SUBMITTED


class TestAdminApproval:
    def test_admin_approves_submitted_claim_with_auto_verify(
        self, kernel, employee, admin, make_claim
    ):
        claim = make_claim(employee, "70000")
        kernel.lifecycle.submit(claim.id, employee.id)

        result = kernel.lifecycle.approve(claim.id, admin.id, "OK")

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(employee.id) == Decimal("30000")
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert [e.action for e in trail] == [
            AuditAction.EXPENSE_CREATED.value,
            AuditAction.EXPENSE_SUBMITTED.value,
            AuditAction.EXPENSE_VERIFIED.value,
            AuditAction.EXPENSE_APPROVED.value,
        ]
        assert trail[2].comment == AUTO_VERIFY_COMMENT
        assert trail[3].comment == (
            "OK Balance deducted: 70,000.00. Remaining balance: 30,000.00"
        )
        assert sorted(_titles(kernel, employee.id)) == ["Expense Approved", "Expense Verified"]

    def test_admin_approves_verified_claim(self, kernel, employee, engineer, admin, make_claim):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        result = kernel.lifecycle.approve(claim.id, admin.id)

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(employee.id) == Decimal("99900")
        assert _actions(kernel, claim.id).count(AuditAction.EXPENSE_VERIFIED.value) == 1

    def test_engineer_owner_gets_engineer_variant(self, kernel, engineer, admin, make_claim):
        claim = make_claim(engineer, "100")
        kernel.lifecycle.submit(claim.id, engineer.id)

        kernel.lifecycle.approve(claim.id, admin.id)

        messages = [n.message for n in kernel.notification_store.for_user(engineer.id)]
        assert any("deducted from your balance" in m for m in messages)

    def test_approval_may_drive_balance_negative(
        self, kernel, unassigned_employee, admin, make_claim
    ):
        claim = make_claim(unassigned_employee, "1500")

        kernel.lifecycle.approve(claim.id, admin.id)

        assert kernel.accounts.balance(unassigned_employee.id) == Decimal("-500")
        assert kernel.lifecycle.audit_trail(claim.id)[-1].comment.endswith(
            "Negative balance: 500.00"
        )

    def test_approve_twice_reports_already_approved(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee, "100")
        kernel.lifecycle.approve(claim.id, admin.id)

        with pytest.raises(ClaimAlreadyApprovedError):
            kernel.lifecycle.approve(claim.id, admin.id)
        assert kernel.accounts.balance(employee.id) == Decimal("99900")

    def test_already_approved_checked_before_role(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee, "100")
        kernel.lifecycle.approve(claim.id, admin.id)

        with pytest.raises(ClaimAlreadyApprovedError):
            kernel.lifecycle.approve(claim.id, employee.id)

    def test_employee_cannot_approve(self, kernel, employee, make_claim):
        claim = make_claim(employee, "100")
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.approve(claim.id, employee.id)


class TestReject:
    @pytest.mark.parametrize("actor", ["admin", "engineer", "employee"])
    def test_rejecting_approved_claim_fails_for_every_role(
        self, request, kernel, employee, admin, make_claim, actor
    ):
        claim = make_claim(employee, "100")
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.approve(claim.id, admin.id)
        actor_account = request.getfixturevalue(actor)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            kernel.lifecycle.reject(claim.id, actor_account.id)

        assert isinstance(exc_info.value, ClaimAlreadyApprovedError)
        assert str(exc_info.value) == "Approved expenses cannot be rejected"

    def test_assigned_reviewer_rejects_with_reason(
        self, kernel, employee, engineer, make_claim
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)

        result = kernel.lifecycle.reject(claim.id, engineer.id, "No receipt")

        assert result.status == ClaimStatus.REJECTED
        assert result.admin_comment == "No receipt"
        notes = kernel.notification_store.for_user(employee.id)
        assert notes[0].title == "Expense Rejected"
        assert notes[0].message.endswith("Reason: No receipt")
        assert kernel.accounts.balance(employee.id) == Decimal("100000")

    def test_admin_rejects_verified_claim(self, kernel, employee, engineer, admin, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)

        assert kernel.lifecycle.reject(claim.id, admin.id).status == ClaimStatus.REJECTED

    def test_reject_twice(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.reject(claim.id, admin.id)

        with pytest.raises(ClaimAlreadyRejectedError):
            kernel.lifecycle.reject(claim.id, admin.id)

    def test_unassigned_engineer_cannot_reject(self, kernel, employee, make_account, make_claim):
        stranger = make_account("Stranger", roles=(Role.ENGINEER,))
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)

        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.reject(claim.id, stranger.id)

    def test_employee_cannot_reject(self, kernel, employee, make_claim):
        claim = make_claim(employee)
        with pytest.raises(PermissionDeniedError):
            kernel.lifecycle.reject(claim.id, employee.id)

    def test_approve_rejected_claim(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee)
        kernel.lifecycle.reject(claim.id, admin.id)

        with pytest.raises(ClaimAlreadyRejectedError):
            kernel.lifecycle.approve(claim.id, admin.id)


class TestApprovalCompensation:
    def test_ledger_failure_reverts_claim_to_verified(
        self, kernel, employee, admin, make_claim, monkeypatch, captured_logs
    ):
        claim = make_claim(employee, "500")
        kernel.lifecycle.submit(claim.id, employee.id)

        def broken_debit(account_id, amount, require_funds=False):
            raise DependencyFailureError("account_apply_delta", "connection lost")

        monkeypatch.setattr(kernel.ledger, "debit", broken_debit)

        with pytest.raises(DependencyFailureError) as exc_info:
            kernel.lifecycle.approve(claim.id, admin.id)

        assert str(exc_info.value) == APPROVAL_REVERTED_COMMENT
        assert kernel.lifecycle.get_claim(claim.id).status == ClaimStatus.VERIFIED
        assert kernel.accounts.balance(employee.id) == Decimal("100000")
        trail = kernel.lifecycle.audit_trail(claim.id)
        assert trail[-1].action == AuditAction.EXPENSE_APPROVAL_REVERTED.value
        assert AuditAction.EXPENSE_APPROVED.value not in [e.action for e in trail]
        logs = captured_logs()
        assert any(r["message"] == "approval_compensated" for r in logs)
        # Owner was told about the auto-verify only
        assert _titles(kernel, employee.id) == ["Expense Verified"]

    def test_any_kernel_error_from_ledger_reverts(
        self, kernel, employee, admin, make_claim, monkeypatch
    ):
        claim = make_claim(employee, "500")
        kernel.lifecycle.submit(claim.id, employee.id)

        def rejecting_debit(account_id, amount, require_funds=False):
            raise InvalidAmountError(amount)

        monkeypatch.setattr(kernel.ledger, "debit", rejecting_debit)

        with pytest.raises(DependencyFailureError):
            kernel.lifecycle.approve(claim.id, admin.id)

        assert kernel.lifecycle.get_claim(claim.id).status == ClaimStatus.VERIFIED
        assert _actions(kernel, claim.id)[-1] == AuditAction.EXPENSE_APPROVAL_REVERTED.value

    def test_reverted_claim_can_be_approved_again(
        self, kernel, employee, admin, make_claim, monkeypatch
    ):
        claim = make_claim(employee, "500")
        original_debit = kernel.ledger.debit

        def broken_debit(account_id, amount, require_funds=False):
            raise DependencyFailureError("account_apply_delta", "connection lost")

        monkeypatch.setattr(kernel.ledger, "debit", broken_debit)
        with pytest.raises(DependencyFailureError):
            kernel.lifecycle.approve(claim.id, admin.id)

        monkeypatch.setattr(kernel.ledger, "debit", original_debit)
        result = kernel.lifecycle.approve(claim.id, admin.id)

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(employee.id) == Decimal("99500")

    def test_failed_compensation_raises_inconsistent_state(
        self, kernel, employee, admin, make_claim, monkeypatch, captured_logs
    ):
        claim = make_claim(employee, "500")
        original_transition = kernel.claims.transition

        def broken_debit(account_id, amount, require_funds=False):
            raise DependencyFailureError("account_apply_delta", "connection lost")

        def transition(claim_id, pre_image, to_status, **fields):
            if ClaimStatus.APPROVED in pre_image:
                raise DependencyFailureError("claim_transition", "connection lost")
            return original_transition(claim_id, pre_image, to_status, **fields)

        monkeypatch.setattr(kernel.ledger, "debit", broken_debit)
        monkeypatch.setattr(kernel.claims, "transition", transition)

        with pytest.raises(InconsistentStateError) as exc_info:
            kernel.lifecycle.approve(claim.id, admin.id)

        assert exc_info.value.operation == "approve"
        assert "connection lost" in exc_info.value.compensation_error
        critical = [r for r in captured_logs() if r["level"] == "CRITICAL"]
        assert [r["message"] for r in critical] == ["approval_compensation_failed"]

    def test_audit_failure_after_commit_is_inconsistent(
        self, kernel, employee, admin, make_claim, monkeypatch
    ):
        claim = make_claim(employee, "100")

        def broken_record(claim_id, actor_id, action, comment=None):
            raise DependencyFailureError("audit_append", "disk full")

        monkeypatch.setattr(kernel.audit, "record", broken_record)

        with pytest.raises(InconsistentStateError):
            kernel.lifecycle.reject(claim.id, admin.id)
        assert kernel.lifecycle.get_claim(claim.id).status == ClaimStatus.REJECTED


class TestNotificationIsolation:
    def test_sink_failure_does_not_fail_transition(
        self, session_factory, deterministic_clock, captured_logs
    ):
        from expense_kernel.kernel import build_kernel

        class BrokenSink:
            def notify(self, account_id, type, title, message, claim_id=None):
                raise RuntimeError("push service down")

        kernel = build_kernel(session_factory, clock=deterministic_clock, sink=BrokenSink())
        admin = kernel.accounts.create("Admin", roles=(Role.ADMIN,))
        owner = kernel.accounts.create("Owner", balance=Decimal("1000"))
        claim = kernel.lifecycle.create_claim(owner.id, "Taxi", Decimal("10"), "travel")

        result = kernel.lifecycle.approve(claim.id, admin.id)

        assert result.status == ClaimStatus.APPROVED
        assert kernel.accounts.balance(owner.id) == Decimal("990")
        assert any(
            r["message"] == "notification_delivery_failed" for r in captured_logs()
        )

    def test_disabled_notifications(self, session_factory, deterministic_clock):
        from expense_kernel.kernel import build_kernel

        kernel = build_kernel(
            session_factory, clock=deterministic_clock, notifications_enabled=False
        )
        admin = kernel.accounts.create("Admin", roles=(Role.ADMIN,))
        owner = kernel.accounts.create("Owner")
        claim = kernel.lifecycle.create_claim(owner.id, "Taxi", Decimal("10"), "travel")
        kernel.lifecycle.submit(claim.id, owner.id)

        assert kernel.notification_store.for_user(admin.id) == []


class TestLogging:
    def test_transition_logged_with_claim_context(
        self, kernel, employee, admin, make_claim, captured_logs
    ):
        claim = make_claim(employee, "100")
        kernel.lifecycle.approve(claim.id, admin.id)

        approved = [r for r in captured_logs() if r["message"] == "claim_approved"]
        assert len(approved) == 1
        assert approved[0]["claim_id"] == str(claim.id)
        assert approved[0]["actor_id"] == str(admin.id)
        assert approved[0]["to_status"] == "approved"

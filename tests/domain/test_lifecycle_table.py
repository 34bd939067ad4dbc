"""Tests for the claim transition table (expense_kernel/domain/lifecycle.py)."""

import pytest

from expense_kernel.domain.lifecycle import (
    CLAIM_TRANSITIONS,
    AuditAction,
    Capability,
    ClaimAction,
    ClaimStatus,
    TransitionStep,
    is_terminal,
    legal_sources,
    resolve_transition,
)


class TestTerminalStates:
    @pytest.mark.parametrize("status", [ClaimStatus.APPROVED, ClaimStatus.REJECTED])
    def test_no_rule_leaves_a_terminal_state(self, status):
        assert is_terminal(status)
        assert not [key for key in CLAIM_TRANSITIONS if key[0] == status]

    def test_submitted_and_verified_are_not_terminal(self):
        assert not is_terminal("submitted")
        assert not is_terminal(ClaimStatus.VERIFIED)

    def test_no_rule_targets_a_non_terminal_state_from_verified_except_assign(self):
        for (from_status, action, _), rule in CLAIM_TRANSITIONS.items():
            if from_status == ClaimStatus.VERIFIED and rule.to_status == ClaimStatus.SUBMITTED:
                assert action == ClaimAction.ASSIGN


class TestApproveRules:
    def test_engineer_approves_only_from_submitted(self):
        assert legal_sources(ClaimAction.APPROVE, Capability.ENGINEER) == {
            ClaimStatus.SUBMITTED
        }

    def test_engineer_rule_is_limit_gated_before_the_write(self):
        rule = resolve_transition(
            ClaimStatus.SUBMITTED, ClaimAction.APPROVE, Capability.ENGINEER
        )
        assert rule.steps[0] == TransitionStep.LIMIT_GATE
        assert rule.steps.index(TransitionStep.WRITE_STATUS) > 0

    def test_admin_approve_from_submitted_auto_verifies_first(self):
        rule = resolve_transition(
            ClaimStatus.SUBMITTED, ClaimAction.APPROVE, Capability.ADMIN
        )
        assert rule.steps[0] == TransitionStep.AUTO_VERIFY
        assert rule.write_pre_image == ClaimStatus.VERIFIED
        assert rule.to_status == ClaimStatus.APPROVED

    def test_admin_approve_from_verified_has_no_auto_verify(self):
        rule = resolve_transition(
            ClaimStatus.VERIFIED, ClaimAction.APPROVE, Capability.ADMIN
        )
        assert TransitionStep.AUTO_VERIFY not in rule.steps
        assert rule.write_pre_image == ClaimStatus.VERIFIED

    def test_every_approve_rule_debits_after_the_status_write(self):
        approve_rules = [
            r for r in CLAIM_TRANSITIONS.values()
            if r.action == ClaimAction.APPROVE
        ]
        assert approve_rules
        for rule in approve_rules:
            assert rule.moves_money
            assert rule.steps.index(TransitionStep.WRITE_STATUS) < rule.steps.index(
                TransitionStep.LEDGER_DEBIT
            )
            assert rule.steps.index(TransitionStep.LEDGER_DEBIT) < rule.steps.index(
                TransitionStep.AUDIT
            )
            assert rule.audit_action == AuditAction.EXPENSE_APPROVED

    def test_only_approve_rules_move_money(self):
        for rule in CLAIM_TRANSITIONS.values():
            assert rule.moves_money == (rule.action == ClaimAction.APPROVE)


class TestSubmitRules:
    def test_admin_owner_submit_delegates_to_approve(self):
        for status in (ClaimStatus.SUBMITTED, ClaimStatus.VERIFIED):
            rule = resolve_transition(status, ClaimAction.SUBMIT, Capability.ADMIN_OWNER)
            assert rule.steps == (TransitionStep.DELEGATE_APPROVE,)
            assert rule.audit_action is None

    def test_owner_cannot_resubmit_a_verified_claim(self):
        assert resolve_transition(
            ClaimStatus.VERIFIED, ClaimAction.SUBMIT, Capability.OWNER
        ) is None

    def test_submit_routes_before_writing(self):
        rule = resolve_transition(
            ClaimStatus.SUBMITTED, ClaimAction.SUBMIT, Capability.OWNER
        )
        assert rule.steps[0] == TransitionStep.ROUTE_REVIEWER
        assert rule.steps[-1] == TransitionStep.NOTIFY_ROUTED


class TestRejectAndVerifyRules:
    def test_reject_allowed_from_submitted_and_verified(self):
        for capability in (Capability.ADMIN, Capability.REVIEWER):
            assert legal_sources(ClaimAction.REJECT, capability) == {
                ClaimStatus.SUBMITTED,
                ClaimStatus.VERIFIED,
            }

    def test_verify_only_by_reviewer_from_submitted(self):
        assert legal_sources(ClaimAction.VERIFY, Capability.REVIEWER) == {
            ClaimStatus.SUBMITTED
        }
        assert legal_sources(ClaimAction.VERIFY, Capability.ADMIN) == frozenset()

    def test_verify_checks_escalation_last(self):
        rule = resolve_transition(
            ClaimStatus.SUBMITTED, ClaimAction.VERIFY, Capability.REVIEWER
        )
        assert rule.steps[-1] == TransitionStep.ESCALATION_CHECK

    def test_resolve_accepts_status_strings(self):
        assert resolve_transition("verified", ClaimAction.REJECT, Capability.ADMIN)

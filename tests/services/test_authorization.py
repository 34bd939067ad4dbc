"""Tests for the authorization gate and role resolution."""

from uuid import uuid4

import pytest

from expense_kernel.domain.roles import Role, RoleSet
from expense_kernel.exceptions import ClaimNotFoundError, DependencyFailureError
from expense_kernel.services.authorization import parse_account_id


class TestParseAccountId:
    def test_uuid_string(self):
        value = uuid4()
        assert parse_account_id(str(value)) == value

    @pytest.mark.parametrize("raw", [None, "", "  ", "not-a-uuid", "1234"])
    def test_unusable_ids(self, raw):
        assert parse_account_id(raw) is None


class TestRoleResolver:
    def test_multiple_roles(self, kernel, make_account):
        account = make_account("Dual", roles=(Role.ADMIN, Role.CASHIER))
        roles = kernel.roles.roles_of(account.id)
        assert roles.is_admin and roles.is_cashier
        assert kernel.roles.has_role(str(account.id), Role.CASHIER)

    def test_unknown_account_has_no_roles(self, kernel):
        assert kernel.roles.roles_of(uuid4()) == RoleSet.empty()

    def test_lookup_failure_fails_closed(self, kernel, admin, monkeypatch, captured_logs):
        def broken(account_id):
            raise DependencyFailureError("account_roles", "connection lost")

        monkeypatch.setattr(kernel.accounts, "roles_of", broken)

        assert not kernel.roles.has_role(admin.id, Role.ADMIN)
        assert any(r["message"] == "role_lookup_failed" for r in captured_logs())


class TestAuthorizationGate:
    def test_owner_may_mutate_submitted_claim(self, kernel, employee, make_claim):
        claim = make_claim(employee)
        assert kernel.gate.can_actor_mutate(claim.id, employee.id)

    def test_admin_may_mutate_any_claim(self, kernel, employee, admin, make_claim):
        claim = make_claim(employee)
        assert kernel.gate.can_actor_mutate(claim.id, admin.id)

    def test_stranger_may_not(self, kernel, employee, unassigned_employee, make_claim):
        claim = make_claim(employee)
        assert not kernel.gate.can_actor_mutate(claim.id, unassigned_employee.id)
        assert not kernel.gate.can_actor_mutate(claim.id, "garbage")

    def test_owner_may_not_mutate_after_verification(
        self, kernel, employee, engineer, make_claim
    ):
        claim = make_claim(employee)
        kernel.lifecycle.submit(claim.id, employee.id)
        kernel.lifecycle.verify(claim.id, engineer.id)
        assert not kernel.gate.can_actor_mutate(claim.id, employee.id)

    def test_reviewer_acts_only_when_assigned(
        self, kernel, employee, engineer, make_account, make_claim
    ):
        other = make_account("Other", roles=(Role.ENGINEER,))
        claim = make_claim(employee)
        assert not kernel.gate.can_reviewer_act(claim.id, engineer.id)

        kernel.lifecycle.submit(claim.id, employee.id)

        assert kernel.gate.can_reviewer_act(claim.id, engineer.id)
        assert not kernel.gate.can_reviewer_act(claim.id, other.id)
        assert not kernel.gate.can_reviewer_act(claim.id, None)

    def test_missing_claim(self, kernel, admin):
        with pytest.raises(ClaimNotFoundError):
            kernel.gate.can_actor_mutate(uuid4(), admin.id)

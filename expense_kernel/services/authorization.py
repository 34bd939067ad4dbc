"""
Authorization Gate and Role Resolver.

Responsibility:
    Answers the two claim-level questions (may this actor mutate the
    claim; is this reviewer the assigned one) and resolves role sets.

Invariants enforced:
    - A blank, malformed or unknown account id resolves to "no role" and
      never raises.  A failing role lookup is logged and treated as "no
      role" (fail closed).
    - Admins may always mutate.  Owners may mutate only while the claim is
      ``submitted``.
"""

from typing import Protocol
from uuid import UUID

from expense_kernel.domain.dtos import Claim
from expense_kernel.domain.lifecycle import ClaimStatus
from expense_kernel.domain.roles import Role, RoleSet
from expense_kernel.exceptions import ClaimNotFoundError, DependencyFailureError
from expense_kernel.logging_config import get_logger
from expense_kernel.store.accounts import AccountStore
from expense_kernel.store.claims import ClaimStore

logger = get_logger("services.authorization")


def parse_account_id(value: UUID | str | None) -> UUID | None:
    """Normalize an account id; None for blank or malformed input."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return UUID(text)
    except ValueError:
        return None


class RoleResolver(Protocol):
    def has_role(self, account_id: UUID | str | None, role: Role) -> bool: ...

    def roles_of(self, account_id: UUID | str | None) -> RoleSet: ...


class AccountRoleResolver:
    """Role resolver over the account_roles table."""

    def __init__(self, accounts: AccountStore):
        self._accounts = accounts

    def roles_of(self, account_id: UUID | str | None) -> RoleSet:
        parsed = parse_account_id(account_id)
        if parsed is None:
            return RoleSet.empty()
        try:
            return self._accounts.roles_of(parsed)
        except DependencyFailureError as exc:
            logger.warning(
                "role_lookup_failed",
                extra={"account_id": str(parsed), "cause": exc.cause},
            )
            return RoleSet.empty()

    def has_role(self, account_id: UUID | str | None, role: Role) -> bool:
        return self.roles_of(account_id).has(role)


class AuthorizationGate:
    """Claim-level permission queries."""

    def __init__(self, claims: ClaimStore, roles: RoleResolver):
        self._claims = claims
        self._roles = roles

    @staticmethod
    def may_mutate(claim: Claim, actor_id: UUID | None, actor_roles: RoleSet) -> bool:
        if actor_id is None:
            return False
        if actor_roles.is_admin:
            return True
        return claim.owner_id == actor_id and claim.status == ClaimStatus.SUBMITTED

    @staticmethod
    def is_assigned_reviewer(claim: Claim, reviewer_id: UUID | None) -> bool:
        return reviewer_id is not None and claim.assigned_reviewer_id == reviewer_id

    def _load(self, claim_id: UUID) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(str(claim_id))
        return claim

    def can_actor_mutate(self, claim_id: UUID, actor_id: UUID | str | None) -> bool:
        claim = self._load(claim_id)
        actor = parse_account_id(actor_id)
        return self.may_mutate(claim, actor, self._roles.roles_of(actor))

    def can_reviewer_act(self, claim_id: UUID, reviewer_id: UUID | str | None) -> bool:
        claim = self._load(claim_id)
        return self.is_assigned_reviewer(claim, parse_account_id(reviewer_id))

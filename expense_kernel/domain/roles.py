"""
Account roles as a set of capability flags.

An account may hold several roles at once (an engineer also submits
their own claims like an employee; an admin may also be a cashier), so
roles are never modelled as a single tag.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Roles an account can hold."""

    EMPLOYEE = "employee"
    ENGINEER = "engineer"
    CASHIER = "cashier"
    ADMIN = "admin"


@dataclass(frozen=True)
class RoleSet:
    """Immutable set of roles held by one account."""

    roles: frozenset[Role] = frozenset()

    @classmethod
    def of(cls, roles: Iterable[Role | str]) -> RoleSet:
        return cls(frozenset(Role(r) for r in roles))

    @classmethod
    def empty(cls) -> RoleSet:
        return cls()

    def has(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_engineer(self) -> bool:
        return Role.ENGINEER in self.roles

    @property
    def is_cashier(self) -> bool:
        return Role.CASHIER in self.roles

    @property
    def can_review(self) -> bool:
        """Admins and engineers are the only roles that approve or reject."""
        return self.is_admin or self.is_engineer

    def __bool__(self) -> bool:
        return bool(self.roles)

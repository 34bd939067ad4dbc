"""Persistence layer: one short transaction per call, conditional writes only."""

from expense_kernel.store.accounts import AccountStore
from expense_kernel.store.audit import AuditStore
from expense_kernel.store.base import BaseStore
from expense_kernel.store.claims import ClaimStore
from expense_kernel.store.money import MoneyStore
from expense_kernel.store.notifications import NotificationStore
from expense_kernel.store.settings import SettingsStore

__all__ = [
    "BaseStore",
    "AccountStore",
    "AuditStore",
    "ClaimStore",
    "MoneyStore",
    "NotificationStore",
    "SettingsStore",
]

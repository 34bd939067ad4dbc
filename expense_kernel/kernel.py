"""
Kernel wiring.

``build_kernel`` assembles every store and service over one session
factory.  Callers (an API layer, tests) hold the returned ``ExpenseKernel``
and invoke the controller and return service on it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.services.assignment_tracker import MoneyAssignmentTracker
from expense_kernel.services.audit_recorder import AuditRecorder
from expense_kernel.services.authorization import AccountRoleResolver, AuthorizationGate
from expense_kernel.services.claim_lifecycle import ExpenseLifecycleController
from expense_kernel.services.escalation_policy import EscalationPolicy
from expense_kernel.services.ledger_service import BalanceLedger
from expense_kernel.services.money_return_service import MoneyReturnService
from expense_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationSink,
    OutboxNotificationSink,
)
from expense_kernel.services.settings import (
    ConfigurationSource,
    LayeredSettingsSource,
    StaticSettingsSource,
)
from expense_kernel.store.accounts import AccountStore
from expense_kernel.store.audit import AuditStore
from expense_kernel.store.claims import ClaimStore
from expense_kernel.store.money import MoneyStore
from expense_kernel.store.notifications import NotificationStore
from expense_kernel.store.settings import SettingsStore


@dataclass(frozen=True)
class ExpenseKernel:
    accounts: AccountStore
    claims: ClaimStore
    money: MoneyStore
    notification_store: NotificationStore
    settings: ConfigurationSource
    roles: AccountRoleResolver
    gate: AuthorizationGate
    audit: AuditRecorder
    escalation: EscalationPolicy
    ledger: BalanceLedger
    assignments: MoneyAssignmentTracker
    notifications: NotificationDispatcher
    lifecycle: ExpenseLifecycleController
    returns: MoneyReturnService
    clock: Clock


def build_kernel(
    session_factory: sessionmaker[Session],
    clock: Clock | None = None,
    settings_overrides: Mapping[str, object] | None = None,
    sink: NotificationSink | None = None,
    notifications_enabled: bool = True,
) -> ExpenseKernel:
    """
    Wire the kernel.

    Args:
        session_factory: Factory every store opens its sessions from.
        clock: Time source; SystemClock when omitted.
        settings_overrides: Values that take precedence over the
            ``settings`` table (e.g. from the YAML config file).
        sink: Notification sink; the ``notifications`` outbox when omitted.
        notifications_enabled: False turns dispatch into a no-op.
    """
    clock = clock or SystemClock()

    accounts = AccountStore(session_factory)
    claims = ClaimStore(session_factory)
    money = MoneyStore(session_factory)
    notification_store = NotificationStore(session_factory)

    settings: ConfigurationSource = SettingsStore(session_factory)
    if settings_overrides:
        settings = LayeredSettingsSource(StaticSettingsSource(settings_overrides), settings)

    roles = AccountRoleResolver(accounts)
    gate = AuthorizationGate(claims, roles)
    audit = AuditRecorder(AuditStore(session_factory), clock)
    escalation = EscalationPolicy(settings)
    ledger = BalanceLedger(accounts)
    assignments = MoneyAssignmentTracker(money, roles, clock)
    notifications = NotificationDispatcher(
        sink or OutboxNotificationSink(notification_store, clock),
        enabled=notifications_enabled,
    )

    lifecycle = ExpenseLifecycleController(
        claims=claims,
        accounts=accounts,
        roles=roles,
        gate=gate,
        ledger=ledger,
        escalation=escalation,
        audit=audit,
        notifications=notifications,
    )
    returns = MoneyReturnService(
        money=money,
        accounts=accounts,
        ledger=ledger,
        tracker=assignments,
        notifications=notifications,
        clock=clock,
    )

    return ExpenseKernel(
        accounts=accounts,
        claims=claims,
        money=money,
        notification_store=notification_store,
        settings=settings,
        roles=roles,
        gate=gate,
        audit=audit,
        escalation=escalation,
        ledger=ledger,
        assignments=assignments,
        notifications=notifications,
        lifecycle=lifecycle,
        returns=returns,
        clock=clock,
    )


def build_kernel_from_config(config, clock: Clock | None = None) -> ExpenseKernel:
    """Initialize the engine and wire the kernel from a ``KernelConfig``."""
    from expense_kernel.db.engine import get_session_factory, init_engine_from_url
    from expense_kernel.logging_config import configure_logging

    configure_logging(level=config.log_level)
    init_engine_from_url(config.database_url)
    return build_kernel(
        get_session_factory(),
        clock=clock,
        settings_overrides=config.settings,
        notifications_enabled=config.notifications_enabled,
    )

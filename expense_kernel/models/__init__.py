"""ORM models for the expense kernel."""

from expense_kernel.models.account import AccountModel, AccountRoleModel
from expense_kernel.models.audit_log import AuditLogModel
from expense_kernel.models.claim import ClaimModel
from expense_kernel.models.money import MoneyAssignmentModel, MoneyReturnRequestModel
from expense_kernel.models.notification import NotificationModel
from expense_kernel.models.sequence import SequenceCounter
from expense_kernel.models.setting import SettingModel

__all__ = [
    "AccountModel",
    "AccountRoleModel",
    "AuditLogModel",
    "ClaimModel",
    "MoneyAssignmentModel",
    "MoneyReturnRequestModel",
    "NotificationModel",
    "SequenceCounter",
    "SettingModel",
]

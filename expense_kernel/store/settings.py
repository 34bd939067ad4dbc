"""
Module: expense_kernel.store.settings
Responsibility: Configuration source backed by the ``settings`` table.
"""

from sqlalchemy import select

from expense_kernel.models.setting import SettingModel
from expense_kernel.store.base import BaseStore


class SettingsStore(BaseStore):
    """Reads ``settings.value`` by key.  Implements ``ConfigurationSource``."""

    def get_setting(self, key: str) -> str | None:
        with self._scope("setting_get") as session:
            return session.execute(
                select(SettingModel.value).where(SettingModel.key == key)
            ).scalar_one_or_none()

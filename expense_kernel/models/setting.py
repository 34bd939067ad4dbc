"""
Module: expense_kernel.models.setting
Responsibility: Key/value settings table read by ``SettingsStore``.
    Administrative editing of settings is outside the kernel.
"""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TrackedBase


class SettingModel(TrackedBase):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

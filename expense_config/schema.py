"""
Configuration schema (``expense_config.schema``).

Frozen dataclasses produced by the loader.  Nothing here reads files or
environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class KernelConfig:
    """Runtime configuration for one kernel deployment."""

    database_url: str
    log_level: str = "INFO"
    settings: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    notifications_enabled: bool = True

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, "
                f"got {self.log_level!r}"
            )
        if not isinstance(self.settings, MappingProxyType):
            object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))

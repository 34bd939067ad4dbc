"""
Configuration Loader (``expense_config.loader``).

Responsibility
--------------
Loads a kernel YAML file and parses it into a frozen ``KernelConfig``.

Expected shape::

    database_url: postgresql://expense@localhost/expense
    log_level: INFO
    settings:
      engineer_approval_limit: "50000"
    notifications:
      enabled: true

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types, missing ``database_url``  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from expense_config.schema import KernelConfig

_TOP_LEVEL_KEYS = frozenset({"database_url", "log_level", "settings", "notifications"})
_NOTIFICATION_KEYS = frozenset({"enabled"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _reject_unknown(data: dict[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {where} keys: {sorted(unknown)}")


def _parse_settings(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"settings must be a mapping, got {type(raw).__name__}")
    parsed: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise ValueError(f"settings keys must be strings, got {key!r}")
        if isinstance(value, (dict, list)) or value is None:
            raise ValueError(f"settings.{key} must be a scalar value")
        parsed[key] = str(value)
    return parsed


def parse_kernel_config(data: dict[str, Any]) -> KernelConfig:
    """Parse a ``KernelConfig`` from an already-loaded dict."""
    _reject_unknown(data, _TOP_LEVEL_KEYS, "top-level")

    database_url = data.get("database_url")
    if not isinstance(database_url, str) or not database_url:
        raise ValueError("database_url is required and must be a string")

    log_level = data.get("log_level", "INFO")
    if not isinstance(log_level, str):
        raise ValueError("log_level must be a string")

    notifications = data.get("notifications") or {}
    if not isinstance(notifications, dict):
        raise ValueError("notifications must be a mapping")
    _reject_unknown(notifications, _NOTIFICATION_KEYS, "notifications")
    enabled = notifications.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValueError("notifications.enabled must be a boolean")

    return KernelConfig(
        database_url=database_url,
        log_level=log_level.upper(),
        settings=_parse_settings(data.get("settings")),
        notifications_enabled=enabled,
    )


def load_kernel_config(path: Path | str) -> KernelConfig:
    """Load and validate a kernel configuration file."""
    return parse_kernel_config(load_yaml_file(Path(path)))

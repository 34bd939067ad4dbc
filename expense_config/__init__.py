"""
expense_config -- single public entrypoint for kernel configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains a
    ``KernelConfig``.  The file path comes from ``EXPENSE_KERNEL_CONFIG``;
    ``DATABASE_URL``, when set, overrides the file's ``database_url``.

Architecture position:
    Configuration sits above ``expense_kernel``.  The kernel never imports
    from this package; ``expense_kernel.kernel.build_kernel_from_config``
    accepts the resulting object.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` -- ``EXPENSE_KERNEL_CONFIG`` unset, or validation
      failures from the loader.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from expense_config.loader import load_kernel_config, parse_kernel_config
from expense_config.schema import KernelConfig

_logger = logging.getLogger("expense_kernel.config")

CONFIG_PATH_ENV = "EXPENSE_KERNEL_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> KernelConfig:
    """
    Load the active kernel configuration.

    Args:
        path: Explicit file path; defaults to ``$EXPENSE_KERNEL_CONFIG``.
    """
    config_path = path or os.environ.get(CONFIG_PATH_ENV)
    if not config_path:
        raise ValueError(
            f"No configuration file given and {CONFIG_PATH_ENV} is not set"
        )

    config = load_kernel_config(config_path)

    override = os.environ.get(DATABASE_URL_ENV)
    if override:
        config = replace(config, database_url=override)

    _logger.info(
        "EXPENSE_KERNEL_CONFIG_TRACE",
        extra={
            "config_path": str(config_path),
            "log_level": config.log_level,
            "settings_keys": sorted(config.settings),
            "notifications_enabled": config.notifications_enabled,
            "database_url_overridden": bool(override),
        },
    )
    return config


__all__ = [
    "KernelConfig",
    "get_active_config",
    "load_kernel_config",
    "parse_kernel_config",
]

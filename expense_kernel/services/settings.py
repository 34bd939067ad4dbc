"""
Configuration sources.

The kernel reads runtime settings (today only the engineer approval
limit) through ``ConfigurationSource.get_setting``.  ``SettingsStore``
reads the ``settings`` table; the sources here cover in-memory values
(YAML overrides, tests) and layering.
"""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class ConfigurationSource(Protocol):
    def get_setting(self, key: str) -> str | None:
        """Return the raw setting value, or None when unset."""
        ...


class StaticSettingsSource:
    """Settings held in memory."""

    def __init__(self, values: Mapping[str, object] | None = None):
        self._values = {k: str(v) for k, v in (values or {}).items()}

    def get_setting(self, key: str) -> str | None:
        return self._values.get(key)


class LayeredSettingsSource:
    """First source that returns a value wins."""

    def __init__(self, *sources: ConfigurationSource):
        self._sources = sources

    def get_setting(self, key: str) -> str | None:
        for source in self._sources:
            value = source.get_setting(key)
            if value is not None:
                return value
        return None

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Mapping

from .manager import ConfigManager
from .models import Settings

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "override",
    "redacted_settings",
]

_manager = ConfigManager()


def get_settings() -> Settings:
    """Current settings. Call at use time; ``override`` swaps the instance."""
    return _manager.settings


def reload_settings(*, overrides: Mapping[str, Any] | None = None) -> Settings:
    return _manager.reload(overrides=overrides)


def redacted_settings() -> dict[str, Any]:
    return _manager.redacted()


@contextmanager
def override(**values: Any) -> Generator[Settings, None, None]:
    previous = _manager.settings
    try:
        yield _manager.reload(overrides=values)
    finally:
        _manager.replace(previous)

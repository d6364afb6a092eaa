from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import RLock
from typing import Any, Mapping

from .models import SECRET_FIELDS, Settings
from .sources import env_overrides, load_from_toml, unknown_keys

logger = logging.getLogger(__name__)


class ConfigManager:
    """Builds ``Settings`` from the TOML file, the environment and explicit overrides, in that order."""

    def __init__(self, *, env_var: str = "CLOUDBOX_CONFIG", default_file: str = "cloudbox.toml") -> None:
        self._env_var = env_var
        self._default_file = default_file
        self._lock = RLock()
        self._settings = self._load()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config_path(self) -> Path:
        return Path(os.environ.get(self._env_var, self._default_file))

    def reload(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        with self._lock:
            self._settings = self._load(overrides)
            return self._settings

    def replace(self, new_settings: Settings) -> Settings:
        with self._lock:
            self._settings = new_settings
            return self._settings

    def redacted(self) -> dict[str, Any]:
        """Current settings with credentials masked, for display."""
        data = self._settings.model_dump()
        for name in SECRET_FIELDS:
            if data.get(name):
                data[name] = "***"
        return data

    def _load(self, overrides: Mapping[str, Any] | None = None) -> Settings:
        path = self.config_path
        from_file = load_from_toml(path)
        stray = unknown_keys(Settings, from_file)
        if stray:
            logger.warning(f"Ignoring unknown keys in {path}: {', '.join(stray)}")
            for key in stray:
                from_file.pop(key)
        data = {**from_file, **env_overrides(Settings, os.environ)}
        if overrides:
            data.update(overrides)
        return Settings(**data)

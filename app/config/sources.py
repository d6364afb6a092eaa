from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Iterable, Mapping, MutableMapping, Type

from pydantic import BaseModel

ENV_PREFIX = "CLOUDBOX_"


def _flatten(prefix: str, table: Mapping[str, Any], out: dict[str, Any]) -> None:
    for key, value in table.items():
        name = f"{prefix}_{key}" if prefix else key
        if isinstance(value, MutableMapping):
            _flatten(name, value, out)
        else:
            out[name] = value


def load_from_toml(path: str | Path | None) -> dict[str, Any]:
    """Read a TOML config file and flatten nested tables.

    ``[s3] bucket = "x"`` becomes ``s3_bucket``; deeper tables keep joining
    with underscores. A missing file yields an empty mapping.
    """
    if not path:
        return {}
    file_path = Path(path)
    if not file_path.exists():
        return {}
    with file_path.open("rb") as handle:
        data = tomllib.load(handle)
    flattened: dict[str, Any] = {}
    _flatten("", data, flattened)
    return flattened


def env_overrides(model: Type[BaseModel], environ: Mapping[str, str]) -> dict[str, Any]:
    """Values for ``model`` fields taken from ``FIELD`` or ``CLOUDBOX_FIELD`` (the prefixed one wins)."""
    overrides: dict[str, Any] = {}
    for field in model.model_fields:
        for env_key in (field.upper(), f"{ENV_PREFIX}{field.upper()}"):
            if env_key in environ:
                overrides[field] = environ[env_key]
    return overrides


def unknown_keys(model: Type[BaseModel], keys: Iterable[str]) -> list[str]:
    return sorted(k for k in keys if k not in model.model_fields)

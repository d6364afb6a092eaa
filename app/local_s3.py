from __future__ import annotations

import shutil
from pathlib import Path
from typing import BinaryIO


class LocalS3Error(RuntimeError):
    """Internal error raised for invalid local storage operations."""


class ObjectNotFound(FileNotFoundError):
    """Raised when a storage key has no bytes behind it."""


class LocalS3Client:
    """Object storage backed by a directory on the local filesystem.

    Keys are slash separated paths relative to ``base_path``. Every key is
    resolved and checked to stay inside the root.
    """

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _normalize_key(self, key: str) -> str:
        return key.lstrip("/")

    def _object_path(self, key: str, *, create_parents: bool = False) -> Path:
        path = (self.base_path / self._normalize_key(key)).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise LocalS3Error("Attempted path traversal outside storage root")
        if create_parents:
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def _existing_object_path(self, key: str) -> Path:
        path = self._object_path(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path

    # ------------------------------------------------------------------
    # Object operations
    # ------------------------------------------------------------------
    def put_object(self, key: str, fileobj: BinaryIO) -> int:
        path = self._object_path(key, create_parents=True)
        with path.open("wb") as dest:
            shutil.copyfileobj(fileobj, dest, 1024 * 1024)
        return path.stat().st_size

    def open_object(self, key: str) -> BinaryIO:
        return self._existing_object_path(key).open("rb")

    def object_exists(self, key: str) -> bool:
        try:
            return self._object_path(key).is_file()
        except LocalS3Error:
            return False

    def object_size(self, key: str) -> int:
        return self._existing_object_path(key).stat().st_size

    def delete_object(self, key: str) -> None:
        path = self._object_path(key)
        if path.is_file():
            path.unlink()

    def copy_object(self, source_key: str, dest_key: str) -> None:
        source_path = self._existing_object_path(source_key)
        dest_path = self._object_path(dest_key, create_parents=True)
        shutil.copy2(source_path, dest_path)

    def ping(self) -> None:
        if not self.base_path.is_dir():
            raise LocalS3Error(f"Storage root {self.base_path} is missing")

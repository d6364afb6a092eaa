from __future__ import annotations
import datetime as dt
import logging
import os
import shutil
import tempfile
import zipfile
from typing import Iterator
from .config import get_settings
from .local_s3 import ObjectNotFound
from .models import File
from .s3 import CHUNK_SIZE, StorageClient

logger = logging.getLogger(__name__)


def archive_name(now: dt.datetime | None = None) -> str:
    return (now or dt.datetime.now()).strftime("files_%Y%m%d_%H%M%S.zip")


def _unique(name: str, used: set[str]) -> str:
    candidate, n = name, 1
    stem, dot, ext = name.rpartition(".")
    while candidate in used:
        candidate = f"{stem} ({n}).{ext}" if dot and stem else f"{name} ({n})"
        n += 1
    used.add(candidate)
    return candidate


def build_zip(storage: StorageClient, files: list[File]) -> tuple[str, list[File]]:
    """Write the stored bytes of ``files`` into a temporary zip.

    Returns the archive path and the files actually included; files whose
    bytes are missing are skipped. The archive is removed if building fails.
    """
    fd, path = tempfile.mkstemp(suffix=".zip", dir=get_settings().temp_dir)
    os.close(fd)
    included: list[File] = []
    used: set[str] = set()
    try:
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for f in files:
                try:
                    src = storage.open_object(f.file_path)
                except ObjectNotFound:
                    logger.warning(f"Skipping file {f.id} in archive: bytes missing at {f.file_path}")
                    continue
                try:
                    with zf.open(_unique(f.name, used), "w") as dest:
                        shutil.copyfileobj(src, dest, CHUNK_SIZE)
                finally:
                    src.close()
                included.append(f)
    except BaseException:
        remove_archive(path)
        raise
    return path, included


def remove_archive(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def stream_archive(path: str, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the archive and delete it once streaming ends, fails or is abandoned."""
    try:
        with open(path, "rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk
    finally:
        remove_archive(path)

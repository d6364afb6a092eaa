from __future__ import annotations

import logging
import threading
from typing import BinaryIO, Iterator, Union

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings, get_settings
from .local_s3 import LocalS3Client, LocalS3Error, ObjectNotFound

logger = logging.getLogger(__name__)

# Errors a storage call may raise that handlers translate into 404/500 or tolerate
STORAGE_ERRORS = (BotoCoreError, ClientError, LocalS3Error, OSError)

CHUNK_SIZE = 1024 * 1024


def _is_missing(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound")


class BotoS3Client:
    """Object storage in an S3 bucket (AWS, MinIO, R2...)."""

    def __init__(self, settings: Settings):
        if not settings.s3_bucket:
            raise ValueError("No S3 bucket configured. Set 's3_bucket' when storage_backend is 's3'.")
        self.bucket = settings.s3_bucket
        self.client = boto3.client(
            "s3",
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if settings.s3_use_path_style else "virtual"},
            ),
        )

    def put_object(self, key: str, fileobj: BinaryIO) -> int:
        self.client.upload_fileobj(fileobj, self.bucket, key)
        return self.object_size(key)

    def open_object(self, key: str) -> BinaryIO:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_missing(exc):
                raise ObjectNotFound(key) from exc
            raise
        return response["Body"]

    def object_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            if _is_missing(exc):
                return False
            raise

    def object_size(self, key: str) -> int:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_missing(exc):
                raise ObjectNotFound(key) from exc
            raise
        return int(response.get("ContentLength") or 0)

    def delete_object(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def copy_object(self, source_key: str, dest_key: str) -> None:
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                Key=dest_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
            )
        except ClientError as exc:
            if _is_missing(exc):
                raise ObjectNotFound(source_key) from exc
            raise

    def ping(self) -> None:
        self.client.head_bucket(Bucket=self.bucket)


StorageClient = Union[LocalS3Client, BotoS3Client]

_lock = threading.Lock()
_clients: dict[tuple, StorageClient] = {}


def build_storage(settings: Settings) -> StorageClient:
    backend = (settings.storage_backend or "local").lower()
    if backend == "local":
        return LocalS3Client(settings.storage_base_path)
    if backend == "s3":
        return BotoS3Client(settings)
    raise ValueError(f"Unknown storage backend '{settings.storage_backend}'")


def get_storage() -> StorageClient:
    """FastAPI dependency returning the configured storage client.

    Clients are cached per backend configuration so a settings override
    picks up a fresh client.
    """
    settings = get_settings()
    cache_key = (settings.storage_backend, settings.storage_base_path, settings.s3_bucket, settings.s3_endpoint_url)
    with _lock:
        client = _clients.get(cache_key)
        if client is None:
            client = build_storage(settings)
            _clients[cache_key] = client
            logger.info(f"Initialised {settings.storage_backend} storage backend")
        return client


class ObjectStream:
    """Chunk iterator over an open object handle.

    The handle is closed when the stream is exhausted or ``close()`` is
    called, even if iteration never started.
    """

    def __init__(self, fh: BinaryIO, chunk_size: int = CHUNK_SIZE):
        self._fh = fh
        self._chunk_size = chunk_size
        self.closed = False

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self.closed:
            raise StopIteration
        chunk = self._fh.read(self._chunk_size)
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._fh.close()


def iter_object(storage: StorageClient, key: str, chunk_size: int = CHUNK_SIZE) -> ObjectStream:
    """Open ``key`` now (raising ObjectNotFound early) and stream it in chunks."""
    return ObjectStream(storage.open_object(key), chunk_size)


def delete_object_quietly(storage: StorageClient, key: str | None) -> bool:
    """Delete ``key`` if present; failures are logged, never raised."""
    if not key:
        return True
    try:
        storage.delete_object(key)
        return True
    except STORAGE_ERRORS as e:
        logger.warning(f"Failed to delete stored object {key}: {e}")
        return False

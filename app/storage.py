from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from .config import get_settings
from .models import User, File, ShareLink, ShareableKind, utcnow

logger = logging.getLogger(__name__)


class StorageQuotaExceeded(Exception):
    """Raised when an upload would push the user over the storage quota"""
    def __init__(self, used: int, quota: int, requested: int):
        self.used = used
        self.quota = quota
        self.requested = requested
        super().__init__(f"Storage quota exceeded: {used + requested} bytes > {quota} bytes")


def used_storage_bytes(user_id: int, db: Session) -> int:
    """Bytes held by the user's files. Trashed files still occupy storage until purged."""
    result = db.query(func.sum(File.file_size)).filter(File.user_id == user_id).scalar()
    return int(result or 0)


def trashed_storage_bytes(user_id: int, db: Session) -> int:
    result = db.query(func.sum(File.file_size)).filter(
        File.user_id == user_id,
        File.deleted_at.isnot(None),
    ).scalar()
    return int(result or 0)


def files_shared_with_count(user: User, db: Session) -> int:
    """Distinct files addressed to the user's email through unexpired links"""
    return db.query(func.count(func.distinct(ShareLink.shareable_id))).filter(
        ShareLink.recipient_email == user.email,
        ShareLink.shareable_type == ShareableKind.file.value,
        or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > utcnow()),
    ).scalar() or 0


def get_user_storage_usage(user: User, db: Session) -> dict:
    quota = get_settings().storage_quota_bytes
    used = used_storage_bytes(user.id, db)
    my_files = db.query(func.count(File.id)).filter(File.user_id == user.id, File.deleted_at.is_(None)).scalar() or 0
    shared = files_shared_with_count(user, db)
    remaining = max(0, quota - used)
    return {
        "total_files_in_system": my_files + shared,
        "my_files_count": my_files,
        "files_shared_with_me_count": shared,
        "used_storage_bytes": used,
        "trashed_storage_bytes": trashed_storage_bytes(user.id, db),
        "total_storage_quota_bytes": quota,
        "remaining_storage_bytes": remaining,
        "usage_percentage": (used / quota * 100) if quota > 0 else 0,
        "formatted_used": format_storage_size(used),
        "formatted_quota": format_storage_size(quota),
        "formatted_remaining": format_storage_size(remaining),
    }


def check_storage_quota(user_id: int, additional_size: int, db: Session) -> bool:
    """Check if user can store additional_size bytes without exceeding quota"""
    return used_storage_bytes(user_id, db) + additional_size <= get_settings().storage_quota_bytes


def enforce_storage_quota(user_id: int, file_size: int, db: Session) -> None:
    if not check_storage_quota(user_id, file_size, db):
        raise StorageQuotaExceeded(
            used=used_storage_bytes(user_id, db),
            quota=get_settings().storage_quota_bytes,
            requested=file_size,
        )


def format_storage_size(bytes_size: float) -> str:
    """Format storage size in human-readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_size < 1024.0:
            return f"{bytes_size:.1f} {unit}"
        bytes_size /= 1024.0
    return f"{bytes_size:.1f} PB"


def measure_upload(fileobj) -> int:
    """Size of a seekable upload stream; the stream is left at position 0."""
    fileobj.seek(0, 2)
    size = fileobj.tell()
    fileobj.seek(0)
    return size

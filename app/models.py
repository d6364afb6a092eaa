
from __future__ import annotations
import datetime as dt
import enum
from sqlalchemy import BigInteger, Column, Integer, String, DateTime, Boolean, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from .db import Base


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Privacy(str, enum.Enum):
    public = "public"
    private = "private"


class LinkType(str, enum.Enum):
    internal = "internal"
    email = "email"
    public = "public"


class LinkPermission(str, enum.Enum):
    view = "view"
    upload_download_view = "upload-download-view"


class ShareableKind(str, enum.Enum):
    file = "file"
    folder = "folder"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    firstname = Column(String(255), nullable=True)
    lastname = Column(String(255), nullable=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    # Account settings
    avatar = Column(String, nullable=True)  # storage key
    default_privacy = Column(String, default=Privacy.private.value, nullable=False)
    enable_watermark = Column(Boolean, default=False, nullable=False)
    watermark_position = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    folders = relationship("Folder", back_populates="owner", passive_deletes=True)
    files = relationship("File", back_populates="owner", passive_deletes=True)
    share_links = relationship("ShareLink", back_populates="owner", passive_deletes=True)
    sessions = relationship("UserSession", passive_deletes=True)


class UserSession(Base):
    __tablename__ = "user_sessions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    jti = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    last_seen_at = Column(DateTime, default=utcnow)
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    revoked = Column(Boolean, default=False)


class Folder(Base):
    __tablename__ = "folders"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    privacy = Column(String, default=Privacy.private.value, nullable=False)
    password_hash = Column(String, nullable=True)
    allow_download = Column(Boolean, default=True, nullable=False)
    watermark_images = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    owner = relationship("User", back_populates="folders")
    parent = relationship("Folder", remote_side=[id], back_populates="subfolders")
    subfolders = relationship("Folder", back_populates="parent", passive_deletes=True)
    files = relationship("File", back_populates="folder", passive_deletes=True)

    @property
    def password_protected(self) -> bool:
        return bool(self.password_hash)


class File(Base):
    __tablename__ = "files"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    file_path = Column(String, nullable=False)  # storage key
    file_type = Column(String, nullable=False, default="application/octet-stream")
    file_size = Column(BigInteger, nullable=False, default=0)
    total_downloads = Column(BigInteger, nullable=False, default=0)
    last_access_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    owner = relationship("User", back_populates="files")
    folder = relationship("Folder", back_populates="files")


class ShareLink(Base):
    __tablename__ = "share_links"
    __table_args__ = (Index("ix_share_links_shareable", "shareable_type", "shareable_id"),)
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Polymorphic target: (kind, id) resolved through SHAREABLE_MODELS
    shareable_type = Column(String, nullable=False)
    shareable_id = Column(Integer, nullable=False)

    type = Column(String, nullable=False, default=LinkType.public.value)
    token = Column(String, unique=True, index=True, nullable=False)
    link = Column(String, unique=True, nullable=False)
    recipient_email = Column(String, nullable=True, index=True)
    expires_at = Column(DateTime, nullable=True)
    password_hash = Column(String, nullable=True)
    permissions = Column(String, nullable=False, default=LinkPermission.view.value)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="share_links")

    @property
    def password_protected(self) -> bool:
        return bool(self.password_hash)

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())


class FileAccessEvent(Base):
    """One successful download or view of a file, feeding file statistics."""
    __tablename__ = "file_access_events"
    id = Column(Integer, primary_key=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # download, view
    via = Column(String, nullable=False)  # owner, share, archive
    accessed_at = Column(DateTime, default=utcnow, index=True)
    referrer = Column(String, nullable=True)
    country = Column(String, nullable=True)
    platform = Column(String, nullable=True)
    browser = Column(String, nullable=True)


# Dispatch table for ShareLink.shareable_type
SHAREABLE_MODELS: dict[ShareableKind, type[Base]] = {
    ShareableKind.file: File,
    ShareableKind.folder: Folder,
}

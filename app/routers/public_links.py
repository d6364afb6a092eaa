"""Unauthenticated access to content through a share link token."""
from __future__ import annotations
import logging
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from ..access_log import record_download, record_view
from ..db import get_db
from ..errors import envelope
from ..models import File, Folder, LinkPermission, ShareLink, ShareableKind, SHAREABLE_MODELS
from ..schemas import FileOut, FolderOut, ShareAccessRequest
from ..security import verify_password
from ..s3 import StorageClient, get_storage
from .files import file_response, open_file_stream

logger = logging.getLogger(__name__)

router = APIRouter(tags=["public"])


def resolve_share(db: Session, token: str, password: str | None):
    """Validate ``token`` and return ``(link, target)``.

    Checks run in a fixed order: unknown token, expiry, password, target.
    An expired link is refused before its password is ever looked at.
    """
    link = db.query(ShareLink).filter(ShareLink.token == token).first()
    if not link:
        raise HTTPException(status_code=404, detail="Share link not found.")
    if link.is_expired():
        raise HTTPException(status_code=401, detail="Share link has expired.")
    if link.password_protected and not verify_password(password, link.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect password.")
    try:
        kind = ShareableKind(link.shareable_type)
    except ValueError:
        logger.error(f"Share link {link.id} has unknown shareable type {link.shareable_type!r}")
        raise HTTPException(status_code=500, detail="Invalid shareable type.")
    model = SHAREABLE_MODELS[kind]
    target = db.query(model).filter(model.id == link.shareable_id, model.deleted_at.is_(None)).first()
    if target is None:
        raise HTTPException(status_code=404, detail="Shared content not found.")
    return link, target


@router.get("/share/{token}")
def access_share(
    token: str,
    request: Request,
    body: ShareAccessRequest | None = Body(None),
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage),
):
    link, target = resolve_share(db, token, body.password if body is not None else None)

    if isinstance(target, File):
        stream = open_file_stream(storage, target)
        download = link.permissions == LinkPermission.upload_download_view.value
        try:
            if download:
                record_download(db, target, "share", request)
            else:
                record_view(db, target, request)
        except BaseException:
            stream.close()
            raise
        return file_response(stream, target, inline=not download)

    folder: Folder = target
    files = db.query(File).filter(File.folder_id == folder.id, File.deleted_at.is_(None)).order_by(File.name).all()
    subfolders = db.query(Folder).filter(Folder.parent_id == folder.id, Folder.deleted_at.is_(None)).order_by(Folder.name).all()
    return envelope(
        {
            "folder": FolderOut.model_validate(folder),
            "files": [FileOut.model_validate(f) for f in files],
            "subfolders": [FolderOut.model_validate(f) for f in subfolders],
        },
        "Shared folder retrieved successfully.",
    )

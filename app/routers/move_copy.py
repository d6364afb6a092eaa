from __future__ import annotations
import logging
import secrets
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import envelope
from ..local_s3 import ObjectNotFound
from ..models import File, Folder, User
from ..ownership import owned_folder, active_files, active_folders
from ..schemas import MoveCopyRequest
from ..security import get_current_user
from ..s3 import STORAGE_ERRORS, StorageClient, get_storage, delete_object_quietly
from ..storage import StorageQuotaExceeded, enforce_storage_quota
from ..tree import FolderDepthExceeded, is_same_or_descendant, subtree

logger = logging.getLogger(__name__)

router = APIRouter(tags=["move-copy"])


def _skip(skipped: list, kind: str, item_id: int, reason: str) -> None:
    skipped.append({"type": kind, "id": item_id, "reason": reason})


def _missing(requested: list[int], found: list) -> list[int]:
    have = {x.id for x in found}
    return [i for i in dict.fromkeys(requested) if i not in have]


def _cycle_reason(db: Session, folder: Folder, dest: Folder) -> str | None:
    """Why ``folder`` may not be placed under ``dest``, or None when it may."""
    if folder.id == dest.id:
        return "destination_is_self"
    try:
        if is_same_or_descendant(db, folder.id, dest):
            return "destination_is_descendant"
    except FolderDepthExceeded as e:
        logger.warning(f"Refusing to move folder {folder.id}: {e}")
        return "folder_depth_exceeded"
    return None


@router.post("/move")
def move_items(payload: MoveCopyRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    dest = owned_folder(db, current_user, payload.destination_folder_id, detail="Destination folder not found.")
    moved, skipped = [], []

    files = active_files(db, current_user, payload.file_ids)
    for i in _missing(payload.file_ids, files):
        _skip(skipped, "file", i, "not_found")
    for f in files:
        f.folder_id = dest.id
        moved.append({"type": "file", "id": f.id})

    folders = active_folders(db, current_user, payload.folder_ids)
    for i in _missing(payload.folder_ids, folders):
        _skip(skipped, "folder", i, "not_found")
    for folder in folders:
        reason = _cycle_reason(db, folder, dest)
        if reason:
            logger.warning(f"Skipped moving folder {folder.id} into {dest.id}: {reason}")
            _skip(skipped, "folder", folder.id, reason)
            continue
        folder.parent_id = dest.id
        # later ancestor walks must see this move
        db.flush()
        moved.append({"type": "folder", "id": folder.id})

    db.commit()
    return envelope({"moved": moved, "skipped": skipped}, "Items moved successfully")


def _copy_key(user: User, folder_id: int, name: str) -> str:
    return f"users/{user.id}/folders/{folder_id}/{secrets.token_hex(5)}_{name}"


def _copy_file(db: Session, storage: StorageClient, user: User, f: File, folder_id: int, name: str, new_keys: list[str]) -> File:
    key = _copy_key(user, folder_id, f.name)
    storage.copy_object(f.file_path, key)
    new_keys.append(key)
    copy = File(
        user_id=user.id,
        folder_id=folder_id,
        name=name,
        description=f.description,
        file_path=key,
        file_type=f.file_type,
        file_size=f.file_size,
        total_downloads=0,
    )
    db.add(copy)
    return copy


def _copy_folder_tree(db: Session, storage: StorageClient, user: User, folder: Folder, dest: Folder, skipped: list) -> Folder:
    """Duplicate ``folder`` and its active subtree under ``dest``. The caller commits or rolls back."""
    folders, files = subtree(db, folder, "active")
    enforce_storage_quota(user.id, sum(f.file_size or 0 for f in files), db)
    mapping: dict[int, Folder] = {}
    new_keys: list[str] = []
    try:
        for source in [folder, *folders]:
            parent_id = dest.id if source is folder else mapping[source.parent_id].id
            clone = Folder(
                user_id=user.id,
                parent_id=parent_id,
                name=f"Copy of {source.name}" if source is folder else source.name,
                privacy=source.privacy,
                password_hash=source.password_hash,
                allow_download=source.allow_download,
                watermark_images=source.watermark_images,
            )
            db.add(clone)
            db.flush()
            mapping[source.id] = clone
        for f in files:
            try:
                _copy_file(db, storage, user, f, mapping[f.folder_id].id, f.name, new_keys)
            except ObjectNotFound:
                logger.warning(f"Skipped copying file {f.id}: bytes missing at {f.file_path}")
                _skip(skipped, "file", f.id, "bytes_missing")
    except BaseException:
        for key in new_keys:
            delete_object_quietly(storage, key)
        raise
    return mapping[folder.id]


@router.post("/copy")
def copy_items(
    payload: MoveCopyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    dest = owned_folder(db, current_user, payload.destination_folder_id, detail="Destination folder not found.")
    copied, skipped = [], []

    files = active_files(db, current_user, payload.file_ids)
    for i in _missing(payload.file_ids, files):
        _skip(skipped, "file", i, "not_found")
    for f in files:
        new_keys: list[str] = []
        try:
            enforce_storage_quota(current_user.id, f.file_size or 0, db)
            copy = _copy_file(db, storage, current_user, f, dest.id, f"Copy of {f.name}", new_keys)
            db.commit()
        except StorageQuotaExceeded:
            _skip(skipped, "file", f.id, "quota_exceeded")
            continue
        except ObjectNotFound:
            _skip(skipped, "file", f.id, "bytes_missing")
            continue
        except STORAGE_ERRORS + (SQLAlchemyError,) as e:
            db.rollback()
            for key in new_keys:
                delete_object_quietly(storage, key)
            logger.error(f"Copying file {f.id} failed: {e}")
            _skip(skipped, "file", f.id, "storage_error")
            continue
        copied.append({"type": "file", "id": f.id, "new_id": copy.id})

    folders = active_folders(db, current_user, payload.folder_ids)
    for i in _missing(payload.folder_ids, folders):
        _skip(skipped, "folder", i, "not_found")
    for folder in folders:
        reason = _cycle_reason(db, folder, dest)
        if reason:
            _skip(skipped, "folder", folder.id, reason)
            continue
        try:
            clone = _copy_folder_tree(db, storage, current_user, folder, dest, skipped)
            db.commit()
        except StorageQuotaExceeded:
            db.rollback()
            _skip(skipped, "folder", folder.id, "quota_exceeded")
            continue
        except (FolderDepthExceeded,) + STORAGE_ERRORS + (SQLAlchemyError,) as e:
            db.rollback()
            logger.error(f"Copying folder {folder.id} failed: {e}")
            _skip(skipped, "folder", folder.id, "copy_failed")
            continue
        copied.append({"type": "folder", "id": folder.id, "new_id": clone.id})

    logger.info(f"User {current_user.id} copied {len(copied)} items into folder {dest.id}")
    return envelope({"copied": copied, "skipped": skipped}, "Items copied successfully")

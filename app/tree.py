"""Folder tree walks and the soft-delete / restore / purge lifecycle built on them.

Every walk is iterative and bounded by ``max_folder_depth`` so a corrupted
parent chain (a cycle written outside the API) cannot hang a request.
"""
from __future__ import annotations
import datetime as dt
import logging
from sqlalchemy.orm import Session
from .config import get_settings
from .models import File, Folder, ShareLink, ShareableKind, utcnow
from .s3 import StorageClient, delete_object_quietly

logger = logging.getLogger(__name__)

ACTIVE = "active"
ANY = "any"


class FolderDepthExceeded(Exception):
    """The parent chain is deeper than allowed or loops back on itself."""


def ancestor_ids(db: Session, folder: Folder) -> list[int]:
    """Ids from ``folder`` up to its root, ``folder`` itself first."""
    max_depth = get_settings().max_folder_depth
    ids: list[int] = []
    current_id = folder.id
    parent_id = folder.parent_id
    while True:
        if current_id in ids:
            raise FolderDepthExceeded(f"Folder {folder.id} has a cyclic parent chain")
        ids.append(current_id)
        if parent_id is None:
            return ids
        if len(ids) > max_depth:
            raise FolderDepthExceeded(f"Folder {folder.id} is nested deeper than {max_depth}")
        current_id = parent_id
        parent_id = db.query(Folder.parent_id).filter(Folder.id == current_id).scalar()


def is_same_or_descendant(db: Session, folder_id: int, candidate: Folder) -> bool:
    """True when ``candidate`` is ``folder_id`` or lies anywhere beneath it."""
    return folder_id in ancestor_ids(db, candidate)


def _state_filter(q, model, state):
    if state == ANY:
        return q
    if state == ACTIVE:
        return q.filter(model.deleted_at.is_(None))
    return q.filter(model.deleted_at == state)


def subtree(db: Session, root: Folder, state: str | dt.datetime = ACTIVE) -> tuple[list[Folder], list[File]]:
    """Descendant folders of ``root`` (root excluded) and files under root or any of them.

    ``state`` selects rows: ``ACTIVE`` (not trashed), ``ANY``, or a
    ``deleted_at`` timestamp to pick out what was trashed together.
    Folders that do not match are not descended into.
    """
    max_depth = get_settings().max_folder_depth
    folders: list[Folder] = []
    seen = {root.id}
    frontier = [root.id]
    depth = 0
    while frontier:
        depth += 1
        if depth > max_depth:
            raise FolderDepthExceeded(f"Folder {root.id} has a subtree deeper than {max_depth}")
        q = db.query(Folder).filter(Folder.user_id == root.user_id, Folder.parent_id.in_(frontier))
        children = [f for f in _state_filter(q, Folder, state).all() if f.id not in seen]
        seen.update(f.id for f in children)
        folders.extend(children)
        frontier = [f.id for f in children]
    folder_ids = [root.id] + [f.id for f in folders]
    q = db.query(File).filter(File.user_id == root.user_id, File.folder_id.in_(folder_ids))
    files = _state_filter(q, File, state).all()
    return folders, files


def trash_folder(db: Session, folder: Folder, when: dt.datetime | None = None) -> dt.datetime:
    """Mark ``folder`` and its active subtree with one shared ``deleted_at``. The caller commits."""
    when = when or utcnow()
    folders, files = subtree(db, folder, ACTIVE)
    for item in [folder, *folders, *files]:
        item.deleted_at = when
    logger.info(f"Trashed folder {folder.id} with {len(folders)} subfolders and {len(files)} files")
    return when


def _parent_trashed(db: Session, folder_id: int | None) -> bool:
    if folder_id is None:
        return False
    deleted_at = db.query(Folder.deleted_at).filter(Folder.id == folder_id).scalar()
    return deleted_at is not None


def restore_folder(db: Session, folder: Folder) -> tuple[list[Folder], list[File]]:
    """Restore ``folder`` and everything trashed together with it. The caller commits."""
    stamp = folder.deleted_at
    if stamp is None:
        return [], []
    folders, files = subtree(db, folder, stamp)
    for item in [folder, *folders, *files]:
        item.deleted_at = None
    if _parent_trashed(db, folder.parent_id):
        folder.parent_id = None
    return folders, files


def restore_file(db: Session, file: File) -> None:
    file.deleted_at = None
    if _parent_trashed(db, file.folder_id):
        file.folder_id = None


def _delete_links(db: Session, kind: ShareableKind, ids: list[int]) -> int:
    if not ids:
        return 0
    return db.query(ShareLink).filter(
        ShareLink.shareable_type == kind.value,
        ShareLink.shareable_id.in_(ids),
    ).delete(synchronize_session=False)


def purge_files(db: Session, storage: StorageClient, files: list[File]) -> int:
    """Delete bytes, rows and share links of ``files``. Missing bytes are tolerated. The caller commits."""
    for f in files:
        delete_object_quietly(storage, f.file_path)
    _delete_links(db, ShareableKind.file, [f.id for f in files])
    for f in files:
        db.delete(f)
    return len(files)


def purge_folder(db: Session, storage: StorageClient, folder: Folder) -> tuple[int, int]:
    """Permanently remove ``folder`` with its whole subtree regardless of trash state."""
    folders, files = subtree(db, folder, ANY)
    purge_files(db, storage, files)
    _delete_links(db, ShareableKind.folder, [folder.id] + [f.id for f in folders])
    # deepest first so no row outlives its parent
    for f in reversed(folders):
        db.delete(f)
    db.delete(folder)
    return len(folders) + 1, len(files)


def empty_trash(db: Session, storage: StorageClient, user_id: int) -> dict:
    """Purge every trashed file and folder of ``user_id`` and commit."""
    removed_folders = removed_files = 0
    trashed = db.query(Folder).filter(Folder.user_id == user_id, Folder.deleted_at.isnot(None)).all()
    trashed_ids = {f.id for f in trashed}
    # only top-most trashed folders; their purge covers nested ones
    for folder in trashed:
        if folder.parent_id in trashed_ids:
            continue
        nf, nfi = purge_folder(db, storage, folder)
        removed_folders += nf
        removed_files += nfi
    db.flush()
    files = db.query(File).filter(File.user_id == user_id, File.deleted_at.isnot(None)).all()
    removed_files += purge_files(db, storage, files)
    db.commit()
    logger.info(f"Emptied trash for user {user_id}: {removed_folders} folders, {removed_files} files")
    return {"deleted_folders": removed_folders, "deleted_files": removed_files}

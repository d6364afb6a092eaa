from __future__ import annotations
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..models import File, Folder, User
from ..ownership import owned_file
from ..schemas import FileOut, FolderOut, RestoreRequest
from ..security import get_current_user
from ..s3 import StorageClient, get_storage
from ..tree import ancestor_ids, empty_trash, purge_files, restore_file, restore_folder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trash", tags=["trash"])


@router.get("")
def list_trash(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    files = (
        db.query(File)
        .filter(File.user_id == current_user.id, File.deleted_at.isnot(None))
        .order_by(File.deleted_at.desc(), File.id.desc())
        .all()
    )
    folders = (
        db.query(Folder)
        .filter(Folder.user_id == current_user.id, Folder.deleted_at.isnot(None))
        .order_by(Folder.deleted_at.desc(), Folder.id.desc())
        .all()
    )
    return envelope(
        {"files": [FileOut.model_validate(f) for f in files], "folders": [FolderOut.model_validate(f) for f in folders]},
        "Trashed items retrieved successfully.",
    )


@router.post("/restore")
def restore(payload: RestoreRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if not payload.file_ids and not payload.folder_ids:
        raise FieldValidationError({"file_ids": ["No items specified for restoration."]}, "No items specified for restoration.")
    restored_files: set[int] = set()
    restored_folders: set[int] = set()

    if payload.folder_ids:
        folders = (
            db.query(Folder)
            .filter(Folder.id.in_(payload.folder_ids), Folder.user_id == current_user.id, Folder.deleted_at.isnot(None))
            .all()
        )
        # shallowest first so a parent is back before its children are checked
        folders.sort(key=lambda f: (len(ancestor_ids(db, f)), f.id))
        for folder in folders:
            # already brought back as part of an earlier folder's subtree
            if folder.deleted_at is None:
                continue
            sub_folders, sub_files = restore_folder(db, folder)
            restored_folders.add(folder.id)
            restored_folders.update(f.id for f in sub_folders)
            restored_files.update(f.id for f in sub_files)
            db.flush()

    if payload.file_ids:
        files = (
            db.query(File)
            .filter(File.id.in_(payload.file_ids), File.user_id == current_user.id, File.deleted_at.isnot(None))
            .all()
        )
        for f in files:
            restore_file(db, f)
            restored_files.add(f.id)

    db.commit()
    logger.info(f"User {current_user.id} restored {len(restored_folders)} folders and {len(restored_files)} files")
    return envelope(
        {"restored_files": sorted(restored_files), "restored_folders": sorted(restored_folders)},
        "Items restored successfully.",
    )


@router.delete("/file/all")
def empty(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    result = empty_trash(db, storage, current_user.id)
    return envelope(result, "Trash emptied successfully.")


@router.delete("/file/{file_id}")
def delete_forever(
    file_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    f = owned_file(db, current_user, file_id, trashed=True, detail="File not found in trash.")
    purge_files(db, storage, [f])
    db.commit()
    logger.info(f"User {current_user.id} permanently deleted file {file_id}")
    return envelope(None, "File permanently deleted.")

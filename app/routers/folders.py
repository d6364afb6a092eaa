from __future__ import annotations
import logging
import mimetypes
import secrets
from fastapi import APIRouter, Depends, File as FormFile, Form, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ..config import get_settings
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..listing import ListParams, list_params, paginate, filter_folders, FOLDER_SORTS
from ..models import File, Folder, User
from ..ownership import owned_folder
from ..schemas import FolderCreate, FolderUpdate, FolderOut, FileOut
from ..security import get_current_user, hash_password
from ..s3 import STORAGE_ERRORS, StorageClient, get_storage, delete_object_quietly
from ..storage import StorageQuotaExceeded, enforce_storage_quota, measure_upload
from ..tree import trash_folder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["folders"])


def _clean_name(filename: str | None) -> str:
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "untitled"


def _content_type(upload: UploadFile, name: str) -> str:
    ctype = upload.content_type
    if not ctype or ctype == "application/octet-stream":
        ctype = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return ctype


def store_upload(db: Session, storage: StorageClient, user: User, folder: Folder | None, upload: UploadFile) -> File:
    """Persist one upload's bytes and row. Raises ValueError, StorageQuotaExceeded or a storage error."""
    name = _clean_name(upload.filename)
    size = measure_upload(upload.file)
    if size > get_settings().max_upload_bytes:
        raise ValueError(f"File exceeds the maximum upload size of {get_settings().max_upload_bytes} bytes")
    enforce_storage_quota(user.id, size, db)
    key = f"users/{user.id}/folders/{folder.id if folder else 'root'}/{secrets.token_hex(5)}_{name}"
    stored = storage.put_object(key, upload.file)
    row = File(
        user_id=user.id,
        folder_id=folder.id if folder else None,
        name=name,
        file_path=key,
        file_type=_content_type(upload, name),
        file_size=stored,
    )
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        delete_object_quietly(storage, key)
        raise
    db.refresh(row)
    return row


@router.post("/folder/new", status_code=status.HTTP_201_CREATED)
def create_folder(payload: FolderCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if payload.parent_id is not None:
        owned_folder(db, current_user, payload.parent_id, detail="Parent folder not found.")
    folder = Folder(
        user_id=current_user.id,
        parent_id=payload.parent_id,
        name=payload.name,
        privacy=(payload.privacy.value if payload.privacy else current_user.default_privacy),
        password_hash=hash_password(payload.password) if payload.password else None,
        allow_download=payload.allow_download,
        watermark_images=payload.watermark_images,
    )
    db.add(folder)
    db.commit()
    db.refresh(folder)
    logger.info(f"User {current_user.id} created folder {folder.id}")
    return envelope(FolderOut.model_validate(folder), "Folder created successfully.")


@router.post("/folder/upload", status_code=status.HTTP_201_CREATED)
def upload_files(
    files: list[UploadFile] = FormFile(...),
    folder_id: int | None = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    folder = owned_folder(db, current_user, folder_id) if folder_id is not None else None
    uploaded, failed = [], []
    for upload in files:
        name = _clean_name(upload.filename)
        try:
            uploaded.append(FileOut.model_validate(store_upload(db, storage, current_user, folder, upload)))
        except StorageQuotaExceeded:
            failed.append({"name": name, "reason": "Storage quota exceeded"})
        except ValueError as e:
            failed.append({"name": name, "reason": str(e)})
        except STORAGE_ERRORS + (SQLAlchemyError,) as e:
            logger.error(f"Upload of {name} failed for user {current_user.id}: {e}")
            failed.append({"name": name, "reason": "Failed to store file"})
    if not uploaded:
        raise FieldValidationError({"files": [f"{f['name']}: {f['reason']}" for f in failed]}, "No files were uploaded.")
    logger.info(f"User {current_user.id} uploaded {len(uploaded)} files ({len(failed)} failed)")
    return envelope({"uploaded": uploaded, "failed": failed}, "Files uploaded successfully.")


@router.get("/folder/{folder_id}")
def show_folder(folder_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    folder = owned_folder(db, current_user, folder_id)
    files = db.query(File).filter(File.folder_id == folder.id, File.deleted_at.is_(None)).order_by(File.name).all()
    subfolders = db.query(Folder).filter(Folder.parent_id == folder.id, Folder.deleted_at.is_(None)).order_by(Folder.name).all()
    return envelope(
        {
            "folder": FolderOut.model_validate(folder),
            "files": [FileOut.model_validate(f) for f in files],
            "subfolders": [FolderOut.model_validate(f) for f in subfolders],
        },
        "Folder retrieved successfully.",
    )


@router.patch("/folder/{folder_id}")
def update_folder(folder_id: int, payload: FolderUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    folder = owned_folder(db, current_user, folder_id)
    fields = payload.model_fields_set
    if "name" in fields and payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise FieldValidationError({"name": ["The name field is required."]})
        folder.name = name
    if "privacy" in fields and payload.privacy is not None:
        folder.privacy = payload.privacy.value
    if "password" in fields:
        folder.password_hash = hash_password(payload.password) if payload.password else None
    if "allow_download" in fields and payload.allow_download is not None:
        folder.allow_download = payload.allow_download
    if "watermark_images" in fields and payload.watermark_images is not None:
        folder.watermark_images = payload.watermark_images
    db.commit()
    db.refresh(folder)
    return envelope(FolderOut.model_validate(folder), "Folder updated successfully.")


@router.delete("/folder/{folder_id}")
def delete_folder(folder_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    folder = owned_folder(db, current_user, folder_id)
    trash_folder(db, folder)
    db.commit()
    return envelope(None, "Folder moved to trash.")


@router.get("/all-folders")
def list_folders(
    parent_id: int | None = Query(None),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(Folder).filter(Folder.user_id == current_user.id, Folder.deleted_at.is_(None))
    if parent_id is not None:
        owned_folder(db, current_user, parent_id)
        q = q.filter(Folder.parent_id == parent_id)
    else:
        q = q.filter(Folder.parent_id.is_(None))
    q = filter_folders(q, params.search)
    return envelope(paginate(q, params, FOLDER_SORTS, FolderOut, Folder.id), "Folders retrieved successfully.")

from __future__ import annotations
import logging
from urllib.parse import quote
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from sqlalchemy.orm import Session
from ..access_log import record_download
from ..archive import archive_name, build_zip, remove_archive, stream_archive
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..listing import ListParams, list_params, paginate, filter_files, FILE_SORTS
from ..local_s3 import ObjectNotFound
from ..models import File, User, utcnow
from ..ownership import owned_file, owned_folder, active_files
from ..schemas import FileOut, FileUpdate, FileIdsRequest
from ..security import get_current_user
from ..s3 import STORAGE_ERRORS, StorageClient, get_storage, iter_object

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def content_disposition(name: str, inline: bool = False) -> str:
    kind = "inline" if inline else "attachment"
    fallback = name.encode("ascii", "ignore").decode().replace('"', "") or "download"
    return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{quote(name)}"


def open_file_stream(storage: StorageClient, f: File):
    """Open the stored bytes of ``f`` or raise 404 when they are gone."""
    try:
        return iter_object(storage, f.file_path)
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="File not found on storage.")


def file_response(body, f: File, inline: bool = False) -> StreamingResponse:
    headers = {"Content-Disposition": content_disposition(f.name, inline)}
    if f.file_size:
        headers["Content-Length"] = str(f.file_size)
    return StreamingResponse(body, media_type=f.file_type or "application/octet-stream", headers=headers)


def _list_files(folder_id: int | None, params: ListParams, db: Session, user: User) -> dict:
    q = db.query(File).filter(File.user_id == user.id, File.deleted_at.is_(None))
    if folder_id is not None:
        owned_folder(db, user, folder_id)
        q = q.filter(File.folder_id == folder_id)
    q = filter_files(q, params.search)
    return paginate(q, params, FILE_SORTS, FileOut, File.id)


# Static paths are registered before /file/{file_id} so they are not captured by it.
@router.get("/file/all")
def list_all_files(
    folder_id: int | None = Query(None),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return envelope(_list_files(folder_id, params, db, current_user), "Files retrieved successfully.")


@router.get("/all-files")
def all_files(
    folder_id: int | None = Query(None),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return envelope(_list_files(folder_id, params, db, current_user), "Files retrieved successfully.")


@router.get("/file/download/{file_id}")
def download_file(
    file_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    f = owned_file(db, current_user, file_id)
    body = open_file_stream(storage, f)
    try:
        record_download(db, f, "owner", request)
    except BaseException:
        body.close()
        raise
    return file_response(body, f)


@router.post("/file/download")
def download_archive(
    payload: FileIdsRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    files = active_files(db, current_user, payload.file_ids)
    if not files:
        raise HTTPException(status_code=404, detail="No files found.")
    try:
        path, included = build_zip(storage, files)
    except (STORAGE_ERRORS + (ValueError,)) as e:
        logger.error(f"Failed to build archive for user {current_user.id}: {e}")
        raise HTTPException(status_code=500, detail="Could not create zip file.")
    if not included:
        remove_archive(path)
        raise HTTPException(status_code=404, detail="No files found on storage.")
    # nothing owns the archive until the response does
    try:
        for f in included:
            record_download(db, f, "archive", request)
    except BaseException:
        remove_archive(path)
        raise
    return StreamingResponse(
        stream_archive(path),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive_name()}"'},
        background=BackgroundTask(remove_archive, path),
    )


@router.delete("/file")
def delete_files(payload: FileIdsRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    ids = set(payload.file_ids)
    files = active_files(db, current_user, list(ids))
    if len(files) != len(ids):
        raise HTTPException(status_code=404, detail="One or more files not found.")
    now = utcnow()
    for f in files:
        f.deleted_at = now
    db.commit()
    logger.info(f"User {current_user.id} trashed {len(files)} files")
    return envelope({"deleted": [f.id for f in files]}, "Files moved to trash.")


@router.get("/file/{file_id}")
def show_file(file_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope(FileOut.model_validate(owned_file(db, current_user, file_id)), "File retrieved successfully.")


@router.patch("/file/{file_id}")
def update_file(file_id: int, payload: FileUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    f = owned_file(db, current_user, file_id)
    fields = payload.model_fields_set
    if "name" in fields and payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise FieldValidationError({"name": ["The name field is required."]})
        f.name = name
    if "description" in fields:
        f.description = payload.description
    db.commit()
    db.refresh(f)
    return envelope(FileOut.model_validate(f), "File updated successfully.")


@router.delete("/file/{file_id}")
def delete_file(file_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    f = owned_file(db, current_user, file_id)
    f.deleted_at = utcnow()
    db.commit()
    return envelope(None, "File moved to trash.")

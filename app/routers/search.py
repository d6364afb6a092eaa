from __future__ import annotations
from typing import Literal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import envelope
from ..listing import ListParams, paginate, filter_files, filter_folders, FILE_SORTS, FOLDER_SORTS
from ..models import File, Folder, User
from ..schemas import FileOut, FolderOut
from ..security import get_current_user

router = APIRouter(tags=["search"])


@router.get("/search")
def search(
    query: str = Query(..., min_length=1, max_length=255),
    type: Literal["file", "folder"] | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["name", "created_at"] = Query("created_at"),
    order: Literal["asc", "desc"] = Query("desc"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    params = ListParams(page=page, limit=limit, sort_by=sort_by, order=order, search=query)
    results: dict = {"files": None, "folders": None}
    if type in (None, "file"):
        q = db.query(File).filter(File.user_id == current_user.id, File.deleted_at.is_(None))
        results["files"] = paginate(filter_files(q, query), params, FILE_SORTS, FileOut, File.id)
    if type in (None, "folder"):
        q = db.query(Folder).filter(Folder.user_id == current_user.id, Folder.deleted_at.is_(None))
        results["folders"] = paginate(filter_folders(q, query), params, FOLDER_SORTS, FolderOut, Folder.id)
    return envelope(results, "Search results retrieved successfully")

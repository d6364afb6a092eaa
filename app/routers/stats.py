from __future__ import annotations
from typing import Literal
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session
from ..access_log import file_stats
from ..db import get_db
from ..errors import envelope
from ..models import File, Folder, User
from ..ownership import owned_file, owned_folder
from ..security import get_current_user
from ..storage import get_user_storage_usage

router = APIRouter(tags=["stats"])


@router.get("/stats/folder/{folder_id}")
def folder_stats(folder_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    folder = owned_folder(db, current_user, folder_id)
    files_count, downloads, size = db.query(
        func.count(File.id),
        func.coalesce(func.sum(File.total_downloads), 0),
        func.coalesce(func.sum(File.file_size), 0),
    ).filter(File.folder_id == folder.id, File.deleted_at.is_(None)).one()
    subfolders = db.query(func.count(Folder.id)).filter(
        Folder.parent_id == folder.id, Folder.deleted_at.is_(None)
    ).scalar() or 0
    return envelope(
        {
            "folder_id": folder.id,
            "total_files": files_count,
            "total_subfolders": subfolders,
            "total_downloads": int(downloads),
            "total_size_bytes": int(size),
        },
        "Folder stats retrieved successfully",
    )


@router.get("/stats/file/{file_id}")
def get_file_stats(
    file_id: int,
    timeframe: Literal["24h", "7d", "30d", "12mo"] = Query("30d"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    f = owned_file(db, current_user, file_id)
    return envelope(file_stats(db, f, timeframe), "File stats retrieved successfully")


@router.get("/used-storage")
def used_storage(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return envelope(get_user_storage_usage(current_user, db), "Total used storage and file stats retrieved successfully")

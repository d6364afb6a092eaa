from __future__ import annotations
from typing import Literal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import envelope
from ..listing import ListParams, list_params, paginate, FILE_SORTS
from ..models import File, Folder, User
from ..schemas import FileOut, FolderOut
from ..security import get_current_user

router = APIRouter(prefix="/recent", tags=["recent"])


@router.get("/files")
def recent_files(params: ListParams = Depends(list_params), db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    q = db.query(File).filter(File.user_id == current_user.id, File.deleted_at.is_(None))
    return envelope(paginate(q, params, FILE_SORTS, FileOut, File.id), "Recent files retrieved successfully")


@router.get("")
def recent_activity(
    limit: int = Query(20, ge=1, le=100),
    order: Literal["asc", "desc"] = Query("desc"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # files take the extra slot when limit is odd
    file_limit, folder_limit = limit - limit // 2, limit // 2
    file_order = File.updated_at.asc() if order == "asc" else File.updated_at.desc()
    folder_order = Folder.updated_at.asc() if order == "asc" else Folder.updated_at.desc()
    files = (
        db.query(File)
        .filter(File.user_id == current_user.id, File.deleted_at.is_(None))
        .order_by(file_order, File.id.desc())
        .limit(file_limit)
        .all()
    )
    folders = (
        db.query(Folder)
        .filter(Folder.user_id == current_user.id, Folder.deleted_at.is_(None))
        .order_by(folder_order, Folder.id.desc())
        .limit(folder_limit)
        .all()
    )
    merged = [{"type": "file", "item": FileOut.model_validate(f), "updated_at": f.updated_at} for f in files]
    merged += [{"type": "folder", "item": FolderOut.model_validate(f), "updated_at": f.updated_at} for f in folders]
    merged.sort(key=lambda entry: entry["updated_at"], reverse=True)
    return envelope(
        {
            "files": [FileOut.model_validate(f) for f in files],
            "folders": [FolderOut.model_validate(f) for f in folders],
            "all_recent_items": merged,
        },
        "Recent activity retrieved successfully",
    )

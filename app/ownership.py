"""Owner-scoped lookups. Anything not owned by the caller is reported as missing."""
from __future__ import annotations
from fastapi import HTTPException
from sqlalchemy.orm import Session
from .models import File, Folder, User


def owned_folder(db: Session, user: User, folder_id: int, *, trashed: bool = False, detail: str = "Folder not found.") -> Folder:
    q = db.query(Folder).filter(Folder.id == folder_id, Folder.user_id == user.id)
    q = q.filter(Folder.deleted_at.isnot(None) if trashed else Folder.deleted_at.is_(None))
    folder = q.first()
    if not folder:
        raise HTTPException(status_code=404, detail=detail)
    return folder


def owned_file(db: Session, user: User, file_id: int, *, trashed: bool = False, detail: str = "File not found.") -> File:
    q = db.query(File).filter(File.id == file_id, File.user_id == user.id)
    q = q.filter(File.deleted_at.isnot(None) if trashed else File.deleted_at.is_(None))
    f = q.first()
    if not f:
        raise HTTPException(status_code=404, detail=detail)
    return f


def active_files(db: Session, user: User, ids: list[int]) -> list[File]:
    if not ids:
        return []
    return db.query(File).filter(File.id.in_(ids), File.user_id == user.id, File.deleted_at.is_(None)).all()


def active_folders(db: Session, user: User, ids: list[int]) -> list[Folder]:
    if not ids:
        return []
    return db.query(Folder).filter(Folder.id.in_(ids), Folder.user_id == user.id, Folder.deleted_at.is_(None)).all()

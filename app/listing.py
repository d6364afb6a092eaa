from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Literal
from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Query as OrmQuery
from .models import File, Folder

# Public sort keys -> columns. Legacy aliases (filename, uploaded_date, filesize) are kept for old clients.
FILE_SORTS = {
    "name": File.name,
    "filename": File.name,
    "created_at": File.created_at,
    "uploaded_date": File.created_at,
    "total_downloads": File.total_downloads,
    "file_size": File.file_size,
    "filesize": File.file_size,
    "last_access_date": File.last_access_date,
}
FOLDER_SORTS = {
    "name": Folder.name,
    "filename": Folder.name,
    "created_at": Folder.created_at,
    "uploaded_date": Folder.created_at,
}
DEFAULT_SORT = "created_at"


@dataclass
class ListParams:
    page: int = 1
    limit: int = 20
    sort_by: str | None = None
    order: str = "desc"
    search: str | None = None


def list_params(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str | None = Query(None),
    order: Literal["asc", "desc"] = Query("desc"),
    search: str | None = Query(None, max_length=255),
) -> ListParams:
    return ListParams(page=page, limit=limit, sort_by=sort_by, order=order, search=search)


def like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def filter_files(q: OrmQuery, term: str | None) -> OrmQuery:
    if not term:
        return q
    pattern = like_pattern(term)
    return q.filter(or_(File.name.ilike(pattern, escape="\\"), File.description.ilike(pattern, escape="\\")))


def filter_folders(q: OrmQuery, term: str | None) -> OrmQuery:
    if not term:
        return q
    return q.filter(Folder.name.ilike(like_pattern(term), escape="\\"))


def resolve_sort(sorts: dict, sort_by: str | None) -> str:
    return sort_by if sort_by in sorts else DEFAULT_SORT


def paginate(q: OrmQuery, params: ListParams, sorts: dict, schema: type[BaseModel], id_column) -> dict:
    """Sort, slice and serialize ``q``; ties are broken by id so pages never overlap."""
    by = resolve_sort(sorts, params.sort_by)
    column = sorts[by]
    if params.order == "asc":
        q = q.order_by(column.asc(), id_column.asc())
    else:
        q = q.order_by(column.desc(), id_column.desc())
    total = q.order_by(None).count()
    rows = q.offset((params.page - 1) * params.limit).limit(params.limit).all()
    return {
        "items": [schema.model_validate(r) for r in rows],
        "pagination": {
            "total_items": total,
            "total_pages": max(1, math.ceil(total / params.limit)),
            "current_page": params.page,
            "limit": params.limit,
        },
        "sort": {"by": by, "order": params.order},
    }

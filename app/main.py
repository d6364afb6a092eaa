from __future__ import annotations
import os, datetime as dt
import logging
from fastapi import APIRouter, Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from . import db as dbmod
from .config import get_settings
from .errors import install_exception_handlers
from .routers.auth import router as auth_router
from .routers.account import router as account_router
from .routers.folders import router as folders_router
from .routers.files import router as files_router
from .routers.move_copy import router as move_copy_router
from .routers.links import router as links_router
from .routers.public_links import router as public_router
from .routers.trash import router as trash_router
from .routers.recent import router as recent_router
from .routers.search import router as search_router
from .routers.stats import router as stats_router
from .s3 import STORAGE_ERRORS, get_storage

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=get_settings().app_name)
install_exception_handlers(app)

dbmod.create_tables()

api = APIRouter(prefix="/api/v1")
api.include_router(auth_router)
api.include_router(account_router)
api.include_router(folders_router)
api.include_router(files_router)
api.include_router(move_copy_router)
api.include_router(links_router)
api.include_router(trash_router)
api.include_router(recent_router)
api.include_router(search_router)
api.include_router(stats_router)
app.include_router(api)
app.include_router(public_router)


@app.get("/ping")
def ping():
    return {"status": "ok"}


@app.get("/version")
def version():
    """Return build/version information for the server."""
    return {
        "version": os.getenv("GIT_COMMIT", os.getenv("COMMIT", "unknown")),
        "build": os.getenv("BUILD_DATE", "unknown"),
    }


@app.get("/healthz")
def healthz(db: Session = Depends(dbmod.get_db)):
    """Run simple checks for the database and object storage."""
    db_status = "skipped"
    storage_status = "skipped"
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {type(e).__name__}"
    try:
        storage = app.dependency_overrides.get(get_storage, get_storage)()
        storage.ping()
        storage_status = "ok"
    except STORAGE_ERRORS + (ValueError,) as e:
        storage_status = f"error: {type(e).__name__}"
    server_time = int(dt.datetime.now(dt.timezone.utc).timestamp() * 1_000_000)
    ok = db_status == "ok" and storage_status == "ok"
    return {
        "status": "ok" if ok else "error",
        "ok": ok,
        "db": db_status,
        "storage": storage_status,
        "serverTime": server_time,
    }

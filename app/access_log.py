from __future__ import annotations
import datetime as dt
import logging
from urllib.parse import urlparse
from fastapi import Request
from sqlalchemy import func, update
from sqlalchemy.orm import Session
from .config import get_settings
from .models import File, FileAccessEvent, utcnow

logger = logging.getLogger(__name__)

TIMEFRAMES = {
    "24h": dt.timedelta(hours=24),
    "7d": dt.timedelta(days=7),
    "30d": dt.timedelta(days=30),
    "12mo": dt.timedelta(days=365),
}

# (user-agent token, label); first match wins so Edge/Opera precede Chrome
_BROWSERS = [
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Firefox/", "Firefox"),
    ("Chrome/", "Chrome"),
    ("Safari/", "Safari"),
]
_PLATFORMS = [
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Windows", "Windows"),
    ("Mac OS X", "macOS"),
    ("Linux", "Linux"),
]


def _match(ua: str, table: list[tuple[str, str]]) -> str | None:
    for token, label in table:
        if token in ua:
            return label
    return None


def referrer_host(request: Request | None) -> str | None:
    if request is None:
        return None
    ref = request.headers.get("Referer")
    if not ref:
        return None
    return urlparse(ref).hostname


def client_platform(request: Request | None) -> str | None:
    if request is None:
        return None
    hint = request.headers.get("Sec-CH-UA-Platform")
    if hint:
        return hint.strip('"') or None
    return _match(request.headers.get("User-Agent", ""), _PLATFORMS)


def client_browser(request: Request | None) -> str | None:
    if request is None:
        return None
    return _match(request.headers.get("User-Agent", ""), _BROWSERS)


def client_country(request: Request | None) -> str | None:
    if request is None:
        return None
    value = request.headers.get(get_settings().country_header)
    # Cloudflare uses XX for unknown and T1 for Tor
    if not value or value.upper() in ("XX", "T1"):
        return None
    return value.upper()


def record_access(db: Session, file: File, kind: str, via: str, request: Request | None = None) -> FileAccessEvent:
    """Add an access event for ``file``. The caller commits."""
    event = FileAccessEvent(
        file_id=file.id,
        kind=kind,
        via=via,
        referrer=referrer_host(request),
        country=client_country(request),
        platform=client_platform(request),
        browser=client_browser(request),
    )
    db.add(event)
    return event


def bump_download(db: Session, file_id: int) -> None:
    """Increment the download counter in a single UPDATE so concurrent downloads never lose a count."""
    now = utcnow()
    db.execute(
        update(File)
        .where(File.id == file_id)
        .values(total_downloads=File.total_downloads + 1, last_access_date=now)
        .execution_options(synchronize_session=False)
    )


def record_download(db: Session, file: File, via: str, request: Request | None = None) -> None:
    bump_download(db, file.id)
    record_access(db, file, "download", via, request)
    db.commit()
    logger.debug(f"Recorded {via} download of file {file.id}")


def record_view(db: Session, file: File, request: Request | None = None) -> None:
    file.last_access_date = utcnow()
    record_access(db, file, "view", "share", request)
    db.commit()


def timeframe_start(timeframe: str, now: dt.datetime | None = None) -> dt.datetime:
    return (now or utcnow()) - TIMEFRAMES.get(timeframe, TIMEFRAMES["30d"])


def count_events(db: Session, file_id: int, kind: str, since: dt.datetime) -> int:
    return db.query(func.count(FileAccessEvent.id)).filter(
        FileAccessEvent.file_id == file_id,
        FileAccessEvent.kind == kind,
        FileAccessEvent.accessed_at >= since,
    ).scalar() or 0


def breakdown(db: Session, file_id: int, since: dt.datetime, column, label: str, limit: int = 10) -> list[dict]:
    """Top values of ``column`` for the file's events since ``since``, as ``[{label: value, "count": n}]``."""
    rows = (
        db.query(column, func.count(FileAccessEvent.id).label("n"))
        .filter(
            FileAccessEvent.file_id == file_id,
            FileAccessEvent.accessed_at >= since,
            column.isnot(None),
        )
        .group_by(column)
        .order_by(func.count(FileAccessEvent.id).desc(), column)
        .limit(limit)
        .all()
    )
    return [{label: value, "count": n} for value, n in rows]


def file_stats(db: Session, file: File, timeframe: str) -> dict:
    since = timeframe_start(timeframe)
    return {
        "file_id": file.id,
        "timeframe": timeframe if timeframe in TIMEFRAMES else "30d",
        "total_downloads_all_time": file.total_downloads or 0,
        "downloads_in_timeframe": count_events(db, file.id, "download", since),
        "views_in_timeframe": count_events(db, file.id, "view", since),
        "countries": breakdown(db, file.id, since, FileAccessEvent.country, "country"),
        "top_referrers": breakdown(db, file.id, since, FileAccessEvent.referrer, "referrer"),
        "browsers": breakdown(db, file.id, since, FileAccessEvent.browser, "browser"),
        "os": breakdown(db, file.id, since, FileAccessEvent.platform, "os"),
    }

from __future__ import annotations
import datetime as dt
import logging
import secrets
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import jwt
from sqlalchemy.orm import Session
from .db import get_db
from .config import get_settings
from .models import User, UserSession, utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)


def hash_password(p: str) -> str:
    return pwd_context.hash(p)


def verify_password(p: str | None, h: str | None) -> bool:
    if not p or not h:
        return False
    return pwd_context.verify(p, h)


def create_token(user_id: int, jti: str, issued_at: dt.datetime | None = None) -> str:
    settings = get_settings()
    now = issued_at or utcnow()
    iat = int(now.replace(tzinfo=dt.timezone.utc).timestamp())
    payload = {
        "sub": str(user_id),
        "iss": settings.jwt_issuer,
        "iat": iat,
        "exp": iat + settings.jwt_exp_hours * 3600,
        "jti": jti,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, *, verify_exp: bool = True) -> dict:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"verify_exp": verify_exp, "require": ["sub", "iat", "exp", "jti"]},
    )


def open_session(db: Session, user: User, request: Request | None = None) -> dict:
    """Record a new session row for ``user`` and return the token payload for clients."""
    jti = secrets.token_urlsafe(16)
    ip = ua = None
    if request is not None:
        ip = request.headers.get("X-Forwarded-For") or (request.client.host if request.client else None)
        ua = request.headers.get("User-Agent")
    db.add(UserSession(user_id=user.id, jti=jti, ip=ip, user_agent=ua))
    db.commit()
    expires_in = get_settings().jwt_exp_hours * 3600
    return {"token": create_token(user.id, jti), "token_type": "bearer", "expires_in": expires_in}


def revoke_session(db: Session, user_id: int, jti: str | None) -> bool:
    if not jti:
        return False
    sess = db.query(UserSession).filter(UserSession.user_id == user_id, UserSession.jti == jti).first()
    if not sess or sess.revoked:
        return False
    sess.revoked = True
    db.commit()
    return True


def _bearer_token(creds: HTTPAuthorizationCredentials | None) -> str:
    if creds and creds.scheme and creds.scheme.lower() == "bearer" and creds.credentials:
        return creds.credentials
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")


def _resolve_session(db: Session, payload: dict) -> tuple[User, UserSession]:
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    sess = (
        db.query(UserSession)
        .filter(UserSession.jti == payload.get("jti"), UserSession.user_id == user.id)
        .first()
    )
    if not sess or sess.revoked:
        raise HTTPException(status_code=401, detail="Session revoked or missing")
    return user, sess


def get_auth(creds: HTTPAuthorizationCredentials = Depends(auth_scheme), db: Session = Depends(get_db)):
    token = _bearer_token(creds)
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user, sess = _resolve_session(db, payload)
    sess.last_seen_at = utcnow()
    db.commit()
    return {"user": user, "jti": sess.jti}


def get_refreshable_auth(creds: HTTPAuthorizationCredentials = Depends(auth_scheme), db: Session = Depends(get_db)):
    """Like ``get_auth`` but accepts an expired token still inside the refresh window."""
    token = _bearer_token(creds)
    try:
        payload = decode_token(token, verify_exp=False)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    issued = dt.datetime.fromtimestamp(int(payload["iat"]), dt.timezone.utc).replace(tzinfo=None)
    if issued + dt.timedelta(hours=get_settings().jwt_refresh_ttl_hours) < utcnow():
        raise HTTPException(status_code=401, detail="Token can no longer be refreshed")
    user, sess = _resolve_session(db, payload)
    return {"user": user, "jti": sess.jti}


def get_current_user(ctx=Depends(get_auth)) -> User:
    return ctx["user"]

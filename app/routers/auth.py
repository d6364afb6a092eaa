from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..models import User, File
from ..schemas import RegisterRequest, LoginRequest, UpdateAccountRequest, DeleteAccountRequest, UserOut
from ..security import hash_password, verify_password, open_session, revoke_session, get_auth, get_refreshable_auth, get_current_user
from ..s3 import StorageClient, get_storage, delete_object_quietly

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _taken(db: Session, *, username: str | None = None, email: str | None = None, exclude_id: int | None = None) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    checks = [("username", User.username, username), ("email", func.lower(User.email), email.lower() if email else None)]
    for field, column, value in checks:
        if value is None:
            continue
        q = db.query(User.id).filter(column == value)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errors[field] = [f"The {field} has already been taken."]
    return errors


def _commit_unique(db: Session) -> None:
    # two registrations racing past the pre-check still hit the unique index
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise FieldValidationError({"username": ["The username or email has already been taken."]})


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    errors = _taken(db, username=payload.username, email=payload.email)
    if errors:
        raise FieldValidationError(errors)
    user = User(
        firstname=payload.firstname,
        lastname=payload.lastname,
        username=payload.username,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    _commit_unique(db)
    db.refresh(user)
    logger.info(f"Registered user {user.id} ({user.username})")
    token = open_session(db, user, request)
    return envelope({"user": UserOut.model_validate(user), **token}, "User registered successfully.")


@router.post("/login")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    ident = payload.email.strip()
    user = db.query(User).filter(or_(func.lower(User.email) == ident.lower(), User.username == ident)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = open_session(db, user, request)
    return envelope({"user": UserOut.model_validate(user), **token}, "User logged in successfully.")


@router.post("/logout")
def logout(db: Session = Depends(get_db), ctx=Depends(get_auth)):
    revoke_session(db, ctx["user"].id, ctx["jti"])
    return envelope(None, "Successfully logged out.")


@router.post("/refresh")
def refresh(request: Request, db: Session = Depends(get_db), ctx=Depends(get_refreshable_auth)):
    user = ctx["user"]
    revoke_session(db, user.id, ctx["jti"])
    token = open_session(db, user, request)
    return envelope(token, "Token refreshed successfully.")


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return envelope(UserOut.model_validate(current_user), "User profile retrieved successfully.")


@router.put("/update-account")
def update_account(payload: UpdateAccountRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    errors = _taken(db, username=payload.username, email=payload.email, exclude_id=current_user.id)
    if payload.password is not None:
        if payload.password_confirmation != payload.password:
            errors.setdefault("password", []).append("The password confirmation does not match.")
        if not payload.current_password:
            errors.setdefault("current_password", []).append("The current password field is required when password is present.")
    if errors:
        raise FieldValidationError(errors)
    if payload.password is not None:
        if not verify_password(payload.current_password, current_user.password_hash):
            raise HTTPException(status_code=401, detail="Current password is incorrect")
        current_user.password_hash = hash_password(payload.password)

    for field in ("firstname", "lastname", "username"):
        value = getattr(payload, field)
        if value is not None:
            setattr(current_user, field, value)
    if payload.email is not None:
        current_user.email = payload.email.lower()
    _commit_unique(db)
    db.refresh(current_user)
    return envelope(UserOut.model_validate(current_user), "Account updated successfully.")


@router.delete("/delete-account")
def delete_account(
    payload: DeleteAccountRequest,
    db: Session = Depends(get_db),
    ctx=Depends(get_auth),
    storage: StorageClient = Depends(get_storage),
):
    user: User = ctx["user"]
    if not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect password")
    revoke_session(db, user.id, ctx["jti"])
    # bytes first; rows go with the user through ON DELETE CASCADE
    for (key,) in db.query(File.file_path).filter(File.user_id == user.id).all():
        delete_object_quietly(storage, key)
    delete_object_quietly(storage, user.avatar)
    user_id = user.id
    db.delete(user)
    db.commit()
    logger.info(f"Deleted account {user_id}")
    return envelope(None, "Account deleted successfully.")

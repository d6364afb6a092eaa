from __future__ import annotations
import logging
import secrets
import string
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
from ..config import get_settings
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..models import LinkType, ShareLink, ShareableKind, SHAREABLE_MODELS, User, utcnow
from ..ownership import owned_file, owned_folder
from ..schemas import FileOut, FolderOut, ShareLinkCreate, ShareLinkOut, ShareLinkUpdate
from ..security import get_current_user, hash_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["links"])

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 32


def new_token(db: Session) -> str:
    while True:
        token = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))
        if not db.query(ShareLink.id).filter(ShareLink.token == token).first():
            return token


def share_url(token: str) -> str:
    return f"{get_settings().share_base_url.rstrip('/')}/share/{token}"


def _owned_link(db: Session, user: User, kind: ShareableKind, link_id: int) -> ShareLink:
    link = db.query(ShareLink).filter(
        ShareLink.id == link_id,
        ShareLink.user_id == user.id,
        ShareLink.shareable_type == kind.value,
    ).first()
    if not link:
        raise HTTPException(status_code=404, detail="Share link not found.")
    return link


def _require_recipient(link_type: LinkType | str | None, recipient: str | None) -> None:
    if link_type in (LinkType.email, LinkType.email.value) and not recipient:
        raise FieldValidationError({"recipient_email": ["The recipient email field is required when type is email."]})


@router.post("/link/{kind}/{item_id}", status_code=status.HTTP_201_CREATED)
def create_link(
    kind: ShareableKind,
    item_id: int,
    payload: ShareLinkCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if kind is ShareableKind.file:
        target = owned_file(db, current_user, item_id)
    else:
        target = owned_folder(db, current_user, item_id)
    _require_recipient(payload.type, payload.recipient_email)
    token = new_token(db)
    link = ShareLink(
        user_id=current_user.id,
        shareable_type=kind.value,
        shareable_id=target.id,
        type=payload.type.value,
        token=token,
        link=share_url(token),
        recipient_email=payload.recipient_email.lower() if payload.recipient_email else None,
        expires_at=payload.expires_at,
        password_hash=hash_password(payload.password) if payload.password else None,
        permissions=payload.permissions.value,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    logger.info(f"User {current_user.id} created {link.type} link {link.id} for {kind.value} {target.id}")
    return envelope(ShareLinkOut.model_validate(link), "Share link created successfully")


@router.get("/link/{kind}/{link_id}")
def show_link(kind: ShareableKind, link_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    link = _owned_link(db, current_user, kind, link_id)
    return envelope(ShareLinkOut.model_validate(link), f"{kind.value.capitalize()} link details retrieved successfully")


@router.patch("/link/{kind}/{link_id}")
def update_link(
    kind: ShareableKind,
    link_id: int,
    payload: ShareLinkUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    link = _owned_link(db, current_user, kind, link_id)
    fields = payload.model_fields_set
    if "type" in fields and payload.type is not None:
        link.type = payload.type.value
    if "recipient_email" in fields:
        link.recipient_email = payload.recipient_email.lower() if payload.recipient_email else None
    if "expires_at" in fields:
        link.expires_at = payload.expires_at
    if "permissions" in fields and payload.permissions is not None:
        link.permissions = payload.permissions.value
    if "password" in fields:
        link.password_hash = hash_password(payload.password) if payload.password else None
    _require_recipient(link.type, link.recipient_email)
    db.commit()
    db.refresh(link)
    return envelope(ShareLinkOut.model_validate(link), f"{kind.value.capitalize()} share link updated successfully")


@router.delete("/link/{kind}/{link_id}")
def delete_link(kind: ShareableKind, link_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    link = _owned_link(db, current_user, kind, link_id)
    db.delete(link)
    db.commit()
    return envelope(None, f"{kind.value.capitalize()} share link deleted successfully")


@router.get("/shared-with-me")
def shared_with_me(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    links = db.query(ShareLink).filter(
        ShareLink.recipient_email == current_user.email.lower(),
        or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > utcnow()),
    ).order_by(ShareLink.created_at.desc()).all()

    found: dict[ShareableKind, dict[int, object]] = {ShareableKind.file: {}, ShareableKind.folder: {}}
    for link in links:
        try:
            kind = ShareableKind(link.shareable_type)
        except ValueError:
            logger.warning(f"Share link {link.id} has unknown shareable type {link.shareable_type!r}")
            continue
        if link.shareable_id in found[kind]:
            continue
        model = SHAREABLE_MODELS[kind]
        target = db.query(model).filter(model.id == link.shareable_id, model.deleted_at.is_(None)).first()
        if target is not None:
            found[kind][target.id] = target

    return envelope(
        {
            "shared_files": [FileOut.model_validate(f) for f in found[ShareableKind.file].values()],
            "shared_folders": [FolderOut.model_validate(f) for f in found[ShareableKind.folder].values()],
        },
        "Shared items retrieved successfully",
    )

from __future__ import annotations
import logging
import mimetypes
import secrets
from fastapi import APIRouter, Depends, File as FormFile, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from ..config import get_settings
from ..db import get_db
from ..errors import FieldValidationError, envelope
from ..models import User, Privacy
from ..schemas import AccountSettingsOut, WATERMARK_POSITIONS
from ..security import get_current_user
from ..s3 import STORAGE_ERRORS, StorageClient, get_storage, iter_object, delete_object_quietly
from ..local_s3 import ObjectNotFound
from ..storage import measure_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account/settings", tags=["account"])

AVATAR_URL = "/api/v1/account/settings/avatar"


def _settings_out(user: User) -> AccountSettingsOut:
    return AccountSettingsOut(
        default_privacy=user.default_privacy or Privacy.private.value,
        avatar_url=AVATAR_URL if user.avatar else None,
        enable_watermark=bool(user.enable_watermark),
        watermark_position=user.watermark_position,
    )


@router.get("")
def get_account_settings(current_user: User = Depends(get_current_user)):
    return envelope(_settings_out(current_user), "Account settings retrieved successfully")


@router.patch("")
def update_account_settings(
    default_privacy: Privacy | None = Form(None),
    enable_watermark: bool | None = Form(None),
    watermark_position: str | None = Form(None),
    avatar: UploadFile | None = FormFile(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
):
    errors: dict[str, list[str]] = {}
    if watermark_position and watermark_position not in WATERMARK_POSITIONS:
        errors["watermark_position"] = ["The selected watermark position is invalid."]
    if avatar is not None and avatar.filename:
        if not (avatar.content_type or "").startswith("image/"):
            errors["avatar"] = ["The avatar must be an image."]
        elif measure_upload(avatar.file) > get_settings().max_avatar_bytes:
            errors["avatar"] = [f"The avatar may not be greater than {get_settings().max_avatar_bytes // 1024} kilobytes."]
    if errors:
        raise FieldValidationError(errors)

    if avatar is not None and avatar.filename:
        key = f"avatars/{current_user.id}/{secrets.token_hex(8)}_{avatar.filename.rsplit('/', 1)[-1]}"
        try:
            storage.put_object(key, avatar.file)
        except STORAGE_ERRORS as e:
            logger.error(f"Avatar upload failed for user {current_user.id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to store avatar")
        delete_object_quietly(storage, current_user.avatar)
        current_user.avatar = key

    if default_privacy is not None:
        current_user.default_privacy = default_privacy.value
    if enable_watermark is not None:
        current_user.enable_watermark = enable_watermark
    if watermark_position is not None:
        current_user.watermark_position = watermark_position or None
    db.commit()
    db.refresh(current_user)
    return envelope(_settings_out(current_user), "Account settings updated successfully")


@router.get("/avatar")
def get_avatar(current_user: User = Depends(get_current_user), storage: StorageClient = Depends(get_storage)):
    if not current_user.avatar:
        raise HTTPException(status_code=404, detail="Avatar not found.")
    try:
        body = iter_object(storage, current_user.avatar)
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="Avatar not found.")
    media_type = mimetypes.guess_type(current_user.avatar)[0] or "application/octet-stream"
    return StreamingResponse(body, media_type=media_type)

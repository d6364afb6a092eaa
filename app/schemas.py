from __future__ import annotations
import datetime as dt
from typing import Annotated, Any
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, ValidationInfo
from .models import Privacy, LinkType, LinkPermission, utcnow


def to_naive_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return value


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---- Envelope

class ApiResponse(BaseModel):
    success: bool = True
    message: str = ""
    data: Any = None


# ---- Auth

class RegisterRequest(BaseModel):
    firstname: str = Field(min_length=1, max_length=255)
    lastname: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8)
    password_confirmation: str

    @field_validator("password_confirmation")
    @classmethod
    def _passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if "password" in info.data and v != info.data["password"]:
            raise ValueError("The password confirmation does not match.")
        return v


class LoginRequest(BaseModel):
    email: str  # email address or username
    password: str


class UpdateAccountRequest(BaseModel):
    firstname: str | None = Field(default=None, min_length=1, max_length=255)
    lastname: str | None = Field(default=None, min_length=1, max_length=255)
    username: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=8)
    password_confirmation: str | None = None
    current_password: str | None = None


class DeleteAccountRequest(BaseModel):
    password: str


class UserOut(OrmModel):
    id: int
    firstname: str | None = None
    lastname: str | None = None
    username: str
    email: str
    phone: str | None = None
    default_privacy: Privacy
    enable_watermark: bool
    watermark_position: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


# ---- Account settings

WATERMARK_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")


class AccountSettingsOut(BaseModel):
    default_privacy: Privacy
    avatar_url: str | None = None
    enable_watermark: bool
    watermark_position: str | None = None


# ---- Folders & files

class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: int | None = None
    privacy: Privacy | None = None
    password: str | None = Field(default=None, min_length=6)
    allow_download: bool = True
    watermark_images: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("The name field is required.")
        return v


class FolderUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    privacy: Privacy | None = None
    # present and empty/null clears protection
    password: str | None = None
    allow_download: bool | None = None
    watermark_images: bool | None = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, v: str | None) -> str | None:
        if v and len(v) < 6:
            raise ValueError("The password must be at least 6 characters.")
        return v


class FolderOut(OrmModel):
    id: int
    user_id: int
    parent_id: int | None = None
    name: str
    privacy: Privacy
    password_protected: bool
    allow_download: bool
    watermark_images: bool
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    deleted_at: dt.datetime | None = None


class FileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


class FileOut(OrmModel):
    id: int
    user_id: int
    folder_id: int | None = None
    name: str
    description: str | None = None
    file_type: str
    file_size: int
    total_downloads: int
    last_access_date: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    deleted_at: dt.datetime | None = None


class FileIdsRequest(BaseModel):
    file_ids: list[int] = Field(min_length=1)


class MoveCopyRequest(BaseModel):
    file_ids: list[int] = Field(default_factory=list)
    folder_ids: list[int] = Field(default_factory=list)
    destination_folder_id: int


class RestoreRequest(BaseModel):
    file_ids: list[int] = Field(default_factory=list)
    folder_ids: list[int] = Field(default_factory=list)


# ---- Share links

def _future(value: dt.datetime | None) -> dt.datetime | None:
    if value is None:
        return None
    value = to_naive_utc(value)
    if value <= utcnow():
        raise ValueError("The expires at must be a date after now.")
    return value


FutureDatetime = Annotated[dt.datetime | None, AfterValidator(_future)]


class ShareLinkCreate(BaseModel):
    type: LinkType
    recipient_email: EmailStr | None = None
    expires_at: FutureDatetime = None
    password: str | None = Field(default=None, min_length=6)
    permissions: LinkPermission = LinkPermission.view


class ShareLinkUpdate(BaseModel):
    type: LinkType | None = None
    recipient_email: EmailStr | None = None
    expires_at: FutureDatetime = None
    password: str | None = None
    permissions: LinkPermission | None = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, v: str | None) -> str | None:
        if v and len(v) < 6:
            raise ValueError("The password must be at least 6 characters.")
        return v


class ShareLinkOut(OrmModel):
    id: int
    shareable_type: str
    shareable_id: int
    type: LinkType
    token: str
    link: str
    recipient_email: str | None = None
    expires_at: dt.datetime | None = None
    password_protected: bool
    permissions: LinkPermission
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class ShareAccessRequest(BaseModel):
    password: str | None = None

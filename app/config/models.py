from __future__ import annotations

from pydantic import BaseModel

# Masked by ConfigManager.redacted
SECRET_FIELDS = ("jwt_secret", "s3_access_key", "s3_secret_key", "database_url")


class Settings(BaseModel):
    app_name: str = "Cloudbox API"
    log_level: str = "INFO"

    # JWT Configuration
    jwt_secret: str = "dev-secret"
    jwt_issuer: str = "cloudbox"
    jwt_exp_hours: int = 24
    # Window (from issue time) in which an expired token may still be refreshed
    jwt_refresh_ttl_hours: int = 24 * 14

    # Database Configuration
    # Use a simple SQLite file by default; override via `database_url` in config or env
    database_url: str = "sqlite:///./cloudbox.db"

    # Object storage: "local" keeps bytes under storage_base_path, "s3" uses boto3
    storage_backend: str = "local"
    storage_base_path: str = "./storage"

    # S3 / MinIO Configuration (storage_backend = "s3")
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str = "minioadmin"
    s3_secret_key: str = "minioadmin"
    s3_bucket: str | None = None
    s3_use_path_style: bool = True

    # Public share URLs are built as {share_base_url}/share/{token}
    share_base_url: str = "http://localhost:8000"

    # Scratch space for zip archives
    temp_dir: str | None = None

    # Limits
    storage_quota_bytes: int = 5 * 1024 * 1024 * 1024  # 5GB
    max_upload_bytes: int = 100 * 1024 * 1024  # 100MB per file
    max_avatar_bytes: int = 2 * 1024 * 1024
    max_folder_depth: int = 256

    # Header set by the reverse proxy / CDN with the client's country code
    country_header: str = "CF-IPCountry"

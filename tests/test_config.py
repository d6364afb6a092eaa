import pytest
from pydantic import ValidationError

from app.config import Settings, get_settings, override
from app.config.manager import ConfigManager
from app.config.sources import env_overrides, load_from_toml


def test_load_from_toml_flattens_sections(tmp_path):
    path = tmp_path / "cloudbox.toml"
    path.write_text(
        'app_name = "Box"\n'
        "\n"
        "[s3]\n"
        'bucket = "files"\n'
        "use_path_style = false\n"
        "\n"
        "[storage]\n"
        "quota_bytes = 1024\n"
    )
    assert load_from_toml(path) == {
        "app_name": "Box",
        "s3_bucket": "files",
        "s3_use_path_style": False,
        "storage_quota_bytes": 1024,
    }
    assert load_from_toml(tmp_path / "absent.toml") == {}
    assert load_from_toml(None) == {}


def test_env_overrides_use_upper_case_field_names():
    environ = {"JWT_SECRET": "env-secret", "MAX_FOLDER_DEPTH": "12", "jwt_issuer": "ignored"}
    assert env_overrides(Settings, environ) == {"jwt_secret": "env-secret", "max_folder_depth": "12"}


def test_manager_layers_file_env_and_overrides(tmp_path, monkeypatch):
    path = tmp_path / "cloudbox.toml"
    path.write_text('app_name = "From file"\nlog_level = "DEBUG"\nshare_base_url = "https://files.example"\n')
    monkeypatch.setenv("TEST_CLOUDBOX_CONFIG", str(path))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    manager = ConfigManager(env_var="TEST_CLOUDBOX_CONFIG")
    assert manager.config_path == path
    assert manager.settings.app_name == "From file"
    assert manager.settings.log_level == "WARNING"

    reloaded = manager.reload(overrides={"share_base_url": "https://override.example"})
    assert reloaded.share_base_url == "https://override.example"
    assert manager.settings is reloaded


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("STORAGE_QUOTA_BYTES", "lots")
    with pytest.raises(ValidationError):
        ConfigManager(env_var="TEST_CLOUDBOX_CONFIG_UNSET")


def test_override_restores_previous_settings():
    before = get_settings()
    with override(max_upload_bytes=10) as settings:
        assert settings.max_upload_bytes == 10
        assert get_settings() is settings
    assert get_settings() is before
    with pytest.raises(RuntimeError):
        with override(max_upload_bytes=20):
            raise RuntimeError("boom")
    assert get_settings() is before


def test_nested_tables_and_prefixed_env(tmp_path):
    path = tmp_path / "cloudbox.toml"
    path.write_text("[s3]\nregion = \"eu-west-1\"\n\n[jwt.refresh]\nttl_hours = 48\n")
    assert load_from_toml(path) == {"s3_region": "eu-west-1", "jwt_refresh_ttl_hours": 48}

    environ = {"LOG_LEVEL": "DEBUG", "CLOUDBOX_LOG_LEVEL": "ERROR", "CLOUDBOX_APP_NAME": "Prefixed"}
    assert env_overrides(Settings, environ) == {"log_level": "ERROR", "app_name": "Prefixed"}


def test_unknown_file_keys_are_dropped(tmp_path, monkeypatch, caplog):
    path = tmp_path / "cloudbox.toml"
    path.write_text('app_name = "Box"\ncolour = "blue"\n')
    monkeypatch.setenv("TEST_CLOUDBOX_CONFIG", str(path))
    with caplog.at_level("WARNING", logger="app.config.manager"):
        manager = ConfigManager(env_var="TEST_CLOUDBOX_CONFIG")
    assert manager.settings.app_name == "Box"
    assert "colour" in caplog.text


def test_redacted_masks_credentials(monkeypatch):
    monkeypatch.setenv("TEST_CLOUDBOX_CONFIG", "/nonexistent/cloudbox.toml")
    monkeypatch.setenv("CLOUDBOX_JWT_SECRET", "very-secret")
    manager = ConfigManager(env_var="TEST_CLOUDBOX_CONFIG")
    shown = manager.redacted()
    assert shown["jwt_secret"] == "***"
    assert shown["s3_secret_key"] == "***"
    assert shown["s3_bucket"] is None
    assert shown["app_name"] == manager.settings.app_name
    assert manager.settings.jwt_secret == "very-secret"

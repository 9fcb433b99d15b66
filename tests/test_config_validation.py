import logging

import pytest

from api_errors import ValidationError
from app_services import AppServiceConfig, AppServices, MaxSizeFileHandler
from avatar_storage import AvatarStorage


def test_runtime_config_validation_flags_partial_settings(app):
    services = AppServices(
        app=app,
        config=AppServiceConfig(
            public_base_url="example.com",
            is_prod=True,
            game_api_url="db.example.com",
            game_api_key="",
        ),
    )

    warnings = services.validate_runtime_config()
    assert len(warnings) == 3
    assert any("PUBLIC_BASE_URL" in warning for warning in warnings)
    assert any("GAME_API_URL should start" in warning for warning in warnings)
    assert any("GAME_API_KEY is missing" in warning for warning in warnings)


def test_runtime_config_validation_accepts_local_setup(app):
    services = AppServices(app=app, config=AppServiceConfig(public_base_url="", is_prod=False))
    assert services.validate_runtime_config() == []


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("IS_PROD", "t")
    monkeypatch.setenv("PUBLIC_BASE_URL", " https://class.example.com ")
    monkeypatch.setenv("AVATAR_UPLOAD_DIR", "/tmp/avatars")
    monkeypatch.delenv("GAME_DB", raising=False)
    config = AppServiceConfig.from_env()
    assert config.is_prod is True
    assert config.public_base_url == "https://class.example.com"
    assert config.avatar_upload_dir == "/tmp/avatars"
    assert config.game_db == "elephant.db"


def test_max_size_file_handler_stops_at_cap(tmp_path):
    log_path = tmp_path / "capped.log"
    handler = MaxSizeFileHandler(str(log_path), max_bytes=64)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger("capped-test")
    logger.propagate = False
    logger.addHandler(handler)
    try:
        for _ in range(20):
            logger.warning("x" * 30)
    finally:
        logger.removeHandler(handler)
        handler.close()
    assert 64 <= log_path.stat().st_size < 64 + 40


def test_avatar_storage_validation(tmp_path):
    storage = AvatarStorage(str(tmp_path))
    AvatarStorage.validate("image/jpeg", 1024)
    with pytest.raises(ValidationError):
        AvatarStorage.validate("application/pdf", 1024)
    with pytest.raises(ValidationError):
        AvatarStorage.validate("image/png", 0)
    with pytest.raises(ValidationError) as excinfo:
        AvatarStorage.validate("image/png", 2 * 1024 * 1024 + 1)
    assert excinfo.value.status_code == 413

    url = storage.store_avatar("weird name.JPEG", "image/jpeg", b"abc")
    assert url.startswith("/avatars/avatars/")
    assert url.endswith(".jpg")
    key = url.rsplit("/", 1)[1]
    assert (tmp_path / "avatars" / key).read_bytes() == b"abc"

    with pytest.raises(ValidationError):
        storage.path_for("avatars", "../escape")
    with pytest.raises(ValidationError):
        storage.path_for("avatars", "page.html")
    assert AvatarStorage.mimetype_for("abc.jpeg") == "image/jpeg"
    assert AvatarStorage.mimetype_for("abc.webp") == "image/webp"
    with pytest.raises(ValidationError):
        AvatarStorage.validate("image/svg+xml", 1024)
    AvatarStorage.validate("image/PNG; charset=binary", 1024)

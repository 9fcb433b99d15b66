from __future__ import annotations

import logging
import os
import re
import time as timelib
from dataclasses import dataclass
from urllib.parse import urljoin

from flask import g, request


class MaxSizeFileHandler(logging.FileHandler):
    def __init__(self, filename: str, max_bytes: int, **kwargs):
        self.max_bytes = max_bytes
        super().__init__(filename, **kwargs)

    def emit(self, record):
        try:
            if os.path.exists(self.baseFilename):
                if os.path.getsize(self.baseFilename) >= self.max_bytes:
                    return
            super().emit(record)
        except Exception:
            self.handleError(record)


@dataclass(frozen=True)
class AppServiceConfig:
    public_base_url: str
    is_prod: bool
    game_db: str = "elephant.db"
    game_api_url: str = ""
    game_api_key: str = ""
    avatar_upload_dir: str = "uploads"
    log_file: str = "app.log"
    log_max_bytes: int = 2 * 1024 * 1024

    @classmethod
    def from_env(cls) -> "AppServiceConfig":
        return cls(
            public_base_url=os.getenv("PUBLIC_BASE_URL", "").strip(),
            is_prod=os.getenv("IS_PROD", "False").lower() in ("true", "1", "t"),
            game_db=os.getenv("GAME_DB", "elephant.db"),
            game_api_url=os.getenv("GAME_API_URL", "").strip(),
            game_api_key=os.getenv("GAME_API_KEY", "").strip(),
            avatar_upload_dir=os.getenv("AVATAR_UPLOAD_DIR", "uploads"),
            log_file=os.getenv("LOG_FILE", "app.log"),
        )


class AppServices:
    def __init__(self, app, config: AppServiceConfig):
        self.app = app
        self.config = config

    # ------------------------
    # Runtime validation
    # ------------------------

    def validate_runtime_config(self) -> list[str]:
        warnings: list[str] = []
        if self.config.public_base_url and not re.match(
            r"^https?://", self.config.public_base_url, re.IGNORECASE
        ):
            warnings.append("PUBLIC_BASE_URL should start with http:// or https://.")

        if self.config.game_api_url and not re.match(
            r"^https?://", self.config.game_api_url, re.IGNORECASE
        ):
            warnings.append("GAME_API_URL should start with http:// or https://.")

        if self.config.game_api_url and not self.config.game_api_key:
            warnings.append("GAME_API_URL is set but GAME_API_KEY is missing.")

        if self.config.game_api_key and not self.config.game_api_url:
            warnings.append("GAME_API_KEY is set but GAME_API_URL is not configured.")

        if self.config.is_prod and not self.config.public_base_url:
            warnings.append("Set PUBLIC_BASE_URL in production so join links are absolute.")
        return warnings

    def build_public_url(self, path: str) -> str:
        base = self.config.public_base_url
        if not base:
            try:
                base = request.url_root
            except RuntimeError:
                base = ""
        if not base:
            return path
        if not base.endswith("/"):
            base = f"{base}/"
        return urljoin(base, path.lstrip("/"))

    # ------------------------
    # Logging + request hooks
    # ------------------------

    def configure_logging(self) -> None:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)

        file_handler = MaxSizeFileHandler(
            self.config.log_file, max_bytes=self.config.log_max_bytes
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)

        self.app.logger.handlers.clear()
        self.app.logger.setLevel(logging.INFO)
        self.app.logger.propagate = False
        self.app.logger.addHandler(console_handler)
        self.app.logger.addHandler(file_handler)
        logging.getLogger("werkzeug").setLevel(logging.ERROR)
        self.app.logger.info("Logging initialised")

    @staticmethod
    def start_timer():
        g.start_time = timelib.time()

    def log_request(self, response):
        started = getattr(g, "start_time", None)
        duration = round(timelib.time() - started, 3) if started else 0.0
        self.app.logger.info(
            "%s %s (%s) -> %s [%ss]",
            request.method,
            request.path,
            request.endpoint,
            response.status_code,
            duration,
        )
        return response

    def log_exception(self, exception):
        if exception:
            self.app.logger.warning(
                "Unhandled exception on %s %s: %s",
                request.method,
                request.path,
                type(exception).__name__,
            )

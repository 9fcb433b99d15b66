"""Uploaded avatar images, stored on disk and served back by URL."""

from __future__ import annotations

import logging
import os
import re
import secrets
from urllib.parse import quote

from api_errors import ValidationError

logger = logging.getLogger(__name__)

# Uploads are stored under an extension derived from their content type and
# served back with the matching type, never the client's filename.
IMAGE_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}
EXTENSION_MIMETYPES = {ext: mimetype for mimetype, ext in IMAGE_TYPES.items()}
EXTENSION_MIMETYPES["jpeg"] = "image/jpeg"

_BUCKET_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+\.([a-z]+)$")


class AvatarStorage:
    BUCKET = "avatars"
    MAX_BYTES = 2 * 1024 * 1024

    def __init__(self, root_dir: str, public_base_url: str = ""):
        self.root_dir = root_dir
        self.public_base_url = (public_base_url or "").rstrip("/")

    @classmethod
    def validate(cls, content_type: str, size: int) -> None:
        if cls.normalize_type(content_type) not in IMAGE_TYPES:
            raise ValidationError("Please upload an image file")
        if size <= 0:
            raise ValidationError("The uploaded image is empty")
        if size > cls.MAX_BYTES:
            raise ValidationError("Image must be less than 2MB", 413)

    @staticmethod
    def normalize_type(content_type) -> str:
        return str(content_type or "").split(";", 1)[0].strip().lower()

    @staticmethod
    def mimetype_for(key: str) -> str:
        match = _KEY_RE.match(str(key or ""))
        if not match or match.group(1) not in EXTENSION_MIMETYPES:
            raise ValidationError("Invalid avatar path.", 404)
        return EXTENSION_MIMETYPES[match.group(1)]

    def path_for(self, bucket: str, key: str) -> str:
        if not _BUCKET_RE.match(str(bucket or "")):
            raise ValidationError("Invalid avatar path.", 404)
        self.mimetype_for(key)
        return os.path.join(self.root_dir, bucket, key)

    def upload(self, bucket: str, key: str, data: bytes) -> str:
        path = self.path_for(bucket, key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as handle:
            handle.write(data)
        logger.info("Stored avatar %s/%s (%s bytes)", bucket, key, len(data))
        return key

    def public_url(self, bucket: str, key: str) -> str:
        path = f"/avatars/{quote(bucket)}/{quote(key)}"
        return f"{self.public_base_url}{path}" if self.public_base_url else path

    def store_avatar(self, filename: str, content_type: str, data: bytes) -> str:
        self.validate(content_type, len(data or b""))
        key = f"{secrets.token_hex(12)}.{IMAGE_TYPES[self.normalize_type(content_type)]}"
        logger.debug("Avatar upload %r stored as %s", filename, key)
        self.upload(self.BUCKET, key, data)
        return self.public_url(self.BUCKET, key)

"""Image hosting for product photos and shop logos (local uploads directory)."""
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from errors import UpstreamFailure, ValidationFailure

logger = logging.getLogger("storefront.storage")

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
UPLOAD_URL_PREFIX = "/uploads"

PRODUCT_IMAGE_LIMIT = 5_000_000
LOGO_LIMIT = 1_000_000

IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
}


def save_image(upload: UploadFile, folder: str, max_bytes: int = PRODUCT_IMAGE_LIMIT) -> str:
    """Store one uploaded image and return the URL it is served from."""
    extension: Optional[str] = IMAGE_EXTENSIONS.get(upload.content_type or "")
    if extension is None:
        raise ValidationFailure(f"Unsupported image type: {upload.content_type}")

    data = upload.file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationFailure(f"{upload.filename} is too large. Maximum size is {max_bytes / 1_000_000:g}MB.")

    name = f"{uuid.uuid4().hex}{extension}"
    target_dir = UPLOAD_DIR / folder
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / name).write_bytes(data)
    except OSError as e:
        logger.error("Failed to store upload %s: %s", upload.filename, e)
        raise UpstreamFailure("Image upload failed")
    return f"{UPLOAD_URL_PREFIX}/{folder}/{name}"

import logging
import os
import secrets
from datetime import datetime

from fastapi import UploadFile

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

LOST_FOUND_DIR = os.path.join(config.UPLOAD_DIR, "lost-found")
LOST_FOUND_URL_PATH = "/uploads/lost-found"

os.makedirs(LOST_FOUND_DIR, exist_ok=True)


def save_lost_found_image(image: UploadFile) -> str:
    """Store an image attachment and return the URL it is served under."""
    if not (image.content_type or "").startswith("image/"):
        raise ValidationError("Only image uploads are allowed")

    content = image.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(content) > config.MAX_UPLOAD_BYTES:
        limit_mb = config.MAX_UPLOAD_BYTES / (1024 * 1024)
        raise ValidationError(f"Image exceeds the {limit_mb:g} MB upload limit")
    if not content:
        raise ValidationError("Uploaded image is empty")

    ext = os.path.splitext(image.filename or "")[1].lower()
    if not ext[1:].isalnum():
        ext = ""
    ts = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
    filename = f"{ts}-{secrets.token_hex(4)}{ext}"
    dest = os.path.join(LOST_FOUND_DIR, filename)
    with open(dest, "wb") as f:
        f.write(content)
    logger.info(f"Stored lost-and-found image {filename} ({len(content)} bytes)")
    return f"{LOST_FOUND_URL_PATH}/{filename}"

import os
import secrets
from datetime import datetime

import aiofiles  # async file IO so a large upload does not stall the event loop
from fastapi import UploadFile

import config

# --- 1. Accepted image types ---
# content type -> extension used when the client filename has none
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}

CHUNK_SIZE = 64 * 1024


class UploadRejected(ValueError):
    """The file was refused (wrong type or too large); nothing is left on disk."""


def setup_upload_directories():
    """
    Make sure the upload root exists.

    Called at startup before ``/uploads`` is mounted; exist_ok makes it a
    no-op on later runs.
    """
    os.makedirs(config.UPLOAD_ROOT, exist_ok=True)


def build_upload_filename(field_name: str, original_name: str | None, content_type: str) -> str:
    """
    ``<field>-<timestamp>-<random><ext>``: unique even when two users upload
    ``photo.jpg`` in the same second, and free of path separators.
    """
    ext = os.path.splitext(original_name or "")[1].lower()
    if not ext or "/" in ext or "\\" in ext:
        ext = ALLOWED_IMAGE_TYPES.get(content_type, "")
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
    return f"{field_name}-{timestamp}-{secrets.token_hex(4)}{ext}"


async def save_image_upload(file: UploadFile, field_name: str = "image") -> str:
    """
    Stream an uploaded image into UPLOAD_ROOT.

    Returns the public URL (``/uploads/<name>``). Raises UploadRejected for
    a disallowed content type or when the size limit is crossed; a partial
    file is removed before raising.
    """
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise UploadRejected("Invalid file type. Only JPEG, PNG and GIF are allowed.")

    setup_upload_directories()
    new_filename = build_upload_filename(field_name, file.filename, file.content_type)
    file_path = os.path.join(config.UPLOAD_ROOT, new_filename)

    written = 0
    async with aiofiles.open(file_path, "wb") as out_file:
        while content := await file.read(CHUNK_SIZE):
            written += len(content)
            if written > config.MAX_UPLOAD_BYTES:
                break
            await out_file.write(content)

    if written > config.MAX_UPLOAD_BYTES:
        os.remove(file_path)
        raise UploadRejected(f"File too large (max {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB)")

    # URL form (always "/"), independent of the OS path separator
    return f"/uploads/{new_filename}"

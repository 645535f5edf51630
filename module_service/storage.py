import logging
import os
import random
import re
import time

from fastapi import UploadFile

from shared.errors import PayloadTooLargeError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.]")
CHUNK_SIZE = 1024 * 1024


def stored_filename(original_name: str) -> str:
    """Readable unique name on disk: <base≤30>-<millis>-<random><ext>."""
    safe = _UNSAFE_CHARS.sub("_", original_name or "file")
    base, ext = os.path.splitext(safe)
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{base[:30]}-{suffix}{ext}"


def display_name(original_name: str, custom_name: str | None) -> str:
    # a custom name replaces the base name, the extension is kept
    if not custom_name or not custom_name.strip():
        return original_name
    ext = original_name.rsplit(".", 1)[-1] if "." in original_name else ""
    return f"{custom_name.strip()}.{ext}" if ext else custom_name.strip()


async def save_upload(upload_dir: str, upload: UploadFile, max_size: int) -> tuple[str, int]:
    if not upload.filename:
        raise ValidationError("No file uploaded", field="file")

    os.makedirs(upload_dir, exist_ok=True)
    name = stored_filename(upload.filename)
    target = os.path.join(upload_dir, name)

    size = 0
    with open(target, "wb") as out:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_size:
                out.close()
                os.remove(target)
                raise PayloadTooLargeError(
                    f"File too large (max {max_size // (1024 * 1024)}MB)", field="file"
                )
            out.write(chunk)

    logger.info("Stored upload %s as %s (%d bytes)", upload.filename, name, size)
    return name, size


def stored_path(upload_dir: str, stored_name: str) -> str:
    return os.path.join(upload_dir, os.path.basename(stored_name))


def remove_stored(upload_dir: str, stored_name: str) -> None:
    path = stored_path(upload_dir, stored_name)
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("Stored file already gone: %s", path)

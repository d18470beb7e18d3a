# storage.py — Local blob storage for uploaded documents
# - Randomised on-disk names; the original file name lives only in the database
# - Size cap enforced while streaming, partial files removed on rejection
# - Removal is best-effort: failures are logged, never raised
import os
import uuid
import logging
from typing import NamedTuple, Optional

from fastapi import UploadFile

from errors import PayloadTooLarge

logger = logging.getLogger("ca-portal.storage")

# =============================================================================
# CONFIGURATION
# =============================================================================

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))
MAX_FILE_SIZE = MAX_UPLOAD_MB * 1024 * 1024
CHUNK_SIZE = 1024 * 1024


class StoredFile(NamedTuple):
    storage_name: str
    size: int


def resolve_path(storage_name: str) -> str:
    # Only the base name is ever honoured, so stored names cannot escape UPLOAD_DIR
    return os.path.join(UPLOAD_DIR, os.path.basename(storage_name))


async def save_upload(upload: UploadFile, max_size: Optional[int] = None) -> StoredFile:
    """Stream an upload to disk, rejecting it with 413 once it passes max_size."""
    limit = max_size or MAX_FILE_SIZE
    os.makedirs(UPLOAD_DIR, exist_ok=True)

    ext = os.path.splitext(upload.filename or "")[1].lower()
    storage_name = f"{uuid.uuid4().hex}{ext}"
    path = resolve_path(storage_name)

    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise PayloadTooLarge(
                        f"File too large. Maximum size is {limit // (1024 * 1024)}MB"
                    )
                out.write(chunk)
    except Exception:
        remove_stored(storage_name)
        raise

    return StoredFile(storage_name=storage_name, size=size)


def remove_stored(storage_name: str) -> None:
    path = resolve_path(storage_name)
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove stored file {path}: {e}")


def exists(storage_name: str) -> bool:
    return os.path.isfile(resolve_path(storage_name))

"""
Storage for chat attachments.

Files go to Cloudflare R2 when it is fully configured and to MEDIA_DIR
otherwise; either way the caller gets back the URL to put in `fileUrl`.
"""
import mimetypes
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.config import get_settings
from app.utils.logger import get_logger

settings = get_settings()
logger = get_logger("file_storage")

CHAT_FILES_FOLDER = "chat_files"


class StorageError(Exception):
    """The attachment could not be stored."""


def _ext_for(file_name: Optional[str], content_type: Optional[str]) -> str:
    suffix = Path(file_name or "").suffix.lower()
    if suffix and len(suffix) <= 8 and suffix[1:].isalnum():
        return suffix
    guessed = mimetypes.guess_extension((content_type or "").split(";")[0].strip()) if content_type else None
    return guessed or ""


def sanitize_file_name(name: Optional[str]) -> str:
    """Display name safe to echo back: no directories, no odd characters."""
    if not name:
        return "file"
    base = Path(name).name
    cleaned = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in base.strip().replace(" ", "_"))
    return cleaned.strip("._") or "file"


def storage_key(file_name: Optional[str], content_type: Optional[str], folder: str = CHAT_FILES_FOLDER) -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{folder}/{ts}_{uuid.uuid4().hex[:12]}{_ext_for(file_name, content_type)}"


def r2_configured() -> bool:
    return all((
        settings.R2_ACCOUNT_ID,
        settings.R2_ACCESS_KEY_ID,
        settings.R2_SECRET_ACCESS_KEY,
        settings.R2_BUCKET_NAME,
        settings.R2_PUBLIC_BASE,
    ))


def _get_r2_client():
    if not r2_configured():
        return None
    return boto3.session.Session().client(
        "s3",
        endpoint_url=f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


def media_root() -> Path:
    return Path(settings.MEDIA_DIR).resolve()


def _put_r2(client, key: str, file_bytes: bytes, content_type: str) -> str:
    client.put_object(Bucket=settings.R2_BUCKET_NAME, Key=key, Body=file_bytes, ContentType=content_type)
    return f"{settings.R2_PUBLIC_BASE.rstrip('/')}/{key}"


def _put_local(key: str, file_bytes: bytes) -> str:
    target = media_root() / key
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(file_bytes)
    return f"/media/{key}"


async def upload_message_file(
    file_bytes: bytes,
    file_name: Optional[str],
    content_type: str = "application/octet-stream",
    folder: str = CHAT_FILES_FOLDER,
) -> str:
    """Store a chat attachment and return the URL clients should reference."""
    if not file_bytes:
        raise StorageError("Empty file")

    key = storage_key(file_name, content_type, folder)
    client = _get_r2_client()
    if client:
        try:
            url = await run_in_threadpool(_put_r2, client, key, file_bytes, content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to upload to R2 ({key}): {exc}", exc_info=True)
            raise StorageError("Failed to upload media file") from exc
        logger.info(f"Uploaded {len(file_bytes)} bytes to R2: {key}")
        return url

    try:
        url = await run_in_threadpool(_put_local, key, file_bytes)
    except OSError as exc:
        logger.error(f"Failed to save file locally ({key}): {exc}", exc_info=True)
        raise StorageError("Failed to save media file") from exc
    logger.info(f"Saved {len(file_bytes)} bytes locally: {key}")
    return url

from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from app.config import get_settings
from app.rate_limit import limiter
from app.schemas import UploadOut
from app.utils.chat_helpers import message_type_for_mime
from app.utils.file_storage import StorageError, sanitize_file_name, upload_message_file
from app.utils.logger import get_logger

logger = get_logger("upload_router")
settings = get_settings()

router = APIRouter(prefix="/upload", tags=["upload"])


@router.post("/message-file", response_model=UploadOut)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_chat_file(request: Request, file: UploadFile = File(...)):
    """Store a chat attachment; the client then sends a `message` event with the returned URL."""
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=400, detail="No file uploaded.")
    if len(file_bytes) > settings.UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=413, detail="File too large.")

    content_type = file.content_type or "application/octet-stream"
    try:
        file_url = await upload_message_file(file_bytes, file.filename, content_type)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    return UploadOut(
        file_url=file_url,
        file_name=sanitize_file_name(file.filename),
        file_mime_type=content_type,
        file_size=len(file_bytes),
        message_type=message_type_for_mime(content_type),
    )

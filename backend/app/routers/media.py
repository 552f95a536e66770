from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse, RedirectResponse

from app.config import get_settings
from app.utils.file_storage import media_root
from app.utils.logger import get_logger

logger = get_logger("media_router")
settings = get_settings()

router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{file_path:path}")
async def serve_media(file_path: str):
    """Uploaded chat attachments: local copy first, otherwise the R2 public URL."""
    requested = Path(file_path)
    if ".." in requested.parts or requested.is_absolute():
        raise HTTPException(status_code=400, detail="Invalid file path")

    root = media_root()
    local_file = (root / requested).resolve()
    if root not in local_file.parents:
        raise HTTPException(status_code=400, detail="Invalid file path")
    if local_file.is_file():
        return FileResponse(str(local_file))

    if settings.R2_PUBLIC_BASE:
        r2_url = f"{settings.R2_PUBLIC_BASE.rstrip('/')}/{file_path}"
        logger.info(f"Media file missing locally; redirecting to {r2_url}")
        return RedirectResponse(url=r2_url)

    logger.warning(f"Media file not found: {file_path} (looked in: {root})")
    raise HTTPException(status_code=404, detail="Media file not found")

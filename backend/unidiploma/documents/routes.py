"""Serves locally stored diplomas behind signed download tokens.

Only used when no R2 endpoint is configured: the links produced by
``generate_presigned_url`` then point here instead of at the bucket.
"""
import structlog
from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from unidiploma.auth.service import decode_document_download_token
from unidiploma.config import settings
from unidiploma.services.storage import BlobNotFoundError, fetch_file_bytes
from unidiploma.utils.rate_limit import limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("/download")
@limiter.limit("60/minute")
async def download_document(request: Request, token: str = Query(..., max_length=4096)):
    if settings.R2_ENDPOINT_URL:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    key = decode_document_download_token(token)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired download link",
        )
    try:
        content = await fetch_file_bytes(key)
    except BlobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid download link")

    logger.info("document_downloaded", key=key)
    filename = key.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": "private, no-store",
        },
    )

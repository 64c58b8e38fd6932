"""Public verification: anyone holding a diploma (or a photo of it) can check it."""
import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from unidiploma.config import settings
from unidiploma.dependencies import get_pipeline
from unidiploma.documents.pipeline import DiplomaPipeline, VerificationResult
from unidiploma.schemas.diploma import PublicDiplomaResponse, VerificationResponse, VerifyTokenRequest
from unidiploma.services.storage import read_upload
from unidiploma.utils.rate_limit import VERIFY_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/verify", tags=["verification"])

_SCAN_TYPES = {"application/pdf", "image/png", "image/jpeg"}


def _to_response(result: VerificationResult) -> VerificationResponse:
    return VerificationResponse(
        status=result.status,
        reason=result.reason.value if result.reason else None,
        message=result.message,
        diploma=PublicDiplomaResponse.model_validate(result.diploma) if result.diploma else None,
        document_url=result.document_url,
    )


@router.post("", response_model=VerificationResponse)
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_token(
    request: Request,
    body: VerifyTokenRequest,
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Verify a diploma from the token printed under its QR code."""
    return _to_response(await pipeline.verify(token=body.token))


@router.post("/file", response_model=VerificationResponse)
@limiter.limit(VERIFY_RATE_LIMIT)
async def verify_file(
    request: Request,
    file: UploadFile = File(...),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Verify a diploma from its PDF (first page is scanned) or a photo of the QR code."""
    try:
        content = await read_upload(file, _SCAN_TYPES, settings.MAX_DIPLOMA_FILE_SIZE)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _to_response(await pipeline.verify(file=content))

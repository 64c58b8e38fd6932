import uuid
from datetime import date

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from unidiploma.config import settings
from unidiploma.database import get_db
from unidiploma.dependencies import get_current_staff, get_current_user, get_pipeline
from unidiploma.documents.pipeline import DiplomaInput, DiplomaPipeline
from unidiploma.gateway.records import SqlRecordStore
from unidiploma.models.enums import UserRole
from unidiploma.models.user import User
from unidiploma.schemas.diploma import (
    DiplomaListResponse,
    DiplomaResponse,
    DiplomaUpdateRequest,
    SendLinkRequest,
    SendLinkResponse,
)
from unidiploma.services.storage import read_upload
from unidiploma.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/diplomas", tags=["diplomas"])

# Roles that may browse the registry; verifiers go through /verify
_REGISTRY_ROLES = {UserRole.ADMIN, UserRole.UNIVERSITY_STAFF, UserRole.ESU_STAFF}


def _require_registry_access(user: User) -> None:
    if user.role not in _REGISTRY_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to browse diplomas",
        )


@router.post("", response_model=DiplomaResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def issue_diploma(
    request: Request,
    title: str = Form(..., max_length=255),
    student_id: uuid.UUID = Form(...),
    signer_id: uuid.UUID = Form(...),
    issue_date: date | None = Form(None),
    issue_place: str | None = Form(None, max_length=100),
    academic_year: str | None = Form(None, pattern=r"^\d{4}-\d{4}$"),
    file: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Issue a diploma: cover page with QR code, optionally in front of an uploaded PDF."""
    source = None
    if file is not None:
        try:
            source = await read_upload(file, {"application/pdf"}, settings.MAX_DIPLOMA_FILE_SIZE)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    diploma_input = DiplomaInput(
        title=title,
        student_id=student_id,
        signer_id=signer_id,
        issue_date=issue_date,
        issue_place=issue_place,
        academic_year=academic_year,
    )
    diploma = await pipeline.issue(diploma_input, source, user)
    return DiplomaResponse.model_validate(diploma)


@router.get("", response_model=DiplomaListResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def list_diplomas(
    request: Request,
    faculty_id: uuid.UUID | None = None,
    department_id: uuid.UUID | None = None,
    promotion_id: uuid.UUID | None = None,
    student_id: uuid.UUID | None = None,
    is_authentic: bool | None = None,
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _require_registry_access(user)
    filters = {
        "faculty_id": faculty_id,
        "department_id": department_id,
        "promotion_id": promotion_id,
        "student_id": student_id,
        "is_authentic": is_authentic,
        "search": search,
        "limit": limit,
        "offset": offset,
    }
    records = SqlRecordStore(db)
    items = await records.query_diplomas(filters)
    total = await records.count_diplomas(filters)
    return DiplomaListResponse(
        items=[DiplomaResponse.model_validate(d) for d in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{diploma_id}", response_model=DiplomaResponse)
async def get_diploma(
    diploma_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _require_registry_access(user)
    diploma = await SqlRecordStore(db).get_diploma(diploma_id)
    if diploma is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Diploma not found")
    return DiplomaResponse.model_validate(diploma)


@router.patch("/{diploma_id}", response_model=DiplomaResponse)
async def update_diploma(
    diploma_id: uuid.UUID,
    body: DiplomaUpdateRequest,
    user: User = Depends(get_current_user),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Edit diploma metadata. The QR token and the stored document never change."""
    changes = {key: value for key, value in body.model_dump(exclude_unset=True).items()}
    for required in ("title", "issue_date", "issue_place"):
        if changes.get(required) is None:
            changes.pop(required, None)
    diploma = await pipeline.update_metadata(diploma_id, changes, user)
    return DiplomaResponse.model_validate(diploma)


@router.delete("/{diploma_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_diploma(
    diploma_id: uuid.UUID,
    user: User = Depends(get_current_user),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    await pipeline.delete(diploma_id, user)


@router.post("/{diploma_id}/authenticate", response_model=DiplomaResponse)
@limiter.limit("30/minute")
async def authenticate_diploma(
    request: Request,
    diploma_id: uuid.UUID,
    user: User = Depends(get_current_user),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Ministry approval: prepend the authentication page and mark the diploma authentic."""
    diploma = await pipeline.authenticate(diploma_id, user)
    return DiplomaResponse.model_validate(diploma)


@router.post("/{diploma_id}/send-link", response_model=SendLinkResponse)
@limiter.limit("10/minute")
async def send_diploma_link(
    request: Request,
    diploma_id: uuid.UUID,
    body: SendLinkRequest,
    user: User = Depends(get_current_staff),
    pipeline: DiplomaPipeline = Depends(get_pipeline),
):
    """Email the student a download link to their diploma."""
    delivery = await pipeline.resend_link(diploma_id, body.email, user)
    return SendLinkResponse(sent=delivery.sent, document_url=delivery.document_url)

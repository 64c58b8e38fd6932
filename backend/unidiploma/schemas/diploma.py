import uuid
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, computed_field

from unidiploma.models.enums import DiplomaStatus, VerificationStatus
from unidiploma.schemas.university import SignerResponse, StudentResponse
from unidiploma.utils.diploma_state import diploma_status


class DiplomaResponse(BaseModel):
    id: uuid.UUID
    title: str
    issue_date: date
    issue_place: str
    academic_year: str | None
    qr_token: str
    document_path: str | None
    is_authentic: bool
    authenticated_at: datetime | None
    created_at: datetime
    student: StudentResponse
    signer: SignerResponse

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def status(self) -> DiplomaStatus:
        return diploma_status(self)


class DiplomaListResponse(BaseModel):
    items: list[DiplomaResponse]
    total: int
    limit: int
    offset: int


class DiplomaUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    issue_date: date | None = None
    issue_place: str | None = Field(None, min_length=1, max_length=100)
    academic_year: str | None = Field(None, pattern=r"^\d{4}-\d{4}$")


class SendLinkRequest(BaseModel):
    email: EmailStr


class SendLinkResponse(BaseModel):
    sent: bool
    document_url: str


class VerifyTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=64)


class PublicDiplomaResponse(BaseModel):
    """What an anonymous verifier learns about a registered diploma."""

    id: uuid.UUID
    title: str
    issue_date: date
    issue_place: str
    academic_year: str | None
    is_authentic: bool
    authenticated_at: datetime | None
    student: StudentResponse
    signer: SignerResponse

    model_config = {"from_attributes": True}


class VerificationResponse(BaseModel):
    status: VerificationStatus
    reason: str | None = None
    message: str | None = None
    diploma: PublicDiplomaResponse | None = None
    document_url: str | None = None

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from unidiploma.models.enums import UserRole


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: UserRole
    first_name: str | None
    last_name: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}

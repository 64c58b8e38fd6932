import uuid
from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator

from unidiploma.models.enums import SignerRole


def _strip_required(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if not v:
        raise ValueError("Ce champ est obligatoire")
    return v


def _strip_optional(v: str | None) -> str | None:
    if v is None:
        return None
    return v.strip() or None


# Faculties

class FacultyCreate(BaseModel):
    label: str = Field(min_length=1, max_length=255)

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str) -> str:
        return _strip_required(v)


class FacultyUpdate(FacultyCreate):
    pass


class FacultyResponse(BaseModel):
    id: uuid.UUID
    label: str

    model_config = {"from_attributes": True}


# Departments

class DepartmentCreate(BaseModel):
    label: str = Field(min_length=1, max_length=255)
    faculty_id: uuid.UUID

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str) -> str:
        return _strip_required(v)


class DepartmentUpdate(BaseModel):
    label: str | None = Field(None, min_length=1, max_length=255)
    faculty_id: uuid.UUID | None = None

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str | None) -> str | None:
        return _strip_required(v)


class DepartmentResponse(BaseModel):
    id: uuid.UUID
    label: str
    faculty_id: uuid.UUID
    faculty: FacultyResponse

    model_config = {"from_attributes": True}


# Promotions

class PromotionCreate(BaseModel):
    label: str = Field(min_length=1, max_length=255)
    option: str | None = Field(None, max_length=255)
    department_id: uuid.UUID

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("option")
    @classmethod
    def strip_option(cls, v: str | None) -> str | None:
        return _strip_optional(v)


class PromotionUpdate(BaseModel):
    label: str | None = Field(None, min_length=1, max_length=255)
    option: str | None = Field(None, max_length=255)
    department_id: uuid.UUID | None = None

    @field_validator("label")
    @classmethod
    def strip_label(cls, v: str | None) -> str | None:
        return _strip_required(v)


class PromotionResponse(BaseModel):
    id: uuid.UUID
    label: str
    option: str | None
    department_id: uuid.UUID
    department: DepartmentResponse

    model_config = {"from_attributes": True}


# Students

class StudentCreate(BaseModel):
    last_name: str = Field(min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    first_name: str = Field(min_length=1, max_length=100)
    birth_date: date | None = None
    promotion_id: uuid.UUID

    @field_validator("last_name", "first_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("middle_name")
    @classmethod
    def strip_middle_name(cls, v: str | None) -> str | None:
        return _strip_optional(v)


class StudentUpdate(BaseModel):
    last_name: str | None = Field(None, min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    first_name: str | None = Field(None, min_length=1, max_length=100)
    birth_date: date | None = None
    promotion_id: uuid.UUID | None = None

    @field_validator("last_name", "first_name")
    @classmethod
    def strip_names(cls, v: str | None) -> str | None:
        return _strip_required(v)


class StudentResponse(BaseModel):
    id: uuid.UUID
    last_name: str
    middle_name: str | None
    first_name: str
    full_name: str
    birth_date: date | None
    promotion_id: uuid.UUID
    promotion: PromotionResponse

    model_config = {"from_attributes": True}


# Signers

class SignerCreate(BaseModel):
    last_name: str = Field(min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    first_name: str = Field(min_length=1, max_length=100)
    role: SignerRole
    faculty_id: uuid.UUID | None = None

    @field_validator("last_name", "first_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("middle_name")
    @classmethod
    def strip_middle_name(cls, v: str | None) -> str | None:
        return _strip_optional(v)

    @model_validator(mode="after")
    def dean_needs_faculty(self) -> "SignerCreate":
        if self.role == SignerRole.DEAN and self.faculty_id is None:
            raise ValueError("Un doyen doit être rattaché à une faculté")
        return self


class SignerUpdate(BaseModel):
    last_name: str | None = Field(None, min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    first_name: str | None = Field(None, min_length=1, max_length=100)
    role: SignerRole | None = None
    faculty_id: uuid.UUID | None = None

    @field_validator("last_name", "first_name")
    @classmethod
    def strip_names(cls, v: str | None) -> str | None:
        return _strip_required(v)


class SignerResponse(BaseModel):
    id: uuid.UUID
    last_name: str
    middle_name: str | None
    first_name: str
    full_name: str
    role: SignerRole
    faculty_id: uuid.UUID | None
    faculty: FacultyResponse | None

    model_config = {"from_attributes": True}

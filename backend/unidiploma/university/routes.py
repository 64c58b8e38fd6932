"""Staff CRUD for the university hierarchy and the signers.

Faculty > Department > Promotion > Student. A parent cannot be deleted
while it still has children; diplomas pin their student and signer.
"""
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from unidiploma.database import get_db
from unidiploma.dependencies import get_current_staff
from unidiploma.models.department import Department
from unidiploma.models.diploma import Diploma
from unidiploma.models.enums import SignerRole
from unidiploma.models.faculty import Faculty
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User
from unidiploma.schemas.university import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    FacultyCreate,
    FacultyResponse,
    FacultyUpdate,
    PromotionCreate,
    PromotionResponse,
    PromotionUpdate,
    SignerCreate,
    SignerResponse,
    SignerUpdate,
    StudentCreate,
    StudentResponse,
    StudentUpdate,
)
from unidiploma.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(tags=["university"])


async def _get_or_404(db: AsyncSession, model, item_id: uuid.UUID, label: str):
    item = await db.get(model, item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return item


async def _check_reference(db: AsyncSession, model, item_id: uuid.UUID | None, label: str) -> None:
    if item_id is not None and await db.get(model, item_id) is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{label} does not exist",
        )


async def _check_no_children(db: AsyncSession, column, item_id: uuid.UUID, detail: str) -> None:
    result = await db.execute(select(func.count()).where(column == item_id))
    if result.scalar():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


async def _check_unique(db: AsyncSession, model, exclude_id: uuid.UUID | None, detail: str, **values) -> None:
    stmt = select(model.id).filter_by(**values)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    if result.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


async def _save(db: AsyncSession, item):
    db.add(item)
    await db.flush()
    await db.refresh(item)
    return item


def _search(term: str | None, *columns):
    if not term or not term.strip():
        return None
    pattern = f"%{term.strip()}%"
    return or_(*(column.ilike(pattern) for column in columns))


# --- Faculties ---


@router.get("/faculties", response_model=list[FacultyResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_faculties(
    request: Request,
    search: str | None = Query(None, max_length=100),
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Faculty).order_by(Faculty.label)
    condition = _search(search, Faculty.label)
    if condition is not None:
        stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/faculties", response_model=FacultyResponse, status_code=status.HTTP_201_CREATED)
async def create_faculty(
    body: FacultyCreate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await _check_unique(db, Faculty, None, "A faculty with this label already exists", label=body.label)
    faculty = await _save(db, Faculty(label=body.label))
    logger.info("faculty_created", faculty_id=str(faculty.id), user_id=str(user.id))
    return faculty


@router.patch("/faculties/{faculty_id}", response_model=FacultyResponse)
async def update_faculty(
    faculty_id: uuid.UUID,
    body: FacultyUpdate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    faculty = await _get_or_404(db, Faculty, faculty_id, "Faculty")
    await _check_unique(db, Faculty, faculty_id, "A faculty with this label already exists", label=body.label)
    faculty.label = body.label
    return await _save(db, faculty)


@router.delete("/faculties/{faculty_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_faculty(
    faculty_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    faculty = await _get_or_404(db, Faculty, faculty_id, "Faculty")
    await _check_no_children(db, Department.faculty_id, faculty_id, "Faculty still has departments")
    await _check_no_children(db, Signer.faculty_id, faculty_id, "Faculty still has signers")
    await db.delete(faculty)
    logger.info("faculty_deleted", faculty_id=str(faculty_id), user_id=str(user.id))


# --- Departments ---


@router.get("/departments", response_model=list[DepartmentResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_departments(
    request: Request,
    faculty_id: uuid.UUID | None = None,
    search: str | None = Query(None, max_length=100),
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Department).order_by(Department.label)
    if faculty_id:
        stmt = stmt.where(Department.faculty_id == faculty_id)
    condition = _search(search, Department.label)
    if condition is not None:
        stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    body: DepartmentCreate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await _check_reference(db, Faculty, body.faculty_id, "Faculty")
    await _check_unique(
        db, Department, None, "This faculty already has a department with this label",
        label=body.label, faculty_id=body.faculty_id,
    )
    department = await _save(db, Department(label=body.label, faculty_id=body.faculty_id))
    logger.info("department_created", department_id=str(department.id), user_id=str(user.id))
    return department


@router.patch("/departments/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: uuid.UUID,
    body: DepartmentUpdate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    department = await _get_or_404(db, Department, department_id, "Department")
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    await _check_reference(db, Faculty, changes.get("faculty_id"), "Faculty")
    await _check_unique(
        db, Department, department_id, "This faculty already has a department with this label",
        label=changes.get("label", department.label),
        faculty_id=changes.get("faculty_id", department.faculty_id),
    )
    for key, value in changes.items():
        setattr(department, key, value)
    return await _save(db, department)


@router.delete("/departments/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_department(
    department_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    department = await _get_or_404(db, Department, department_id, "Department")
    await _check_no_children(db, Promotion.department_id, department_id, "Department still has promotions")
    await db.delete(department)
    logger.info("department_deleted", department_id=str(department_id), user_id=str(user.id))


# --- Promotions ---


@router.get("/promotions", response_model=list[PromotionResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_promotions(
    request: Request,
    faculty_id: uuid.UUID | None = None,
    department_id: uuid.UUID | None = None,
    search: str | None = Query(None, max_length=100),
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(Promotion)
        .join(Department, Promotion.department_id == Department.id)
        .order_by(Promotion.label)
    )
    if faculty_id:
        stmt = stmt.where(Department.faculty_id == faculty_id)
    if department_id:
        stmt = stmt.where(Promotion.department_id == department_id)
    condition = _search(search, Promotion.label, Promotion.option)
    if condition is not None:
        stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/promotions", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    body: PromotionCreate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await _check_reference(db, Department, body.department_id, "Department")
    promotion = await _save(
        db, Promotion(label=body.label, option=body.option, department_id=body.department_id)
    )
    logger.info("promotion_created", promotion_id=str(promotion.id), user_id=str(user.id))
    return promotion


@router.patch("/promotions/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: uuid.UUID,
    body: PromotionUpdate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    promotion = await _get_or_404(db, Promotion, promotion_id, "Promotion")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("department_id") is None:
        changes.pop("department_id", None)
    await _check_reference(db, Department, changes.get("department_id"), "Department")
    if changes.get("label") is None:
        changes.pop("label", None)
    for key, value in changes.items():
        setattr(promotion, key, value)
    return await _save(db, promotion)


@router.delete("/promotions/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promotion(
    promotion_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    promotion = await _get_or_404(db, Promotion, promotion_id, "Promotion")
    await _check_no_children(db, Student.promotion_id, promotion_id, "Promotion still has students")
    await db.delete(promotion)
    logger.info("promotion_deleted", promotion_id=str(promotion_id), user_id=str(user.id))


# --- Students ---


@router.get("/students", response_model=list[StudentResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_students(
    request: Request,
    faculty_id: uuid.UUID | None = None,
    department_id: uuid.UUID | None = None,
    promotion_id: uuid.UUID | None = None,
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=10000),
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(Student)
        .join(Promotion, Student.promotion_id == Promotion.id)
        .join(Department, Promotion.department_id == Department.id)
        .order_by(Student.last_name, Student.first_name)
    )
    if faculty_id:
        stmt = stmt.where(Department.faculty_id == faculty_id)
    if department_id:
        stmt = stmt.where(Promotion.department_id == department_id)
    if promotion_id:
        stmt = stmt.where(Student.promotion_id == promotion_id)
    condition = _search(search, Student.last_name, Student.middle_name, Student.first_name)
    if condition is not None:
        stmt = stmt.where(condition)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return result.scalars().all()


@router.get("/students/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    return await _get_or_404(db, Student, student_id, "Student")


@router.post("/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    body: StudentCreate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await _check_reference(db, Promotion, body.promotion_id, "Promotion")
    student = await _save(db, Student(**body.model_dump()))
    logger.info("student_created", student_id=str(student.id), user_id=str(user.id))
    return student


@router.patch("/students/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: uuid.UUID,
    body: StudentUpdate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    student = await _get_or_404(db, Student, student_id, "Student")
    changes = body.model_dump(exclude_unset=True)
    for required in ("last_name", "first_name", "promotion_id"):
        if changes.get(required) is None:
            changes.pop(required, None)
    await _check_reference(db, Promotion, changes.get("promotion_id"), "Promotion")
    for key, value in changes.items():
        setattr(student, key, value)
    return await _save(db, student)


@router.delete("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    student = await _get_or_404(db, Student, student_id, "Student")
    await _check_no_children(db, Diploma.student_id, student_id, "Student still has diplomas")
    await db.delete(student)
    logger.info("student_deleted", student_id=str(student_id), user_id=str(user.id))


# --- Signers ---


@router.get("/signers", response_model=list[SignerResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def list_signers(
    request: Request,
    faculty_id: uuid.UUID | None = None,
    search: str | None = Query(None, max_length=100),
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Signer).order_by(Signer.last_name)
    if faculty_id:
        # Faculty-less signers (the Academic Secretary) sign for every faculty
        stmt = stmt.where(or_(Signer.faculty_id == faculty_id, Signer.faculty_id.is_(None)))
    condition = _search(search, Signer.last_name, Signer.middle_name, Signer.first_name)
    if condition is not None:
        stmt = stmt.where(condition)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/signers", response_model=SignerResponse, status_code=status.HTTP_201_CREATED)
async def create_signer(
    body: SignerCreate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    await _check_reference(db, Faculty, body.faculty_id, "Faculty")
    signer = await _save(db, Signer(**body.model_dump()))
    logger.info("signer_created", signer_id=str(signer.id), user_id=str(user.id))
    return signer


@router.patch("/signers/{signer_id}", response_model=SignerResponse)
async def update_signer(
    signer_id: uuid.UUID,
    body: SignerUpdate,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    signer = await _get_or_404(db, Signer, signer_id, "Signer")
    changes = body.model_dump(exclude_unset=True)
    for required in ("last_name", "first_name", "role"):
        if changes.get(required) is None:
            changes.pop(required, None)
    await _check_reference(db, Faculty, changes.get("faculty_id"), "Faculty")

    role = changes.get("role", signer.role)
    faculty_id = changes["faculty_id"] if "faculty_id" in changes else signer.faculty_id
    if role == SignerRole.DEAN and faculty_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Un doyen doit être rattaché à une faculté",
        )
    for key, value in changes.items():
        setattr(signer, key, value)
    return await _save(db, signer)


@router.delete("/signers/{signer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_signer(
    signer_id: uuid.UUID,
    user: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    signer = await _get_or_404(db, Signer, signer_id, "Signer")
    await _check_no_children(db, Diploma.signer_id, signer_id, "Signer is referenced by diplomas")
    await db.delete(signer)
    logger.info("signer_deleted", signer_id=str(signer_id), user_id=str(user.id))

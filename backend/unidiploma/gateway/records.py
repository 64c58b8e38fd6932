import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unidiploma.models.department import Department
from unidiploma.models.diploma import Diploma
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student


def _apply_diploma_filters(stmt, filters: dict[str, Any]):
    stmt = (
        stmt.join(Student, Diploma.student_id == Student.id)
        .join(Promotion, Student.promotion_id == Promotion.id)
        .join(Department, Promotion.department_id == Department.id)
    )
    if filters.get("faculty_id"):
        stmt = stmt.where(Department.faculty_id == filters["faculty_id"])
    if filters.get("department_id"):
        stmt = stmt.where(Promotion.department_id == filters["department_id"])
    if filters.get("promotion_id"):
        stmt = stmt.where(Student.promotion_id == filters["promotion_id"])
    if filters.get("student_id"):
        stmt = stmt.where(Diploma.student_id == filters["student_id"])
    if filters.get("is_authentic") is not None:
        stmt = stmt.where(Diploma.is_authentic.is_(bool(filters["is_authentic"])))
    if filters.get("search"):
        pattern = f"%{filters['search'].strip()}%"
        stmt = stmt.where(
            or_(
                Diploma.title.ilike(pattern),
                Student.last_name.ilike(pattern),
                Student.middle_name.ilike(pattern),
                Student.first_name.ilike(pattern),
            )
        )
    return stmt


class SqlRecordStore:
    """RecordStore over the application's async SQLAlchemy session.

    Writes are flushed, not committed: the request-scoped session from
    ``get_db`` commits once the whole operation succeeded.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_student(self, student_id: uuid.UUID) -> Student | None:
        return await self.db.get(Student, student_id)

    async def get_signer(self, signer_id: uuid.UUID) -> Signer | None:
        return await self.db.get(Signer, signer_id)

    async def create_diploma(self, fields: dict[str, Any]) -> Diploma:
        diploma = Diploma(**fields)
        self.db.add(diploma)
        await self.db.flush()
        return await self.get_diploma(diploma.id)

    async def get_diploma(self, diploma_id: uuid.UUID) -> Diploma | None:
        result = await self.db.execute(
            select(Diploma)
            .where(Diploma.id == diploma_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_diploma_by_token(self, token: str) -> Diploma | None:
        result = await self.db.execute(
            select(Diploma)
            .where(Diploma.qr_token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_diploma(self, diploma_id: uuid.UUID, fields: dict[str, Any]) -> Diploma:
        if fields:
            await self.db.execute(
                update(Diploma)
                .where(Diploma.id == diploma_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
        return await self.get_diploma(diploma_id)

    async def mark_authenticated(
        self, diploma_id: uuid.UUID, document_path: str, actor_id: uuid.UUID | None
    ) -> bool:
        # Conditional update: of two concurrent callers only one sees rowcount == 1
        result = await self.db.execute(
            update(Diploma)
            .where(Diploma.id == diploma_id, Diploma.is_authentic.is_(False))
            .values(
                is_authentic=True,
                document_path=document_path,
                authenticated_at=datetime.now(timezone.utc),
                authenticated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def query_diplomas(self, filters: dict[str, Any]) -> list[Diploma]:
        stmt = _apply_diploma_filters(select(Diploma), filters)
        stmt = (
            stmt.order_by(Diploma.created_at.desc())
            .offset(filters.get("offset", 0))
            .limit(filters.get("limit", 50))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_diplomas(self, filters: dict[str, Any]) -> int:
        stmt = _apply_diploma_filters(select(func.count(Diploma.id)), filters)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def delete_diploma(self, diploma_id: uuid.UUID) -> None:
        diploma = await self.db.get(Diploma, diploma_id)
        if diploma is not None:
            await self.db.delete(diploma)
            await self.db.flush()

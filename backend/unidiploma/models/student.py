import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unidiploma.database import Base
from unidiploma.models.types import GUID


class Student(Base):
    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    promotion_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("promotions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Post-nom
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    promotion: Mapped["Promotion"] = relationship("Promotion", lazy="selectin")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.last_name, self.middle_name, self.first_name) if p)

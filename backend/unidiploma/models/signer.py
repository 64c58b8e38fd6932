import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unidiploma.database import Base
from unidiploma.models.enums import SignerRole
from unidiploma.models.types import GUID


class Signer(Base):
    """Official credited on the diploma cover page (Dean or Academic Secretary)."""

    __tablename__ = "signers"
    __table_args__ = (
        CheckConstraint(
            "role <> 'Doyen de la faculté' OR faculty_id IS NOT NULL",
            name="ck_signers_dean_has_faculty",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[SignerRole] = mapped_column(String(50), nullable=False)
    # The Academic Secretary signs for the whole university
    faculty_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("faculties.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    faculty: Mapped["Faculty | None"] = relationship("Faculty", lazy="selectin")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)

    @property
    def role_label(self) -> str:
        return self.role.value if hasattr(self.role, "value") else str(self.role)

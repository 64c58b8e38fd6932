import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unidiploma.database import Base
from unidiploma.models.types import GUID


class Diploma(Base):
    __tablename__ = "diplomas"
    __table_args__ = (
        CheckConstraint(
            "NOT is_authentic OR document_path IS NOT NULL",
            name="ck_diplomas_authentic_has_document",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    issue_place: Mapped[str] = mapped_column(String(100), nullable=False)
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)
    student_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    signer_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("signers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # QR payload; minted once at issuance and never rewritten
    qr_token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    # Blob key of the generated PDF; NULL while the diploma is a draft
    document_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_authentic: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", nullable=False)
    authenticated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    authenticated_by_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    issued_by_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    student: Mapped["Student"] = relationship("Student", lazy="selectin")
    signer: Mapped["Signer"] = relationship("Signer", lazy="selectin")

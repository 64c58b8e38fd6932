"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = sa.dialects.postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "role IN ('admin', 'university_staff', 'verifier', 'esu_staff')",
            name="ck_users_role",
        ),
    )

    # Revoked JWTs
    op.create_table(
        "blacklisted_tokens",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("jti", sa.String(36), unique=True, nullable=False, index=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # University hierarchy
    op.create_table(
        "faculties",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("label", sa.String(255), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "departments",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "faculty_id", UUID, sa.ForeignKey("faculties.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("faculty_id", "label", name="uq_departments_faculty_label"),
    )
    op.create_table(
        "promotions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "department_id", UUID, sa.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("option", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "students",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "promotion_id", UUID, sa.ForeignKey("promotions.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
        sa.Column("last_name", sa.String(100), nullable=False, index=True),
        sa.Column("middle_name", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "signers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("middle_name", sa.String(100), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column(
            "faculty_id", UUID, sa.ForeignKey("faculties.id", ondelete="RESTRICT"), nullable=True, index=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "role <> 'Doyen de la faculté' OR faculty_id IS NOT NULL",
            name="ck_signers_dean_has_faculty",
        ),
    )

    # Diplomas
    op.create_table(
        "diplomas",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("issue_place", sa.String(100), nullable=False),
        sa.Column("academic_year", sa.String(20), nullable=True),
        sa.Column(
            "student_id", UUID, sa.ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
        sa.Column(
            "signer_id", UUID, sa.ForeignKey("signers.id", ondelete="RESTRICT"), nullable=False, index=True
        ),
        sa.Column("qr_token", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("document_path", sa.String(500), nullable=True),
        sa.Column("is_authentic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("authenticated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "authenticated_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("issued_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        # An authenticated diploma always has a document
        sa.CheckConstraint(
            "NOT is_authentic OR document_path IS NOT NULL",
            name="ck_diplomas_authentic_has_document",
        ),
    )


def downgrade() -> None:
    op.drop_table("diplomas")
    op.drop_table("signers")
    op.drop_table("students")
    op.drop_table("promotions")
    op.drop_table("departments")
    op.drop_table("faculties")
    op.drop_table("blacklisted_tokens")
    op.drop_table("users")

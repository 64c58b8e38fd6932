"""Seed script for the UniDiploma backend.

Creates baseline data for development:
- 1 user per role (admin, university staff, verifier, ministry agent)
- 1 faculty > department > promotion tree with two students
- a dean for the faculty and a faculty-less academic secretary

Idempotent: checks if rows exist before creating them.
Run with: python seed.py

Passwords are read from SEED_ADMIN_PASSWORD / SEED_USER_PASSWORD, with
dev-only fallbacks.
"""

import asyncio
import os
import sys
from datetime import date

from unidiploma.config import settings

# Guard: prevent running on production
if settings.is_production:
    print("ERROR: Cannot seed production database.")
    sys.exit(1)

from sqlalchemy import select

from unidiploma.auth.service import hash_password
from unidiploma.database import async_session
from unidiploma.models.department import Department
from unidiploma.models.enums import SignerRole, UserRole
from unidiploma.models.faculty import Faculty
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User

SEED_ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD", "Admin123!")
SEED_USER_PASSWORD = os.environ.get("SEED_USER_PASSWORD", "Test1234!")

SEED_USERS = [
    {"email": "admin@unikin.ac.cd", "password": SEED_ADMIN_PASSWORD, "role": UserRole.ADMIN,
     "first_name": "Admin", "last_name": "UNIKIN"},
    {"email": "scolarite@unikin.ac.cd", "password": SEED_USER_PASSWORD, "role": UserRole.UNIVERSITY_STAFF,
     "first_name": "Grace", "last_name": "Mbuyi"},
    {"email": "verificateur@unikin.ac.cd", "password": SEED_USER_PASSWORD, "role": UserRole.VERIFIER,
     "first_name": "Patrick", "last_name": "Kabasele"},
    {"email": "authentification@esu.gouv.cd", "password": SEED_USER_PASSWORD, "role": UserRole.ESU_STAFF,
     "first_name": "Mohindo", "last_name": "Nzangi"},
]

FACULTY_LABEL = "Faculté des Sciences"
DEPARTMENT_LABEL = "Mathématiques et Informatique"
PROMOTION = {"label": "L2 LMD", "option": "Génie logiciel"}

STUDENTS = [
    {"last_name": "Mobutu", "middle_name": "Wa Zaire", "first_name": "Jeanne", "birth_date": date(2001, 3, 14)},
    {"last_name": "Lumumba", "middle_name": "Okito", "first_name": "Patrice", "birth_date": date(2000, 7, 2)},
]


async def _get_or_create(db, model, lookup: dict, **extra):
    result = await db.execute(select(model).filter_by(**lookup))
    existing = result.scalars().first()
    if existing:
        print(f"  [skip] {model.__name__} {lookup} already exists")
        return existing
    item = model(**lookup, **extra)
    db.add(item)
    await db.flush()
    print(f"  [created] {model.__name__} {lookup}")
    return item


async def seed() -> None:
    async with async_session() as db:
        for user_data in SEED_USERS:
            result = await db.execute(select(User).where(User.email == user_data["email"]))
            if result.scalar_one_or_none():
                print(f"  [skip] User {user_data['email']} already exists")
                continue
            db.add(
                User(
                    email=user_data["email"],
                    password_hash=hash_password(user_data["password"]),
                    role=user_data["role"],
                    first_name=user_data["first_name"],
                    last_name=user_data["last_name"],
                    is_active=True,
                )
            )
            await db.flush()
            print(f"  [created] User {user_data['email']} ({user_data['role'].value})")

        faculty = await _get_or_create(db, Faculty, {"label": FACULTY_LABEL})
        department = await _get_or_create(
            db, Department, {"label": DEPARTMENT_LABEL, "faculty_id": faculty.id}
        )
        promotion = await _get_or_create(
            db, Promotion, {"label": PROMOTION["label"], "department_id": department.id},
            option=PROMOTION["option"],
        )
        for student in STUDENTS:
            await _get_or_create(
                db, Student,
                {"last_name": student["last_name"], "first_name": student["first_name"], "promotion_id": promotion.id},
                middle_name=student["middle_name"], birth_date=student["birth_date"],
            )

        await _get_or_create(
            db, Signer,
            {"last_name": "Kalonji", "first_name": "Albert", "role": SignerRole.DEAN, "faculty_id": faculty.id},
            middle_name="Ditunga",
        )
        await _get_or_create(
            db, Signer,
            {"last_name": "Tshibanda", "first_name": "Marie", "role": SignerRole.ACADEMIC_SECRETARY},
            middle_name="Ngalula",
        )

        await db.commit()
        print("\nSeed completed successfully.")


if __name__ == "__main__":
    print("Seeding UniDiploma database...")
    asyncio.run(seed())

import os
import tempfile
import uuid
from collections.abc import AsyncGenerator

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "development"
os.environ["R2_ENDPOINT_URL"] = ""  # Force local storage in tests
os.environ["RESEND_API_KEY"] = ""  # Force dev mode for emails
os.environ["LOCAL_STORAGE_DIR"] = tempfile.mkdtemp(prefix="unidiploma-tests-")
os.environ["INSTITUTION_LOGO"] = ""
os.environ["NATIONAL_FLAG"] = ""
os.environ["MINISTRY_EMBLEM"] = ""

import fitz  # PyMuPDF
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from unidiploma.auth.service import create_access_token, hash_password
from unidiploma.database import Base, get_db
from unidiploma.main import app
from unidiploma.models.department import Department
from unidiploma.models.enums import SignerRole, UserRole
from unidiploma.models.faculty import Faculty
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from unidiploma.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db: AsyncSession, item):
    db.add(item)
    await db.flush()
    # Loads the selectin relationships the response schemas walk
    await db.refresh(item)
    return item


async def _user(db: AsyncSession, email: str, role: UserRole) -> User:
    return await _add(
        db,
        User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password("password123"),
            role=role,
            first_name="Test",
            last_name=role.value,
        ),
    )


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _user(db, "admin@unikin.ac.cd", UserRole.ADMIN)


@pytest_asyncio.fixture
async def staff_user(db: AsyncSession) -> User:
    return await _user(db, "scolarite@unikin.ac.cd", UserRole.UNIVERSITY_STAFF)


@pytest_asyncio.fixture
async def esu_user(db: AsyncSession) -> User:
    return await _user(db, "authentification@esu.gouv.cd", UserRole.ESU_STAFF)


@pytest_asyncio.fixture
async def verifier_user(db: AsyncSession) -> User:
    return await _user(db, "verificateur@employeur.cd", UserRole.VERIFIER)


@pytest_asyncio.fixture
async def faculty(db: AsyncSession) -> Faculty:
    return await _add(db, Faculty(id=uuid.uuid4(), label="Faculté des Sciences"))


@pytest_asyncio.fixture
async def department(db: AsyncSession, faculty: Faculty) -> Department:
    return await _add(
        db, Department(id=uuid.uuid4(), label="Mathématiques et Informatique", faculty_id=faculty.id)
    )


@pytest_asyncio.fixture
async def promotion(db: AsyncSession, department: Department) -> Promotion:
    return await _add(
        db,
        Promotion(id=uuid.uuid4(), label="L2 LMD", option="Génie logiciel", department_id=department.id),
    )


@pytest_asyncio.fixture
async def student(db: AsyncSession, promotion: Promotion) -> Student:
    return await _add(
        db,
        Student(
            id=uuid.uuid4(),
            last_name="Mobutu",
            middle_name="Sese",
            first_name="Jeanne",
            promotion_id=promotion.id,
        ),
    )


@pytest_asyncio.fixture
async def dean(db: AsyncSession, faculty: Faculty) -> Signer:
    return await _add(
        db,
        Signer(
            id=uuid.uuid4(),
            last_name="Kalonji",
            first_name="Albert",
            role=SignerRole.DEAN,
            faculty_id=faculty.id,
        ),
    )


@pytest_asyncio.fixture
async def secretary(db: AsyncSession) -> Signer:
    return await _add(
        db,
        Signer(
            id=uuid.uuid4(),
            last_name="Tshibanda",
            first_name="Marie",
            role=SignerRole.ACADEMIC_SECRETARY,
        ),
    )


@pytest.fixture
def source_pdf() -> bytes:
    return make_pdf()


def make_pdf(text: str = "Diplôme de Licence", paper: str = "a4", pages: int = 1) -> bytes:
    doc = fitz.open()
    rect = fitz.paper_rect(paper)
    for number in range(pages):
        page = doc.new_page(width=rect.width, height=rect.height)
        page.insert_text((72, 72), f"{text} ({number + 1})", fontsize=14)
    try:
        return doc.tobytes()
    finally:
        doc.close()


def token_for(user: User) -> str:
    return create_access_token(str(user.id))


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

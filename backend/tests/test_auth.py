import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import auth_header, token_for
from unidiploma.auth.service import create_refresh_token, decode_token, hash_password, verify_password
from unidiploma.models.user import User


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/auth/login",
        json={"email": "scolarite@unikin.ac.cd", "password": "password123"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert response.headers["Cache-Control"] == "no-store"
    payload = decode_token(data["access_token"], "access")
    assert payload["sub"] == str(staff_user.id)
    assert payload["iss"] == "unidiploma"


@pytest.mark.asyncio
async def test_login_email_is_case_insensitive(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/auth/login",
        json={"email": "Scolarite@UNIKIN.ac.cd", "password": "password123"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/auth/login",
        json={"email": "scolarite@unikin.ac.cd", "password": "wrong"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    response = await client.post(
        "/auth/login",
        json={"email": "nobody@unikin.ac.cd", "password": "password123"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_deactivated_account(client: AsyncClient, db: AsyncSession, staff_user: User):
    staff_user.is_active = False
    await db.flush()
    response = await client.post(
        "/auth/login",
        json={"email": "scolarite@unikin.ac.cd", "password": "password123"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me(client: AsyncClient, esu_user: User):
    response = await client.get("/auth/me", headers=auth_header(token_for(esu_user)))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "authentification@esu.gouv.cd"
    assert data["role"] == "esu_staff"


@pytest.mark.asyncio
async def test_me_without_token(client: AsyncClient):
    response = await client.get("/auth/me")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_me_with_refresh_token_is_rejected(client: AsyncClient, staff_user: User):
    response = await client.get(
        "/auth/me", headers=auth_header(create_refresh_token(str(staff_user.id)))
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(client: AsyncClient, staff_user: User):
    refresh_token = create_refresh_token(str(staff_user.id))

    response = await client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert response.status_code == 200
    data = response.json()
    assert data["refresh_token"] != refresh_token

    # The old refresh token is revoked
    replay = await client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert replay.status_code == 401


@pytest.mark.asyncio
async def test_refresh_with_invalid_token(client: AsyncClient):
    response = await client.post("/auth/refresh", json={"refresh_token": "not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_access_token(client: AsyncClient, staff_user: User):
    token = token_for(staff_user)
    refresh_token = create_refresh_token(str(staff_user.id))

    response = await client.post(
        "/auth/logout", json={"refresh_token": refresh_token}, headers=auth_header(token)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "logged_out"

    me = await client.get("/auth/me", headers=auth_header(token))
    assert me.status_code == 401
    refresh = await client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert refresh.status_code == 401


@pytest.mark.asyncio
async def test_logout_twice(client: AsyncClient, staff_user: User):
    token = token_for(staff_user)
    await client.post("/auth/logout", headers=auth_header(token))
    response = await client.post("/auth/logout", headers=auth_header(token))
    assert response.json()["status"] == "already_logged_out"


def test_password_hashing():
    hashed = hash_password("motdepasse")
    assert hashed != "motdepasse"
    assert verify_password("motdepasse", hashed)
    assert not verify_password("autre", hashed)
    assert not verify_password("motdepasse", "not-a-bcrypt-hash")

"""Public verification by token and by uploaded file, and the download route."""
from urllib.parse import urlsplit

import pytest
from httpx import AsyncClient

from tests.conftest import auth_header, make_pdf, token_for
from unidiploma.auth.service import create_document_download_token
from unidiploma.documents.qr_codec import encode_png
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User


async def _issue(client: AsyncClient, user: User, student: Student, signer: Signer) -> dict:
    response = await client.post(
        "/diplomas",
        data={"title": "Licence en Informatique", "student_id": str(student.id), "signer_id": str(signer.id)},
        files={"file": ("diplome.pdf", make_pdf(), "application/pdf")},
        headers=auth_header(token_for(user)),
    )
    assert response.status_code == 201
    return response.json()


async def _download(client: AsyncClient, document_url: str) -> bytes:
    parts = urlsplit(document_url)
    response = await client.get(f"{parts.path}?{parts.query}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    return response.content


@pytest.mark.asyncio
async def test_verify_registered_token(client: AsyncClient, staff_user: User, student: Student, dean: Signer):
    issued = await _issue(client, staff_user, student, dean)

    response = await client.post("/verify", json={"token": issued["qr_token"]})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "registered_not_authenticated"
    assert data["reason"] is None
    assert data["diploma"]["title"] == "Licence en Informatique"
    assert data["diploma"]["student"]["last_name"] == "Mobutu"
    # The public view does not leak storage details
    assert "document_path" not in data["diploma"]
    assert "qr_token" not in data["diploma"]
    assert "/documents/download?token=" in data["document_url"]


@pytest.mark.asyncio
async def test_verify_unknown_token(client: AsyncClient):
    response = await client.post("/verify", json={"token": "5f0c7a52-1111-4a6e-9c1e-000000000000"})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "not_found"
    assert data["diploma"] is None
    assert data["document_url"] is None


@pytest.mark.asyncio
async def test_verify_blank_token(client: AsyncClient):
    response = await client.post("/verify", json={"token": "   "})
    assert response.status_code == 422
    assert response.json()["code"] == "EMPTY_TOKEN"


@pytest.mark.asyncio
async def test_verify_missing_token(client: AsyncClient):
    response = await client.post("/verify", json={})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_verify_file_round_trip(
    client: AsyncClient, staff_user: User, esu_user: User, student: Student, dean: Signer
):
    """Download the issued PDF, upload it back, then again once the ministry signed it."""
    issued = await _issue(client, staff_user, student, dean)
    first = (await client.post("/verify", json={"token": issued["qr_token"]})).json()
    issued_pdf = await _download(client, first["document_url"])

    response = await client.post(
        "/verify/file", files={"file": ("diplome.pdf", issued_pdf, "application/pdf")}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "registered_not_authenticated"

    await client.post(f"/diplomas/{issued['id']}/authenticate", headers=auth_header(token_for(esu_user)))
    second = (await client.post("/verify", json={"token": issued["qr_token"]})).json()
    assert second["status"] == "authentic"
    authenticated_pdf = await _download(client, second["document_url"])

    response = await client.post(
        "/verify/file", files={"file": ("diplome.pdf", authenticated_pdf, "application/pdf")}
    )
    data = response.json()
    assert data["status"] == "authentic"
    assert data["diploma"]["is_authentic"] is True


@pytest.mark.asyncio
async def test_verify_photo_of_qr(client: AsyncClient, staff_user: User, student: Student, dean: Signer):
    issued = await _issue(client, staff_user, student, dean)
    response = await client.post(
        "/verify/file", files={"file": ("photo.png", encode_png(issued["qr_token"]), "image/png")}
    )
    assert response.json()["status"] == "registered_not_authenticated"


@pytest.mark.asyncio
async def test_verify_file_without_qr(client: AsyncClient):
    response = await client.post(
        "/verify/file", files={"file": ("scan.pdf", make_pdf(), "application/pdf")}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "not_found"
    assert data["reason"] == "qr_not_found"
    assert data["message"] == "Impossible de lire le QR code du fichier."


@pytest.mark.asyncio
async def test_verify_file_unsupported_type(client: AsyncClient):
    response = await client.post(
        "/verify/file", files={"file": ("notes.txt", b"hello", "text/plain")}
    )
    assert response.status_code == 400


# ============ /documents/download ============


@pytest.mark.asyncio
async def test_download_with_invalid_token(client: AsyncClient):
    response = await client.get("/documents/download", params={"token": "forged"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_download_missing_document(client: AsyncClient):
    token = create_document_download_token("diplomas/does-not-exist.pdf", 60)
    response = await client.get("/documents/download", params={"token": token})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_download_rejects_access_tokens(client: AsyncClient, staff_user: User):
    response = await client.get("/documents/download", params={"token": token_for(staff_user)})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_download_headers(client: AsyncClient, staff_user: User, student: Student, dean: Signer):
    issued = await _issue(client, staff_user, student, dean)
    verification = (await client.post("/verify", json={"token": issued["qr_token"]})).json()
    parts = urlsplit(verification["document_url"])
    response = await client.get(f"{parts.path}?{parts.query}")
    assert response.headers["content-disposition"].startswith("inline;")
    assert "frame-ancestors 'self'" in response.headers["content-security-policy"]

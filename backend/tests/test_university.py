"""Staff CRUD on faculties, departments, promotions, students and signers."""
import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import auth_header, token_for
from unidiploma.models.department import Department
from unidiploma.models.faculty import Faculty
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User


# ============ access ============


@pytest.mark.asyncio
async def test_hierarchy_requires_staff(client: AsyncClient, esu_user: User, verifier_user: User):
    for user in (esu_user, verifier_user):
        response = await client.get("/faculties", headers=auth_header(token_for(user)))
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_hierarchy_requires_authentication(client: AsyncClient):
    response = await client.get("/faculties")
    assert response.status_code in (401, 403)


# ============ faculties ============


@pytest.mark.asyncio
async def test_create_and_list_faculties(client: AsyncClient, staff_user: User):
    headers = auth_header(token_for(staff_user))
    response = await client.post("/faculties", json={"label": "  Faculté de Droit "}, headers=headers)
    assert response.status_code == 201
    assert response.json()["label"] == "Faculté de Droit"

    listing = await client.get("/faculties", params={"search": "droit"}, headers=headers)
    assert listing.status_code == 200
    assert [f["label"] for f in listing.json()] == ["Faculté de Droit"]


@pytest.mark.asyncio
async def test_create_duplicate_faculty(client: AsyncClient, staff_user: User, faculty: Faculty):
    response = await client.post(
        "/faculties", json={"label": "Faculté des Sciences"}, headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_faculty_blank_label(client: AsyncClient, staff_user: User):
    response = await client.post("/faculties", json={"label": "   "}, headers=auth_header(token_for(staff_user)))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rename_faculty(client: AsyncClient, admin_user: User, faculty: Faculty):
    response = await client.patch(
        f"/faculties/{faculty.id}",
        json={"label": "Faculté des Sciences et Technologies"},
        headers=auth_header(token_for(admin_user)),
    )
    assert response.status_code == 200
    assert response.json()["label"] == "Faculté des Sciences et Technologies"


@pytest.mark.asyncio
async def test_delete_faculty_with_departments(client: AsyncClient, staff_user: User, department: Department):
    response = await client.delete(
        f"/faculties/{department.faculty_id}", headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_empty_faculty(client: AsyncClient, staff_user: User, faculty: Faculty):
    headers = auth_header(token_for(staff_user))
    response = await client.delete(f"/faculties/{faculty.id}", headers=headers)
    assert response.status_code == 204
    listing = await client.get("/faculties", headers=headers)
    assert listing.json() == []


@pytest.mark.asyncio
async def test_delete_unknown_faculty(client: AsyncClient, staff_user: User):
    response = await client.delete(f"/faculties/{uuid.uuid4()}", headers=auth_header(token_for(staff_user)))
    assert response.status_code == 404


# ============ departments and promotions ============


@pytest.mark.asyncio
async def test_create_department(client: AsyncClient, staff_user: User, faculty: Faculty):
    response = await client.post(
        "/departments",
        json={"label": "Physique", "faculty_id": str(faculty.id)},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["faculty"]["label"] == "Faculté des Sciences"


@pytest.mark.asyncio
async def test_create_department_unknown_faculty(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/departments",
        json={"label": "Physique", "faculty_id": str(uuid.uuid4())},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_duplicate_department(client: AsyncClient, staff_user: User, department: Department):
    response = await client.post(
        "/departments",
        json={"label": "Mathématiques et Informatique", "faculty_id": str(department.faculty_id)},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_list_promotions_by_faculty(
    client: AsyncClient, staff_user: User, faculty: Faculty, promotion: Promotion
):
    response = await client.get(
        "/promotions", params={"faculty_id": str(faculty.id)}, headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["option"] == "Génie logiciel"
    assert data[0]["department"]["faculty"]["id"] == str(faculty.id)


@pytest.mark.asyncio
async def test_delete_promotion_with_students(client: AsyncClient, staff_user: User, student: Student):
    response = await client.delete(
        f"/promotions/{student.promotion_id}", headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 409


# ============ students ============


@pytest.mark.asyncio
async def test_create_student(client: AsyncClient, staff_user: User, promotion: Promotion):
    response = await client.post(
        "/students",
        json={
            "last_name": "Lumumba",
            "first_name": "Patrice",
            "birth_date": "2001-07-02",
            "promotion_id": str(promotion.id),
        },
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["full_name"] == "Lumumba Patrice"
    assert data["promotion"]["label"] == "L2 LMD"


@pytest.mark.asyncio
async def test_search_students(client: AsyncClient, staff_user: User, student: Student):
    headers = auth_header(token_for(staff_user))
    response = await client.get("/students", params={"search": "mobu"}, headers=headers)
    assert [s["id"] for s in response.json()] == [str(student.id)]

    response = await client.get("/students", params={"search": "kabila"}, headers=headers)
    assert response.json() == []


@pytest.mark.asyncio
async def test_get_student(client: AsyncClient, staff_user: User, student: Student):
    response = await client.get(f"/students/{student.id}", headers=auth_header(token_for(staff_user)))
    assert response.status_code == 200
    assert response.json()["last_name"] == "Mobutu"


@pytest.mark.asyncio
async def test_update_student(client: AsyncClient, staff_user: User, student: Student):
    response = await client.patch(
        f"/students/{student.id}",
        json={"middle_name": None, "first_name": "Jeannette"},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["full_name"] == "Mobutu Jeannette"


@pytest.mark.asyncio
async def test_update_student_unknown_promotion(client: AsyncClient, staff_user: User, student: Student):
    response = await client.patch(
        f"/students/{student.id}",
        json={"promotion_id": str(uuid.uuid4())},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 422


# ============ signers ============


@pytest.mark.asyncio
async def test_create_dean_requires_faculty(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/signers",
        json={"last_name": "Kalonji", "first_name": "Albert", "role": "Doyen de la faculté"},
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_academic_secretary_without_faculty(client: AsyncClient, staff_user: User):
    response = await client.post(
        "/signers",
        json={
            "last_name": "Tshibanda",
            "first_name": "Marie",
            "role": "Secrétaire générale académique",
        },
        headers=auth_header(token_for(staff_user)),
    )
    assert response.status_code == 201
    assert response.json()["faculty_id"] is None


@pytest.mark.asyncio
async def test_list_signers_for_faculty_includes_university_wide(
    client: AsyncClient, staff_user: User, faculty: Faculty, dean: Signer, secretary: Signer
):
    response = await client.get(
        "/signers", params={"faculty_id": str(faculty.id)}, headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 200
    assert {s["id"] for s in response.json()} == {str(dean.id), str(secretary.id)}


@pytest.mark.asyncio
async def test_dean_cannot_lose_faculty(client: AsyncClient, staff_user: User, dean: Signer):
    response = await client.patch(
        f"/signers/{dean.id}", json={"faculty_id": None}, headers=auth_header(token_for(staff_user))
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_signer(client: AsyncClient, staff_user: User, secretary: Signer):
    response = await client.delete(f"/signers/{secretary.id}", headers=auth_header(token_for(staff_user)))
    assert response.status_code == 204

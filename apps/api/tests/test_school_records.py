import pytest

from conftest import auth_header


TEACHER = auth_header("class-teacher")
ADMIN = auth_header("principal", role="admin")


@pytest.mark.asyncio
async def test_student_lifecycle(integration_client):
    created = await integration_client.post(
        "/api/students",
        json={
            "student_code": "ST-100",
            "name": "Sadia Islam",
            "name_bn": "সাদিয়া ইসলাম",
            "class_name": "Class 7",
            "date_of_birth": "2013-05-21",
        },
        headers=TEACHER,
    )
    assert created.status_code == 201
    student = created.json()
    assert student["status"] == "active"
    assert student["date_of_birth"] == "2013-05-21"

    duplicate = await integration_client.post(
        "/api/students", json={"student_code": "ST-100", "name": "Someone Else"}, headers=TEACHER
    )
    assert duplicate.status_code == 409

    updated = await integration_client.patch(
        f"/api/students/{student['id']}", json={"section": "B", "roll_number": "12"}, headers=TEACHER
    )
    assert updated.json()["section"] == "B"

    search = await integration_client.get("/api/students?search=সাদিয়া", headers=TEACHER)
    assert [row["id"] for row in search.json()["students"]] == [student["id"]]

    removed = await integration_client.delete(f"/api/students/{student['id']}", headers=TEACHER)
    assert removed.json()["status"] == "inactive"

    active = await integration_client.get("/api/students", headers=TEACHER)
    assert active.json()["students"] == []
    everyone = await integration_client.get("/api/students?include_inactive=true", headers=TEACHER)
    assert len(everyone.json()["students"]) == 1


@pytest.mark.asyncio
async def test_students_are_invisible_across_schools(integration_client):
    created = await integration_client.post(
        "/api/students", json={"student_code": "ST-200", "name": "Rupa"}, headers=TEACHER
    )
    outsider = auth_header("outsider", school_id="other-school")

    listed = await integration_client.get("/api/students", headers=outsider)
    assert listed.json()["students"] == []

    patched = await integration_client.patch(
        f"/api/students/{created.json()['id']}", json={"name": "Hijacked"}, headers=outsider
    )
    assert patched.status_code == 404


@pytest.mark.asyncio
async def test_students_cannot_manage_records(integration_client):
    response = await integration_client.post(
        "/api/students",
        json={"student_code": "ST-300", "name": "Self Enrolled"},
        headers=auth_header("pupil", role="student"),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_teacher_records_are_admin_managed(integration_client):
    denied = await integration_client.post(
        "/api/teachers", json={"teacher_code": "TC-1", "name": "Mrs. Begum"}, headers=TEACHER
    )
    assert denied.status_code == 403

    created = await integration_client.post(
        "/api/teachers",
        json={"teacher_code": "TC-1", "name": "Mrs. Begum", "subject": "Bangla", "joining_date": "2019-01-06"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    assert created.json()["joining_date"] == "2019-01-06"

    listed = await integration_client.get("/api/teachers", headers=TEACHER)
    assert [row["teacher_code"] for row in listed.json()["teachers"]] == ["TC-1"]

    removed = await integration_client.delete(f"/api/teachers/{created.json()['id']}", headers=ADMIN)
    assert removed.json()["status"] == "inactive"

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock
import uuid

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import auth_header
from config import settings
from models.credit_transaction import CreditTransaction
from models.document_template import DocumentTemplate
from models.generated_document import GeneratedDocument
from scripts.seed import seed_templates
from services import document_storage
from services.credits import check_ledger_consistency, debit_credits, get_balance
from services.document_storage import StorageError
from services.documents import recover_stale_generations, render_document, validate_document_data
from services.errors import ValidationError


ID_CARD_DATA = {"student_name": "Rahim Uddin", "student_id": "S-2026-001", "class_name": "Class 8"}


@pytest.fixture(autouse=True)
def local_document_storage(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DOCUMENT_STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "DOCUMENT_STORAGE_DIR", str(tmp_path / "documents"))
    return tmp_path / "documents"


async def _template_id(session_maker, template_type: str) -> str:
    async with session_maker() as session:
        await seed_templates(session)
        result = await session.execute(select(DocumentTemplate.id).where(DocumentTemplate.type == template_type))
        return result.scalar_one()


async def _count(session_maker, model, **filters) -> int:
    async with session_maker() as session:
        query = select(func.count()).select_from(model)
        for key, value in filters.items():
            query = query.where(getattr(model, key) == value)
        result = await session.execute(query)
        return int(result.scalar() or 0)


def test_validate_document_data_reports_every_missing_field():
    fields = [
        {"name": "student_name", "type": "string", "required": True},
        {"name": "exam_date", "type": "date", "required": True},
        {"name": "center", "type": "string", "required": False},
    ]
    with pytest.raises(ValidationError) as exc_info:
        validate_document_data(fields, {"student_name": "  "})
    assert exc_info.value.extra["missing_fields"] == ["student_name", "exam_date"]

    cleaned = validate_document_data(fields, {"student_name": "Karim", "exam_date": "2026-11-02", "extra": 1})
    assert cleaned == {"student_name": "Karim", "exam_date": "2026-11-02", "extra": 1}

    with pytest.raises(ValidationError):
        validate_document_data([{"name": "passing_year", "type": "integer", "required": True}], {"passing_year": "soon"})


def test_render_document_escapes_values_and_labels_each_page():
    template = DocumentTemplate(
        name="Admit Card",
        name_bn="প্রবেশপত্র",
        type="admit_card",
        fields=[{"name": "student_name", "label": "Student", "label_bn": "শিক্ষার্থী"}],
        layout={"page_size": "A5"},
    )
    pages = [{"student_name": "<script>alert(1)</script>"}, {"student_name": "Nusrat", "roll": None}]

    rendered = render_document(template, pages).decode("utf-8")

    assert "<script>" not in rendered
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in rendered
    assert 'data-page="1"' in rendered and 'data-page="2"' in rendered
    assert rendered.count("প্রবেশপত্র") == 2
    assert "শিক্ষার্থী" in rendered
    assert "size: A5" in rendered
    assert "roll" not in rendered


@pytest.mark.asyncio
async def test_generate_document_charges_and_stores_artifact(
    integration_client, session_maker, create_user, local_document_storage
):
    await create_user("class-teacher", credits=10)
    template_id = await _template_id(session_maker, "id_card")

    response = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": ID_CARD_DATA},
        headers=auth_header("class-teacher"),
    )
    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["credits_charged"] == 2
    assert payload["balance_after"] == 8
    document = payload["document"]
    assert document["status"] == "completed"
    assert document["quantity"] == 1
    assert document["file_url"].startswith("file://")

    stored = local_document_storage / "class-teacher" / f"{document['id']}.html"
    assert stored.exists()
    html = stored.read_text(encoding="utf-8")
    assert "Rahim Uddin" in html
    assert "ছাত্র পরিচয়পত্র" in html

    fetched = await integration_client.get(f"/api/documents/{document['id']}", headers=auth_header("class-teacher"))
    assert fetched.status_code == 200
    hidden = await integration_client.get(f"/api/documents/{document['id']}", headers=auth_header("someone-else"))
    assert hidden.status_code == 404

    stats = await integration_client.get("/api/documents/stats", headers=auth_header("class-teacher"))
    assert stats.json()["by_status"] == {"completed": 1}
    assert stats.json()["credits_spent"] == 2

    async with session_maker() as session:
        template = await session.get(DocumentTemplate, template_id)
        assert template.usage_count == 1
        consistency = await check_ledger_consistency("class-teacher", session)
    assert consistency["consistent"] is True


@pytest.mark.asyncio
async def test_storage_failure_refunds_the_charge(integration_client, session_maker, create_user, monkeypatch):
    await create_user("unlucky", credits=10)
    template_id = await _template_id(session_maker, "id_card")
    monkeypatch.setattr(document_storage, "store_document", AsyncMock(side_effect=StorageError("bucket unavailable")))

    response = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": ID_CARD_DATA},
        headers=auth_header("unlucky"),
    )
    assert response.status_code == 502
    payload = response.json()
    assert payload["code"] == "GENERATION_FAILED"
    assert payload["refunded_credits"] == 2

    async with session_maker() as session:
        balance = await get_balance("unlucky", session)
        document = await session.get(GeneratedDocument, payload["document_id"])
        consistency = await check_ledger_consistency("unlucky", session)
        reasons = (
            await session.execute(
                select(CreditTransaction.reason, CreditTransaction.amount)
                .where(CreditTransaction.user_id == "unlucky")
                .order_by(CreditTransaction.amount)
            )
        ).all()

    assert balance["current"] == 10
    assert balance["used"] == 0
    assert document.status == "failed"
    assert document.refunded is True
    assert "bucket unavailable" in document.error_message
    assert [tuple(row) for row in reasons] == [("debit", -2), ("refund", 2)]
    assert consistency["consistent"] is True


@pytest.mark.asyncio
async def test_insufficient_credits_writes_nothing(integration_client, session_maker, create_user):
    await create_user("broke", credits=4)
    template_id = await _template_id(session_maker, "certificate")

    response = await integration_client.post(
        "/api/documents/generate",
        json={
            "template_id": template_id,
            "data": {
                "student_name": "Nasrin Akter",
                "father_name": "Abdul Karim",
                "passing_year": 2026,
                "issue_date": "2026-10-01",
            },
        },
        headers=auth_header("broke"),
    )
    assert response.status_code == 402
    assert response.json()["required"] == 5
    assert response.json()["available"] == 4

    assert await _count(session_maker, GeneratedDocument, user_id="broke") == 0
    assert await _count(session_maker, CreditTransaction, user_id="broke") == 0


@pytest.mark.asyncio
async def test_missing_required_fields_are_rejected_before_charging(integration_client, session_maker, create_user):
    await create_user("hasty", credits=10)
    template_id = await _template_id(session_maker, "admit_card")

    response = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": {"student_name": "Rafi"}},
        headers=auth_header("hasty"),
    )
    assert response.status_code == 422
    assert response.json()["missing_fields"] == ["roll_number", "exam_name", "exam_date"]

    balance = await integration_client.get("/api/credits/balance", headers=auth_header("hasty"))
    assert balance.json()["balance"]["current"] == 10


@pytest.mark.asyncio
async def test_generate_for_students_charges_per_page(integration_client, session_maker, create_user):
    await create_user("form-teacher", credits=20)
    template_id = await _template_id(session_maker, "id_card")
    teacher = auth_header("form-teacher")

    student_ids = []
    for code, name in (("S-1", "Ayesha"), ("S-2", "Tanvir"), ("S-3", "Mim")):
        created = await integration_client.post(
            "/api/students",
            json={"student_code": code, "name": name, "class_name": "Class 6", "roll_number": code[-1]},
            headers=teacher,
        )
        assert created.status_code == 201, created.text
        student_ids.append(created.json()["id"])

    response = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": {}, "student_ids": student_ids},
        headers=teacher,
    )
    assert response.status_code == 201, response.text
    assert response.json()["credits_charged"] == 6
    assert response.json()["balance_after"] == 14
    assert response.json()["document"]["quantity"] == 3

    unknown = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": {}, "student_ids": [student_ids[0], "missing-student"]},
        headers=teacher,
    )
    assert unknown.status_code == 404
    assert unknown.json()["student_ids"] == ["missing-student"]


@pytest.mark.asyncio
async def test_inactive_template_cannot_be_used(integration_client, session_maker, create_user):
    await create_user("principal", credits=0, role="admin")
    await create_user("teacher-x", credits=10)
    template_id = await _template_id(session_maker, "id_card")

    removed = await integration_client.delete(
        f"/api/documents/templates/{template_id}", headers=auth_header("principal", role="admin")
    )
    assert removed.status_code == 200
    assert removed.json()["is_active"] is False

    listed = await integration_client.get("/api/documents/templates", headers=auth_header("teacher-x"))
    assert template_id not in {row["id"] for row in listed.json()["templates"]}

    response = await integration_client.post(
        "/api/documents/generate",
        json={"template_id": template_id, "data": ID_CARD_DATA},
        headers=auth_header("teacher-x"),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_creates_school_scoped_template(integration_client, create_user):
    await create_user("principal", credits=0, role="admin")
    admin = auth_header("principal", role="admin")

    created = await integration_client.post(
        "/api/documents/templates",
        json={
            "name": "Transfer Certificate",
            "type": "transfer_certificate",
            "category": "certificate",
            "credit_cost": 4,
            "school_scoped": True,
            "fields": [{"name": "student_name", "required": True}],
        },
        headers=admin,
    )
    assert created.status_code == 201
    assert created.json()["fields"][0]["label_bn"] == "student_name"

    outsider = await integration_client.get(
        f"/api/documents/templates/{created.json()['id']}",
        headers=auth_header("elsewhere", school_id="other-school"),
    )
    assert outsider.status_code == 404

    costs = await integration_client.get("/api/documents/costs", headers=admin)
    costs_by_type = {row["type"]: row["credit_cost"] for row in costs.json()["costs"]}
    assert costs_by_type["transfer_certificate"] == 4

    bad_field = await integration_client.post(
        "/api/documents/templates",
        json={"name": "Bad", "type": "x", "category": "y", "fields": [{"name": "photo", "type": "image"}]},
        headers=admin,
    )
    assert bad_field.status_code == 422


@pytest.mark.asyncio
async def test_recover_stale_generations_refunds_pending_documents(session_maker, create_user):
    await create_user("crashed", credits=10)
    template_id = await _template_id(session_maker, "admit_card")
    stale_id = str(uuid.uuid4())
    fresh_id = str(uuid.uuid4())

    async with session_maker() as session:
        await debit_credits("crashed", 3, "stale", session, reference_id=stale_id, commit=False)
        await debit_credits("crashed", 3, "fresh", session, reference_id=fresh_id, commit=False)
        session.add_all(
            [
                GeneratedDocument(
                    id=stale_id,
                    user_id="crashed",
                    template_id=template_id,
                    credits_charged=3,
                    status="pending",
                    created_at=datetime.now(timezone.utc) - timedelta(hours=2),
                ),
                GeneratedDocument(
                    id=fresh_id,
                    user_id="crashed",
                    template_id=template_id,
                    credits_charged=3,
                    status="pending",
                ),
            ]
        )
        await session.commit()

    async with session_maker() as session:
        assert await recover_stale_generations(session, max_age_minutes=30) == 1
        assert await recover_stale_generations(session, max_age_minutes=30) == 0

    async with session_maker() as session:
        balance = await get_balance("crashed", session)
        stale = await session.get(GeneratedDocument, stale_id)
        fresh = await session.get(GeneratedDocument, fresh_id)
        consistency = await check_ledger_consistency("crashed", session)

    assert balance["current"] == 7
    assert stale.status == "failed"
    assert stale.refunded is True
    assert fresh.status == "pending"
    assert consistency["consistent"] is True


def test_local_storage_writes_under_user_directory(local_document_storage):
    url = document_storage._store_local("u1/doc.html", b"<html></html>")
    assert Path(local_document_storage / "u1" / "doc.html").read_bytes() == b"<html></html>"
    assert url.startswith("file://")

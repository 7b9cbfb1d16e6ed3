import time

import pytest
from jose import jwt
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import TEST_SCHOOL_ID, auth_header
from config import settings
from models.credit_package import CreditPackage
from models.document_template import DocumentTemplate
from scripts.seed import seed_packages, seed_templates


SUPABASE_SECRET = "supabase-test-secret-with-enough-length"


def _supabase_token(sub="supabase-user-1", email="Teacher@School.test", **extra):
    now = int(time.time())
    claims = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "iat": now,
        "exp": now + 3600,
        "app_metadata": {"school_id": TEST_SCHOOL_ID, "role": "teacher"},
    }
    claims.update(extra)
    return jwt.encode(claims, SUPABASE_SECRET, algorithm="HS256")


@pytest.fixture
def supabase_secret(monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", SUPABASE_SECRET)
    monkeypatch.setattr(settings, "INITIAL_CREDIT_GRANT", 50)


@pytest.mark.asyncio
async def test_liveness(integration_client):
    response = await integration_client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"alive": True}


@pytest.mark.asyncio
async def test_readiness_reports_missing_configuration(integration_client, monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_URL", "")
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", "")
    response = await integration_client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["missing"] == ["SUPABASE_URL", "SUPABASE_JWT_SECRET"]


@pytest.mark.asyncio
async def test_first_session_exchange_signs_up_with_initial_grant(integration_client, supabase_secret):
    first = await integration_client.post("/api/auth/session", json={"access_token": _supabase_token(), "full_name": "Farhana"})
    assert first.status_code == 200, first.text
    payload = first.json()
    assert payload["created"] is True
    assert payload["email"] == "teacher@school.test"
    assert payload["school_id"] == TEST_SCHOOL_ID
    assert payload["role"] == "teacher"

    me = await integration_client.get(
        "/api/auth/me", headers={"Authorization": f"Bearer {payload['session_token']}"}
    )
    assert me.status_code == 200
    assert me.json()["full_name"] == "Farhana"
    assert me.json()["credits"]["current"] == 50

    transactions = await integration_client.get(
        "/api/credits/transactions", headers={"Authorization": f"Bearer {payload['session_token']}"}
    )
    assert transactions.json()["transactions"] == []

    second = await integration_client.post("/api/auth/session", json={"access_token": _supabase_token()})
    assert second.status_code == 200
    assert second.json()["created"] is False

    balance = await integration_client.get(
        "/api/credits/balance", headers={"Authorization": f"Bearer {second.json()['session_token']}"}
    )
    assert balance.json()["balance"]["current"] == 50


@pytest.mark.asyncio
async def test_session_exchange_rejects_bad_tokens(integration_client, supabase_secret):
    forged = jwt.encode(
        {"sub": "x", "email": "x@school.test", "aud": "authenticated", "exp": int(time.time()) + 60},
        "not-the-secret",
        algorithm="HS256",
    )
    response = await integration_client.post("/api/auth/session", json={"access_token": forged})
    assert response.status_code == 401

    expired = _supabase_token(exp=int(time.time()) - 10)
    response = await integration_client.post("/api/auth/session", json={"access_token": expired})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_cannot_start_session(integration_client, session_maker, supabase_secret):
    await integration_client.post("/api/auth/session", json={"access_token": _supabase_token(sub="leaver")})
    async with session_maker() as session:
        from models.user import User

        user = await session.get(User, "leaver")
        user.status = "inactive"
        await session.commit()

    response = await integration_client.post("/api/auth/session", json={"access_token": _supabase_token(sub="leaver")})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_session_token_is_rejected(integration_client):
    response = await integration_client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401

    missing_user = await integration_client.get("/api/auth/me", headers=auth_header("ghost"))
    assert missing_user.status_code == 404


@pytest.mark.asyncio
async def test_seed_is_idempotent(session_maker):
    async with session_maker() as session:
        assert await seed_packages(session) == 4
        assert await seed_templates(session) == 3
    async with session_maker() as session:
        assert await seed_packages(session) == 0
        assert await seed_templates(session) == 0
        packages = (await session.execute(select(func.count(CreditPackage.id)))).scalar()
        templates = (await session.execute(select(func.count(DocumentTemplate.id)))).scalar()
    assert packages == 4
    assert templates == 3


@pytest.mark.asyncio
async def test_health_reports_each_dependency(integration_client, session_maker, monkeypatch):
    import database

    monkeypatch.setattr(database, "engine", session_maker.kw["bind"])
    monkeypatch.setattr(settings, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", SUPABASE_SECRET)

    response = await integration_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "api": "up",
        "database": "up",
        "redis": "up",
        "supabase": "configured",
    }

import asyncio

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import auth_header
from models.credit_package import CreditPackage
from models.notification import Notification
from models.payment import Payment
from scripts.seed import seed_packages
from services.credits import check_ledger_consistency, get_balance
from services.errors import ConflictError
from services.payments import credits_for_amount, process_topup, purchase_package


async def _package_id(session_maker, name: str) -> str:
    async with session_maker() as session:
        result = await session.execute(select(CreditPackage.id).where(CreditPackage.name == name))
        return result.scalar_one()


def test_credits_for_amount_floors_fractional_credits(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "CREDITS_PER_BDT", 1.0)
    assert credits_for_amount(100) == 100
    assert credits_for_amount("99.99") == 99
    monkeypatch.setattr(settings, "CREDITS_PER_BDT", 0.5)
    assert credits_for_amount(5) == 2


@pytest.mark.asyncio
async def test_topup_credits_once_and_ignores_replay(integration_client, session_maker, create_user, monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "CREDITS_PER_BDT", 1.0)
    await create_user("payer", credits=10)
    body = {"amount": 100, "payment_method": "bkash", "transaction_id": "BK-1001"}

    first = await integration_client.post("/api/credits/topup", json=body, headers=auth_header("payer"))
    assert first.status_code == 200
    first_payload = first.json()
    assert first_payload["duplicate"] is False
    assert first_payload["credits_added"] == 100
    assert first_payload["balance_after"] == 110
    assert first_payload["payment"]["status"] == "completed"

    replay = await integration_client.post("/api/credits/topup", json=body, headers=auth_header("payer"))
    assert replay.status_code == 200
    replay_payload = replay.json()
    assert replay_payload["duplicate"] is True
    assert replay_payload["credits_added"] == 0
    assert replay_payload["balance_after"] == 110
    assert replay_payload["payment"]["id"] == first_payload["payment"]["id"]

    transactions = await integration_client.get("/api/credits/transactions", headers=auth_header("payer"))
    rows = transactions.json()["transactions"]
    assert len(rows) == 1
    assert rows[0]["reason"] == "topup"
    assert rows[0]["amount"] == 100


@pytest.mark.asyncio
async def test_topup_replay_by_another_user_conflicts(integration_client, create_user):
    await create_user("first-payer", credits=0)
    await create_user("second-payer", credits=0)
    body = {"amount": 50, "payment_method": "nagad", "transaction_id": "NG-77"}

    ok = await integration_client.post("/api/credits/topup", json=body, headers=auth_header("first-payer"))
    assert ok.status_code == 200

    stolen = await integration_client.post("/api/credits/topup", json=body, headers=auth_header("second-payer"))
    assert stolen.status_code == 409
    assert stolen.json()["code"] == "CONFLICT"

    balance = await integration_client.get("/api/credits/balance", headers=auth_header("second-payer"))
    assert balance.json()["balance"]["current"] == 0


@pytest.mark.asyncio
async def test_topup_rejects_unknown_payment_method(integration_client, create_user):
    await create_user("payer-x", credits=0)
    response = await integration_client.post(
        "/api/credits/topup",
        json={"amount": 20, "payment_method": "paypal", "transaction_id": "PP-1"},
        headers=auth_header("payer-x"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_free_package_is_limited_per_month(integration_client, session_maker, create_user):
    await create_user("freebie", credits=0)
    async with session_maker() as session:
        await seed_packages(session)
    package_id = await _package_id(session_maker, "Free Starter")

    first = await integration_client.post(
        "/api/credits/purchase",
        json={"package_id": package_id},
        headers=auth_header("freebie"),
    )
    assert first.status_code == 200
    assert first.json()["status"] == "completed"
    assert first.json()["credits_added"] == 10
    assert first.json()["balance_after"] == 10

    second = await integration_client.post(
        "/api/credits/purchase",
        json={"package_id": package_id},
        headers=auth_header("freebie"),
    )
    assert second.status_code == 409
    assert second.json()["detail_bn"]


@pytest.mark.asyncio
async def test_concurrent_topups_with_one_transaction_id_credit_once(session_maker, create_user, monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "CREDITS_PER_BDT", 1.0)
    await create_user("double-tap", credits=0)

    async def _topup():
        async with session_maker() as session:
            return await process_topup("double-tap", 50, "nagad", "NG-RACE-1", session)

    results = await asyncio.gather(_topup(), _topup())
    assert sorted(result["duplicate"] for result in results) == [False, True]
    assert {result["payment"]["id"] for result in results} == {results[0]["payment"]["id"]}

    async with session_maker() as session:
        balance = await get_balance("double-tap", session)
        consistency = await check_ledger_consistency("double-tap", session)
        payments = (
            await session.execute(select(func.count(Payment.id)).where(Payment.transaction_id == "NG-RACE-1"))
        ).scalar()
    assert balance["current"] == 50
    assert consistency["consistent"] is True
    assert payments == 1


@pytest.mark.asyncio
async def test_concurrent_free_claims_are_capped(session_maker, create_user):
    await create_user("eager", credits=0)
    async with session_maker() as session:
        await seed_packages(session)
    package_id = await _package_id(session_maker, "Free Starter")

    async def _claim():
        async with session_maker() as session:
            return await purchase_package("eager", package_id, "free", session)

    results = await asyncio.gather(_claim(), _claim(), return_exceptions=True)
    successes = [result for result in results if isinstance(result, dict)]
    failures = [result for result in results if isinstance(result, ConflictError)]
    assert len(successes) == 1
    assert len(failures) == 1

    async with session_maker() as session:
        balance = await get_balance("eager", session)
    assert balance["current"] == 10


@pytest.mark.asyncio
async def test_paid_package_waits_for_admin_approval(integration_client, session_maker, create_user, fake_redis):
    await create_user("buyer", credits=0)
    await create_user("office-admin", credits=0, role="admin")
    async with session_maker() as session:
        await seed_packages(session)
    package_id = await _package_id(session_maker, "Standard")

    purchase = await integration_client.post(
        "/api/credits/purchase",
        json={
            "package_id": package_id,
            "payment_method": "bkash",
            "transaction_id": "BK-STD-1",
            "payment_number": "01700000000",
        },
        headers=auth_header("buyer"),
    )
    assert purchase.status_code == 200
    assert purchase.json()["status"] == "pending"
    payment_id = purchase.json()["payment"]["id"]

    balance = await integration_client.get("/api/credits/balance", headers=auth_header("buyer"))
    assert balance.json()["balance"]["current"] == 0

    pending = await integration_client.get(
        "/api/credits/admin/payments/pending",
        headers=auth_header("office-admin", role="admin"),
    )
    assert [row["id"] for row in pending.json()["payments"]] == [payment_id]

    approve = await integration_client.post(
        f"/api/credits/admin/payments/{payment_id}/verify",
        json={"action": "approve", "notes": "bKash statement checked"},
        headers=auth_header("office-admin", role="admin"),
    )
    assert approve.status_code == 200
    assert approve.json()["payment"]["status"] == "completed"
    assert approve.json()["balance_after"] == 550

    again = await integration_client.post(
        f"/api/credits/admin/payments/{payment_id}/verify",
        json={"action": "reject"},
        headers=auth_header("office-admin", role="admin"),
    )
    assert again.status_code == 409

    summary = await integration_client.get("/api/credits/balance", headers=auth_header("buyer"))
    balance_payload = summary.json()["balance"]
    assert balance_payload["current"] == 550
    assert balance_payload["bonus"] == 50
    assert balance_payload["total_purchased"] == 500

    async with session_maker() as session:
        result = await session.execute(select(Notification).where(Notification.recipient_id == "buyer"))
        notifications = result.scalars().all()
    assert len(notifications) == 1
    assert notifications[0].category == "credits"
    assert any(channel == "notifications:user:buyer" for channel, _ in fake_redis.published)


@pytest.mark.asyncio
async def test_paid_package_requires_payment_reference(integration_client, session_maker, create_user):
    await create_user("forgetful", credits=0)
    async with session_maker() as session:
        await seed_packages(session)
    package_id = await _package_id(session_maker, "Basic")

    response = await integration_client.post(
        "/api/credits/purchase",
        json={"package_id": package_id, "payment_method": "bkash"},
        headers=auth_header("forgetful"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_verify_payment_is_admin_only(integration_client, create_user):
    await create_user("sneaky", credits=0)
    response = await integration_client.post(
        "/api/credits/admin/payments/anything/verify",
        json={"action": "approve"},
        headers=auth_header("sneaky"),
    )
    assert response.status_code == 403

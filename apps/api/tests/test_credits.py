import asyncio

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from conftest import auth_header
from models.credit_transaction import CreditTransaction
from services.credits import (
    add_credits,
    check_ledger_consistency,
    debit_credits,
    get_balance,
    open_credit_account,
    refund_credits,
)
from services.errors import InsufficientCreditsError, NotFoundError, ValidationError


async def _transaction_count(session_maker, user_id: str) -> int:
    async with session_maker() as session:
        result = await session.execute(
            select(func.count(CreditTransaction.id)).where(CreditTransaction.user_id == user_id)
        )
        return int(result.scalar() or 0)


@pytest.mark.asyncio
async def test_deduct_rejects_insufficient_balance_without_side_effects(integration_client, session_maker, create_user):
    await create_user("poor-teacher", credits=10)

    response = await integration_client.post(
        "/api/credits/deduct",
        json={"amount": 15, "reason": "ID cards"},
        headers=auth_header("poor-teacher"),
    )
    assert response.status_code == 402
    payload = response.json()
    assert payload["code"] == "INSUFFICIENT_CREDITS"
    assert payload["required"] == 15
    assert payload["available"] == 10

    async with session_maker() as session:
        balance = await get_balance("poor-teacher", session)
    assert balance["current"] == 10
    assert await _transaction_count(session_maker, "poor-teacher") == 0


@pytest.mark.asyncio
async def test_deduct_debits_and_logs_one_transaction(integration_client, session_maker, create_user):
    await create_user("teacher-a", credits=10)

    response = await integration_client.post(
        "/api/credits/deduct",
        json={"amount": 4, "reason": "Admit cards"},
        headers=auth_header("teacher-a"),
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["charged"] == 4
    assert payload["balance_after"] == 6

    transactions = await integration_client.get("/api/credits/transactions", headers=auth_header("teacher-a"))
    assert transactions.status_code == 200
    rows = transactions.json()["transactions"]
    assert len(rows) == 1
    assert rows[0]["amount"] == -4
    assert rows[0]["reason"] == "debit"
    assert rows[0]["description"] == "Admit cards"
    assert rows[0]["balance_after"] == 6


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(session_maker, create_user):
    await create_user("racer", credits=10)

    async def _debit():
        async with session_maker() as session:
            return await debit_credits("racer", 6, "race", session)

    results = await asyncio.gather(_debit(), _debit(), return_exceptions=True)
    successes = [result for result in results if isinstance(result, dict)]
    failures = [result for result in results if isinstance(result, InsufficientCreditsError)]
    assert len(successes) == 1
    assert len(failures) == 1

    async with session_maker() as session:
        balance = await get_balance("racer", session)
        consistency = await check_ledger_consistency("racer", session)
    assert balance["current"] == 4
    assert consistency["consistent"] is True
    assert await _transaction_count(session_maker, "racer") == 1


@pytest.mark.asyncio
async def test_debit_validates_amount_and_missing_account(session_maker, create_user):
    await create_user("validator", credits=5)
    async with session_maker() as session:
        with pytest.raises(ValidationError):
            await debit_credits("validator", 0, "zero", session)
        with pytest.raises(ValidationError):
            await debit_credits("validator", 1.5, "fraction", session)
        with pytest.raises(NotFoundError):
            await debit_credits("ghost", 1, "nobody", session)
        with pytest.raises(NotFoundError):
            await get_balance("ghost", session)


@pytest.mark.asyncio
async def test_refund_restores_balance_and_usage(session_maker, create_user):
    await create_user("refunded", credits=20)
    async with session_maker() as session:
        await debit_credits("refunded", 8, "certificate", session)
        await refund_credits("refunded", 8, session, description="Refund for failed certificate")
        balance = await get_balance("refunded", session)
        consistency = await check_ledger_consistency("refunded", session)

    assert balance["current"] == 20
    assert balance["used"] == 0
    assert consistency["consistent"] is True
    assert consistency["actual_transaction_sum"] == 0


@pytest.mark.asyncio
async def test_open_credit_account_is_idempotent(session_maker, create_user):
    await create_user("existing", credits=7)
    async with session_maker() as session:
        balance = await open_credit_account("existing", session, initial_credits=50)
    assert balance.current_credits == 7


@pytest.mark.asyncio
async def test_ledger_consistency_detects_unlogged_change(integration_client, session_maker, create_user):
    await create_user("audited", credits=10)
    await create_user("auditor", credits=0, role="admin")
    async with session_maker() as session:
        await add_credits("audited", 5, "bonus", session, bonus=5, description="Welcome bonus")

    ok = await integration_client.get(
        "/api/credits/admin/users/audited/consistency",
        headers=auth_header("auditor", role="admin"),
    )
    assert ok.status_code == 200
    assert ok.json()["consistent"] is True

    async with session_maker() as session:
        from models.credit_balance import CreditBalance

        balance = await session.get(CreditBalance, "audited")
        balance.current_credits = 99
        await session.commit()

    broken = await integration_client.get(
        "/api/credits/admin/users/audited/consistency",
        headers=auth_header("auditor", role="admin"),
    )
    assert broken.json()["consistent"] is False

    forbidden = await integration_client.get(
        "/api/credits/admin/users/audited/consistency",
        headers=auth_header("audited"),
    )
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_balance_scope_is_enforced(integration_client, create_user):
    await create_user("owner", credits=3)
    await create_user("other", credits=3)

    own = await integration_client.get("/api/credits/balance", headers=auth_header("owner"))
    assert own.status_code == 200
    assert own.json()["balance"]["current"] == 3

    cross = await integration_client.get("/api/credits/balance?user_id=other", headers=auth_header("owner"))
    assert cross.status_code == 403

    missing_auth = await integration_client.get("/api/credits/balance")
    assert missing_auth.status_code == 401

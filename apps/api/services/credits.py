"""Credit ledger: balance store, transaction log and atomic debit/credit."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_balance import CreditBalance
from models.credit_transaction import CreditTransaction
from models.document_template import DocumentTemplate
from services.errors import InsufficientCreditsError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TRANSACTION_REASONS = ("debit", "topup", "purchase", "refund", "bonus", "adjustment")


def _positive_amount(amount: Any) -> int:
    try:
        value = int(amount)
    except (TypeError, ValueError) as exc:
        raise ValidationError("amount must be a positive integer") from exc
    if value <= 0 or value != amount:
        raise ValidationError("amount must be a positive integer")
    return value


async def _load_balance(user_id: str, db: AsyncSession) -> Optional[CreditBalance]:
    result = await db.execute(
        select(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _append_transaction(
    db: AsyncSession,
    *,
    user_id: str,
    amount: int,
    reason: str,
    balance_after: int,
    description: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> CreditTransaction:
    if reason not in TRANSACTION_REASONS:
        raise ValidationError(f"Invalid transaction reason: {reason}")
    entry = CreditTransaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        amount=int(amount),
        reason=reason,
        description=description,
        balance_after=int(balance_after),
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(entry)
    return entry


async def open_credit_account(
    user_id: str,
    db: AsyncSession,
    *,
    initial_credits: Optional[int] = None,
    commit: bool = True,
) -> CreditBalance:
    """Create the balance row for a new user. Existing accounts are returned untouched.

    The initial grant is stored on the balance row rather than logged, so the
    transaction sum always equals `current_credits - initial_credits`.
    """
    existing = await _load_balance(user_id, db)
    if existing:
        return existing

    grant = max(int(settings.INITIAL_CREDIT_GRANT if initial_credits is None else initial_credits), 0)
    balance = CreditBalance(
        user_id=user_id,
        current_credits=grant,
        bonus_credits=0,
        used_credits=0,
        total_purchased=0,
        initial_credits=grant,
        status="active",
    )
    db.add(balance)
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Opened credit account user=%s initial_credits=%s", user_id, grant)
    return balance


async def get_balance(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Return the balance counters, raising NotFoundError when no account exists."""
    balance = await _load_balance(user_id, db)
    if balance is None:
        raise NotFoundError("Credit balance not found")
    return {
        "user_id": balance.user_id,
        "current": int(balance.current_credits or 0),
        "bonus": int(balance.bonus_credits or 0),
        "used": int(balance.used_credits or 0),
        "total_purchased": int(balance.total_purchased or 0),
        "status": balance.status,
    }


async def debit_credits(
    user_id: str,
    amount: Any,
    reason: str,
    db: AsyncSession,
    *,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Atomically debit `amount` credits or raise InsufficientCreditsError.

    The balance check and the decrement are one conditional UPDATE, so
    concurrent debits against the same balance can never overdraw it.
    With `commit=False` the caller owns the surrounding transaction.
    """
    debit = _positive_amount(amount)
    result = await db.execute(
        update(CreditBalance)
        .where(
            CreditBalance.user_id == user_id,
            CreditBalance.current_credits >= debit,
        )
        .values(
            current_credits=CreditBalance.current_credits - debit,
            used_credits=CreditBalance.used_credits + debit,
            updated_at=func.now(),
        )
        .returning(CreditBalance.current_credits)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        available_result = await db.execute(
            select(CreditBalance.current_credits).where(CreditBalance.user_id == user_id)
        )
        available = available_result.scalar_one_or_none()
        if commit:
            await db.rollback()
        if available is None:
            raise NotFoundError("Credit balance not found")
        logger.info("Debit rejected user=%s required=%s available=%s", user_id, debit, available)
        raise InsufficientCreditsError(required=debit, available=int(available))

    balance_after = int(row[0])
    entry = _append_transaction(
        db,
        user_id=user_id,
        amount=-debit,
        reason="debit",
        balance_after=balance_after,
        description=(reason or "Credit deduction").strip(),
        reference_type=reference_type,
        reference_id=reference_id,
    )
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Debited user=%s amount=%s balance_after=%s", user_id, debit, balance_after)
    return {"charged": debit, "balance_after": balance_after, "transaction_id": entry.id}


async def add_credits(
    user_id: str,
    amount: Any,
    reason: str,
    db: AsyncSession,
    *,
    description: Optional[str] = None,
    bonus: int = 0,
    purchased: int = 0,
    released_usage: int = 0,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Atomically increment the balance and log one positive transaction."""
    credit = _positive_amount(amount)
    result = await db.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .values(
            current_credits=CreditBalance.current_credits + credit,
            bonus_credits=CreditBalance.bonus_credits + max(int(bonus), 0),
            total_purchased=CreditBalance.total_purchased + max(int(purchased), 0),
            used_credits=CreditBalance.used_credits - max(int(released_usage), 0),
            updated_at=func.now(),
        )
        .returning(CreditBalance.current_credits)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        if commit:
            await db.rollback()
        raise NotFoundError("Credit balance not found")

    balance_after = int(row[0])
    entry = _append_transaction(
        db,
        user_id=user_id,
        amount=credit,
        reason=reason,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Credited user=%s amount=%s reason=%s balance_after=%s", user_id, credit, reason, balance_after)
    return {"credited": credit, "balance_after": balance_after, "transaction_id": entry.id}


async def refund_credits(
    user_id: str,
    amount: Any,
    db: AsyncSession,
    *,
    description: str = "Refund",
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> Dict[str, Any]:
    """Compensating credit for a debit whose purpose was not fulfilled.

    The refunded amount is also taken back out of `used_credits`.
    """
    return await add_credits(
        user_id,
        amount,
        "refund",
        db,
        description=description,
        released_usage=int(amount),
        reference_type=reference_type,
        reference_id=reference_id,
        commit=commit,
    )


async def list_transactions(
    user_id: str,
    db: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[Dict[str, Any]]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 200)))
    )
    return [serialize_transaction(entry) for entry in result.scalars().all()]


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "reason": entry.reason,
        "description": entry.description,
        "balance_after": entry.balance_after,
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_balance(user_id, db)
    costs_result = await db.execute(
        select(DocumentTemplate.type, func.min(DocumentTemplate.credit_cost))
        .where(DocumentTemplate.is_active.is_(True))
        .group_by(DocumentTemplate.type)
    )
    return {
        "balance": balance,
        "credits_per_bdt": float(settings.CREDITS_PER_BDT),
        "document_costs": {doc_type: int(cost or 0) for doc_type, cost in costs_result.all()},
        "recent_transactions": await list_transactions(user_id, db, limit=30),
    }


async def check_ledger_consistency(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Verify that the transaction log explains the balance."""
    balance = await _load_balance(user_id, db)
    if balance is None:
        raise NotFoundError("Credit balance not found")
    total_result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(CreditTransaction.user_id == user_id)
    )
    actual = int(total_result.scalar() or 0)
    expected = int(balance.current_credits or 0) - int(balance.initial_credits or 0)
    consistent = actual == expected and int(balance.current_credits or 0) >= 0
    if not consistent:
        logger.warning(
            "Ledger mismatch user=%s transaction_sum=%s expected=%s",
            user_id,
            actual,
            expected,
        )
    return {
        "user_id": user_id,
        "consistent": consistent,
        "current_credits": int(balance.current_credits or 0),
        "initial_credits": int(balance.initial_credits or 0),
        "expected_transaction_sum": expected,
        "actual_transaction_sum": actual,
    }

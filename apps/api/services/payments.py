"""Payments: idempotent top-ups, credit packages and admin verification."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_package import CreditPackage
from models.payment import Payment
from services import credits as credits_service
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MOBILE_METHODS = ("bkash", "nagad", "rocket")
PAYMENT_METHODS = MOBILE_METHODS + ("card", "cash", "free")


def _to_decimal(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("amount must be a number") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("amount must be greater than 0")
    return value


def credits_for_amount(amount_bdt: Any) -> int:
    """Convert a BDT amount to whole credits at the configured rate."""
    rate = Decimal(str(settings.CREDITS_PER_BDT))
    return int((_to_decimal(amount_bdt) * rate).to_integral_value(rounding=ROUND_FLOOR))


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "user_id": payment.user_id,
        "amount": float(payment.amount or 0),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "transaction_id": payment.transaction_id,
        "payment_number": payment.payment_number,
        "package_id": payment.package_id,
        "credits": payment.credits,
        "bonus_credits": payment.bonus_credits,
        "status": payment.status,
        "description": payment.description,
        "admin_notes": payment.admin_notes,
        "verified_at": payment.verified_at.isoformat() if payment.verified_at else None,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


async def _payment_by_transaction_id(transaction_id: str, db: AsyncSession) -> Optional[Payment]:
    result = await db.execute(select(Payment).where(Payment.transaction_id == transaction_id))
    return result.scalar_one_or_none()


async def process_topup(
    user_id: str,
    amount_bdt: Any,
    payment_method: str,
    transaction_id: str,
    db: AsyncSession,
    *,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """Record a confirmed payment and credit the balance exactly once.

    The payment row, the balance increment and the log entry share one
    transaction. `transaction_id` is unique, so a replay fails on insert and
    returns the original payment without touching the balance.
    """
    method = (payment_method or "").strip().lower()
    if method not in PAYMENT_METHODS or method == "free":
        raise ValidationError(f"Unsupported payment method: {payment_method}")
    external_id = (transaction_id or "").strip()
    if not external_id:
        raise ValidationError("transaction_id is required")

    amount = _to_decimal(amount_bdt)
    credits = credits_for_amount(amount)
    if credits <= 0:
        raise ValidationError("amount is too small to buy any credits")

    payment = Payment(
        id=str(uuid.uuid4()),
        user_id=user_id,
        amount=amount,
        currency="BDT",
        payment_method=method,
        transaction_id=external_id,
        credits=credits,
        status="completed",
        description=description or "Credit top-up",
        verified_at=datetime.now(timezone.utc),
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await _payment_by_transaction_id(external_id, db)
        if existing is None:
            raise
        return await _replayed_topup(existing, user_id, db)

    result = await credits_service.add_credits(
        user_id,
        credits,
        "topup",
        db,
        description=payment.description,
        purchased=credits,
        reference_type="payment",
        reference_id=payment.id,
        commit=False,
    )
    await db.commit()
    logger.info("Top-up user=%s transaction_id=%s credits=%s", user_id, external_id, credits)
    return {
        "duplicate": False,
        "credits_added": credits,
        "balance_after": result["balance_after"],
        "payment": serialize_payment(payment),
    }


async def _replayed_topup(existing: Payment, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    if existing.user_id != user_id:
        raise ConflictError("transaction_id has already been used")
    logger.info("Ignored replayed top-up user=%s transaction_id=%s", user_id, existing.transaction_id)
    balance = await credits_service.get_balance(user_id, db)
    return {
        "duplicate": True,
        "credits_added": 0,
        "balance_after": balance["current"],
        "payment": serialize_payment(existing),
    }


async def list_packages(db: AsyncSession) -> list[Dict[str, Any]]:
    result = await db.execute(
        select(CreditPackage)
        .where(CreditPackage.is_active.is_(True))
        .order_by(CreditPackage.sort_order, CreditPackage.credits)
    )
    return [
        {
            "id": package.id,
            "name": package.name,
            "name_bn": package.name_bn,
            "credits": package.credits,
            "bonus_credits": package.bonus_credits,
            "price": float(package.price or 0),
            "is_free": Decimal(str(package.price or 0)) == 0,
        }
        for package in result.scalars().all()
    ]


def _start_of_month(now: Optional[datetime] = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _free_package_claimed() -> ConflictError:
    return ConflictError(
        "Free package already claimed this month",
        detail_bn="এই মাসে ইতিমধ্যে ফ্রি প্যাকেজ নিয়েছেন",
    )


async def purchase_package(
    user_id: str,
    package_id: str,
    payment_method: str,
    db: AsyncSession,
    *,
    transaction_id: Optional[str] = None,
    payment_number: Optional[str] = None,
) -> Dict[str, Any]:
    """Buy a credit package.

    Free packages complete immediately, limited per calendar month. Paid
    packages are recorded as pending until an admin verifies the payment.
    """
    result = await db.execute(select(CreditPackage).where(CreditPackage.id == package_id))
    package = result.scalar_one_or_none()
    if not package or not package.is_active:
        raise NotFoundError("Package not found")

    is_free = Decimal(str(package.price or 0)) == 0
    method = "free" if is_free else (payment_method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method: {payment_method}")

    free_claim_key = None
    if is_free:
        month_start = _start_of_month()
        claimed_result = await db.execute(
            select(func.count(Payment.id)).where(
                Payment.user_id == user_id,
                Payment.package_id == package.id,
                Payment.status == "completed",
                Payment.created_at >= month_start,
            )
        )
        claimed = int(claimed_result.scalar() or 0)
        if claimed >= max(int(settings.FREE_PACKAGE_LIMIT_PER_MONTH), 0):
            raise _free_package_claimed()
        free_claim_key = f"{user_id}:{package.id}:{month_start:%Y-%m}:{claimed}"
    elif method != "cash" and (not transaction_id or not payment_number):
        raise ValidationError(
            "payment_number and transaction_id are required for mobile and card payments",
            detail_bn="পেমেন্ট নম্বর ও ট্রানজেকশন আইডি প্রদান করুন",
        )

    payment = Payment(
        id=str(uuid.uuid4()),
        user_id=user_id,
        amount=Decimal(str(package.price or 0)),
        currency="BDT",
        payment_method=method,
        transaction_id=(transaction_id or "").strip() or None,
        free_claim_key=free_claim_key,
        payment_number=payment_number,
        package_id=package.id,
        credits=package.credits,
        bonus_credits=package.bonus_credits or 0,
        status="completed" if is_free else "pending",
        description=f"Credit purchase - {package.name}",
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        if is_free:
            raise _free_package_claimed() from exc
        raise ConflictError("transaction_id has already been submitted") from exc

    balance_after = None
    if is_free:
        payment.verified_at = datetime.now(timezone.utc)
        credited = await _credit_package_payment(payment, db)
        balance_after = credited["balance_after"]
    await db.commit()
    logger.info("Package purchase user=%s package=%s status=%s", user_id, package.id, payment.status)
    return {
        "status": payment.status,
        "credits_added": (payment.credits + payment.bonus_credits) if is_free else 0,
        "balance_after": balance_after,
        "payment": serialize_payment(payment),
    }


async def _credit_package_payment(payment: Payment, db: AsyncSession) -> Dict[str, Any]:
    total = int(payment.credits or 0) + int(payment.bonus_credits or 0)
    return await credits_service.add_credits(
        payment.user_id,
        total,
        "purchase",
        db,
        description=payment.description,
        bonus=int(payment.bonus_credits or 0),
        purchased=int(payment.credits or 0),
        reference_type="payment",
        reference_id=payment.id,
        commit=False,
    )


async def verify_payment(
    payment_id: str,
    action: str,
    admin_id: str,
    db: AsyncSession,
    *,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Approve or reject a pending payment. Only the pending state can transition."""
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'")
    next_status = "completed" if action == "approve" else "rejected"

    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == "pending")
        .values(
            status=next_status,
            verified_by=admin_id,
            verified_at=datetime.now(timezone.utc),
            admin_notes=notes,
        )
        .returning(Payment.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        await db.rollback()
        existing = await db.get(Payment, payment_id)
        if existing is None:
            raise NotFoundError("Payment not found")
        raise ConflictError(f"Payment is already {existing.status}")

    payment_result = await db.execute(
        select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    )
    payment = payment_result.scalar_one()
    balance_after = None
    if next_status == "completed" and (payment.credits or payment.bonus_credits):
        credited = await _credit_package_payment(payment, db)
        balance_after = credited["balance_after"]
    await db.commit()
    logger.info("Payment %s %s by admin=%s", payment_id, next_status, admin_id)

    from services.notifications import notify_payment_verified

    await notify_payment_verified(payment, db)
    return {"payment": serialize_payment(payment), "balance_after": balance_after}


async def list_payments(
    db: AsyncSession,
    *,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Dict[str, Any]]:
    query = select(Payment)
    if user_id:
        query = query.where(Payment.user_id == user_id)
    if status:
        query = query.where(Payment.status == status)
    result = await db.execute(
        query.order_by(Payment.created_at.desc())
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 200)))
    )
    return [serialize_payment(payment) for payment in result.scalars().all()]

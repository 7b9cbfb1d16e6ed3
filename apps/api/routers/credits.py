"""Credits router: balance, ledger, top-ups, packages and payment verification."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services import credits as credits_service
from services import payments as payments_service

router = APIRouter()


class DeductRequest(BaseModel):
    amount: int = Field(gt=0, le=100000)
    reason: str = Field(min_length=1, max_length=255)
    user_id: Optional[str] = None


class TopUpRequest(BaseModel):
    amount: Decimal = Field(gt=0, le=Decimal("1000000"))
    payment_method: str
    transaction_id: str = Field(min_length=1, max_length=128)
    description: Optional[str] = None
    user_id: Optional[str] = None


class PurchaseRequest(BaseModel):
    package_id: str
    payment_method: str = "bkash"
    transaction_id: Optional[str] = Field(default=None, max_length=128)
    payment_number: Optional[str] = Field(default=None, max_length=32)


class VerifyPaymentRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: Optional[str] = None


@router.get("/balance")
async def credit_balance(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth, user_id)
    return await credits_service.get_credit_summary(scoped_user_id, db)


@router.get("/transactions")
async def credit_transactions(
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth, user_id)
    await credits_service.get_balance(scoped_user_id, db)
    return {
        "transactions": await credits_service.list_transactions(scoped_user_id, db, limit=limit, offset=offset),
        "limit": limit,
        "offset": offset,
    }


@router.post("/deduct")
async def deduct_credits(
    request: DeductRequest,
    _rate_limit: None = Depends(rate_limit("credits_deduct", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth, request.user_id)
    result = await credits_service.debit_credits(scoped_user_id, request.amount, request.reason, db)
    return {"ok": True, **result}


@router.post("/topup")
async def topup_credits(
    request: TopUpRequest,
    _rate_limit: None = Depends(rate_limit("credits_topup", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth, request.user_id)
    result = await payments_service.process_topup(
        scoped_user_id,
        request.amount,
        request.payment_method,
        request.transaction_id,
        db,
        description=request.description,
    )
    return {"ok": True, **result}


@router.get("/packages")
async def credit_packages(
    _auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"packages": await payments_service.list_packages(db)}


@router.post("/purchase")
async def purchase_credit_package(
    request: PurchaseRequest,
    _rate_limit: None = Depends(rate_limit("credits_purchase", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await payments_service.purchase_package(
        auth.user_id,
        request.package_id,
        request.payment_method,
        db,
        transaction_id=request.transaction_id,
        payment_number=request.payment_number,
    )


@router.get("/payments")
async def my_payments(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "payments": await payments_service.list_payments(
            db, user_id=auth.user_id, status=status, limit=limit, offset=offset
        )
    }


@router.get("/admin/payments/pending")
async def pending_payments(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {
        "payments": await payments_service.list_payments(db, status="pending", limit=limit, offset=offset)
    }


@router.post("/admin/payments/{payment_id}/verify")
async def verify_payment(
    payment_id: str,
    request: VerifyPaymentRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await payments_service.verify_payment(payment_id, request.action, admin.user_id, db, notes=request.notes)


@router.get("/admin/users/{user_id}/consistency")
async def ledger_consistency(
    user_id: str,
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await credits_service.check_ledger_consistency(user_id, db)

"""Inventory router: items, stock movements and stats."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_staff
from services import inventory as inventory_service

router = APIRouter()


class ItemFields(BaseModel):
    name_bn: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    minimum_threshold: Optional[int] = Field(default=None, ge=0)
    location: Optional[str] = None
    condition: Optional[str] = None
    supplier: Optional[str] = None
    description: Optional[str] = None


class ItemCreateRequest(ItemFields):
    name: str = Field(min_length=1)
    current_quantity: int = Field(default=0, ge=0)


class ItemUpdateRequest(ItemFields):
    name: Optional[str] = None


class MovementRequest(BaseModel):
    item_id: str
    type: Literal["in", "out", "adjustment"]
    quantity: int = Field(ge=0)
    reason: str = Field(min_length=1)
    reference: Optional[str] = None


@router.get("")
async def list_items(
    category: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    low_stock: bool = Query(default=False),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "items": await inventory_service.list_items(
            db, school_id=auth.school_id, category=category, search=search, low_stock=low_stock
        )
    }


@router.post("", status_code=201)
async def create_item(
    request: ItemCreateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.create_item(
        request.model_dump(exclude_none=True), db, school_id=staff.school_id, created_by=staff.user_id
    )


@router.get("/stats")
async def inventory_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.inventory_stats(db, school_id=auth.school_id)


@router.get("/items/{item_id}")
async def get_item(
    item_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.get_item(item_id, db, school_id=auth.school_id)


@router.patch("/items/{item_id}")
async def update_item(
    item_id: str,
    request: ItemUpdateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.update_item(
        item_id, request.model_dump(exclude_none=True), db, school_id=staff.school_id
    )


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: str,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    await inventory_service.delete_item(item_id, db, school_id=staff.school_id)
    return {"ok": True}


@router.get("/movements")
async def list_movements(
    item_id: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "movements": await inventory_service.list_movements(
            db, school_id=auth.school_id, item_id=item_id, movement_type=type, limit=limit, offset=offset
        )
    }


@router.post("/movements", status_code=201)
async def record_movement(
    request: MovementRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await inventory_service.record_movement(
        request.item_id,
        request.type,
        request.quantity,
        request.reason,
        db,
        school_id=staff.school_id,
        reference=request.reference,
        created_by=staff.user_id,
    )

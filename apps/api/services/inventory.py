"""Inventory items, stock movements and low-stock alerts."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.inventory_item import InventoryItem
from models.inventory_movement import InventoryMovement
from services.db_safety import safe_db_query
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MOVEMENT_TYPES = ("in", "out", "adjustment")
ADJUSTMENT_ATTEMPTS = 3
ITEM_FIELDS = ("name", "name_bn", "category", "unit", "location", "condition", "supplier", "description")


def serialize_item(item: InventoryItem) -> Dict[str, Any]:
    quantity = int(item.current_quantity or 0)
    threshold = int(item.minimum_threshold or 0)
    return {
        "id": item.id,
        "school_id": item.school_id,
        "name": item.name,
        "name_bn": item.name_bn,
        "category": item.category,
        "unit": item.unit,
        "unit_price": float(item.unit_price or 0),
        "current_quantity": quantity,
        "minimum_threshold": threshold,
        "location": item.location,
        "condition": item.condition,
        "supplier": item.supplier,
        "description": item.description,
        "low_stock": quantity <= threshold,
    }


def serialize_movement(movement: InventoryMovement, item: Optional[InventoryItem] = None) -> Dict[str, Any]:
    body = {
        "id": movement.id,
        "item_id": movement.item_id,
        "type": movement.type,
        "quantity": movement.quantity,
        "quantity_after": movement.quantity_after,
        "reason": movement.reason,
        "reference": movement.reference,
        "created_by": movement.created_by,
        "created_at": movement.created_at.isoformat() if movement.created_at else None,
    }
    if item is not None:
        body["item_name"] = item.name
        body["item_name_bn"] = item.name_bn
    return body


def _non_negative_int(value: Any, field: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a non-negative integer") from exc
    if parsed < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return parsed


def _price(value: Any) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("unit_price must be a number") from exc
    if not price.is_finite() or price < 0:
        raise ValidationError("unit_price must be zero or more")
    return price


async def list_items(
    db: AsyncSession,
    *,
    school_id: str,
    category: Optional[str] = None,
    search: Optional[str] = None,
    low_stock: bool = False,
) -> List[Dict[str, Any]]:
    async def _query() -> List[Dict[str, Any]]:
        query = select(InventoryItem).where(InventoryItem.school_id == school_id)
        if category:
            query = query.where(InventoryItem.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(InventoryItem.name.ilike(pattern), InventoryItem.name_bn.ilike(pattern)))
        if low_stock:
            query = query.where(InventoryItem.current_quantity <= InventoryItem.minimum_threshold)
        result = await db.execute(query.order_by(InventoryItem.category, InventoryItem.name))
        return [serialize_item(item) for item in result.scalars().all()]

    return await safe_db_query(_query, [], "Inventory items list")


async def _load_item(item_id: str, school_id: str, db: AsyncSession) -> InventoryItem:
    result = await db.execute(
        select(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.school_id == school_id)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError("Inventory item not found")
    return item


async def get_item(item_id: str, db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    return serialize_item(await _load_item(item_id, school_id, db))


async def create_item(
    payload: Dict[str, Any],
    db: AsyncSession,
    *,
    school_id: str,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an item. A non-zero opening quantity is logged as an `in` movement."""
    if not str(payload.get("name") or "").strip():
        raise ValidationError("name is required")
    opening = _non_negative_int(payload.get("current_quantity", 0), "current_quantity")
    item = InventoryItem(
        id=str(uuid.uuid4()),
        school_id=school_id,
        unit_price=_price(payload.get("unit_price", 0)),
        current_quantity=opening,
        minimum_threshold=_non_negative_int(payload.get("minimum_threshold", 10), "minimum_threshold"),
    )
    for key in ITEM_FIELDS:
        if payload.get(key) is not None:
            setattr(item, key, payload[key])
    db.add(item)
    if opening:
        db.add(
            InventoryMovement(
                id=str(uuid.uuid4()),
                school_id=school_id,
                item_id=item.id,
                type="in",
                quantity=opening,
                quantity_after=opening,
                reason="Opening stock",
                created_by=created_by,
            )
        )
    await db.commit()
    logger.info("Created inventory item %s qty=%s school=%s", item.id, opening, school_id)
    return serialize_item(item)


async def update_item(item_id: str, payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    """Update descriptive fields. Quantity changes go through movements."""
    item = await _load_item(item_id, school_id, db)
    for key in ITEM_FIELDS:
        if payload.get(key) is not None:
            setattr(item, key, payload[key])
    if payload.get("unit_price") is not None:
        item.unit_price = _price(payload["unit_price"])
    if payload.get("minimum_threshold") is not None:
        item.minimum_threshold = _non_negative_int(payload["minimum_threshold"], "minimum_threshold")
    await db.commit()
    await db.refresh(item)
    return serialize_item(item)


async def delete_item(item_id: str, db: AsyncSession, *, school_id: str) -> None:
    item = await _load_item(item_id, school_id, db)
    await db.execute(delete(InventoryMovement).where(InventoryMovement.item_id == item.id))
    await db.delete(item)
    await db.commit()
    logger.info("Deleted inventory item %s school=%s", item_id, school_id)


async def _apply_delta(item_id: str, school_id: str, delta: int, db: AsyncSession):
    conditions = [InventoryItem.id == item_id, InventoryItem.school_id == school_id]
    if delta < 0:
        conditions.append(InventoryItem.current_quantity >= -delta)
    result = await db.execute(
        update(InventoryItem)
        .where(*conditions)
        .values(current_quantity=InventoryItem.current_quantity + delta)
        .returning(InventoryItem.current_quantity, InventoryItem.minimum_threshold)
        .execution_options(synchronize_session=False)
    )
    return result.first()


async def _locked_quantity(item_id: str, school_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(InventoryItem.current_quantity)
        .where(InventoryItem.id == item_id, InventoryItem.school_id == school_id)
        .with_for_update()
    )
    current = result.scalar_one_or_none()
    if current is None:
        raise NotFoundError("Inventory item not found")
    return int(current)


async def _set_quantity(item_id: str, school_id: str, quantity: int, db: AsyncSession):
    """Set an absolute stock level; returns (row, delta) against the level it replaced."""
    for _ in range(ADJUSTMENT_ATTEMPTS):
        previous = await _locked_quantity(item_id, school_id, db)
        result = await db.execute(
            update(InventoryItem)
            .where(
                InventoryItem.id == item_id,
                InventoryItem.school_id == school_id,
                InventoryItem.current_quantity == previous,
            )
            .values(current_quantity=quantity)
            .returning(InventoryItem.current_quantity, InventoryItem.minimum_threshold)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is not None:
            return row, quantity - previous
        await db.rollback()
    raise ConflictError("Stock level changed during the adjustment; retry")


async def record_movement(
    item_id: str,
    movement_type: str,
    quantity: Any,
    reason: str,
    db: AsyncSession,
    *,
    school_id: str,
    reference: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a stock movement and log it in the same transaction.

    `in` and `out` move by `quantity`; `out` never takes stock below zero.
    `adjustment` sets the stock level to `quantity` and logs the signed change.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
    if not str(reason or "").strip():
        raise ValidationError("reason is required")
    amount = _non_negative_int(quantity, "quantity")
    if movement_type != "adjustment" and amount == 0:
        raise ValidationError("quantity must be greater than 0")

    if movement_type == "adjustment":
        row, delta = await _set_quantity(item_id, school_id, amount, db)
    else:
        delta = amount if movement_type == "in" else -amount
        row = await _apply_delta(item_id, school_id, delta, db)

    if row is None:
        await db.rollback()
        item = await _load_item(item_id, school_id, db)
        raise ConflictError(
            f"Insufficient stock: requested {amount}, available {item.current_quantity}",
            available=int(item.current_quantity or 0),
        )

    quantity_after, threshold = int(row[0]), int(row[1])
    movement = InventoryMovement(
        id=str(uuid.uuid4()),
        school_id=school_id,
        item_id=item_id,
        type=movement_type,
        quantity=delta if movement_type == "adjustment" else amount,
        quantity_after=quantity_after,
        reason=reason.strip(),
        reference=reference,
        created_by=created_by,
    )
    db.add(movement)
    await db.commit()
    logger.info("Inventory %s item=%s delta=%s after=%s", movement_type, item_id, delta, quantity_after)

    quantity_before = quantity_after - delta
    if quantity_before > threshold >= quantity_after:
        await _alert_low_stock(item_id, school_id, db)

    return serialize_movement(movement)


async def _alert_low_stock(item_id: str, school_id: str, db: AsyncSession) -> None:
    from services.notifications import notify_low_stock

    try:
        item = await _load_item(item_id, school_id, db)
        await notify_low_stock(item, db)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Low-stock notification skipped for item=%s: %s", item_id, exc)


async def list_movements(
    db: AsyncSession,
    *,
    school_id: str,
    item_id: Optional[str] = None,
    movement_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    query = (
        select(InventoryMovement, InventoryItem)
        .join(InventoryItem, InventoryItem.id == InventoryMovement.item_id)
        .where(InventoryMovement.school_id == school_id)
    )
    if item_id:
        query = query.where(InventoryMovement.item_id == item_id)
    if movement_type:
        query = query.where(InventoryMovement.type == movement_type)
    result = await db.execute(
        query.order_by(InventoryMovement.created_at.desc())
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 500)))
    )
    return [serialize_movement(movement, item) for movement, item in result.all()]


async def inventory_stats(db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    totals_result = await db.execute(
        select(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.current_quantity), 0),
            func.coalesce(func.sum(InventoryItem.unit_price * InventoryItem.current_quantity), 0),
        ).where(InventoryItem.school_id == school_id)
    )
    count, units, value = totals_result.one()
    low_result = await db.execute(
        select(func.count(InventoryItem.id)).where(
            InventoryItem.school_id == school_id,
            InventoryItem.current_quantity <= InventoryItem.minimum_threshold,
        )
    )
    category_result = await db.execute(
        select(InventoryItem.category, func.count(InventoryItem.id))
        .where(InventoryItem.school_id == school_id)
        .group_by(InventoryItem.category)
    )
    return {
        "total_items": int(count or 0),
        "total_units": int(units or 0),
        "total_value": float(value or 0),
        "low_stock_items": int(low_result.scalar() or 0),
        "by_category": {category: int(total) for category, total in category_result.all()},
    }

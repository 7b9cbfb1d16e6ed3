"""Notification storage, visibility rules and realtime fan-out."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
import uuid

from sqlalchemy import and_, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.notification import Notification
from services import realtime
from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("info", "success", "warning", "error", "urgent")
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")
RECIPIENT_TYPES = ("user", "role", "school", "public")

CATEGORY_LABELS_BN = {
    "general": "সাধারণ",
    "credits": "ক্রেডিট",
    "documents": "ডকুমেন্ট",
    "library": "গ্রন্থাগার",
    "inventory": "ইনভেন্টরি",
    "financial": "আর্থিক",
    "academic": "একাডেমিক",
}


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "title": notification.title,
        "title_bn": notification.title_bn,
        "message": notification.message,
        "message_bn": notification.message_bn,
        "type": notification.type,
        "priority": notification.priority,
        "category": notification.category,
        "category_bn": notification.category_bn,
        "recipient_id": notification.recipient_id,
        "recipient_type": notification.recipient_type,
        "recipient_role": notification.recipient_role,
        "school_id": notification.school_id,
        "sender": notification.sender,
        "action_required": bool(notification.action_required),
        "is_read": bool(notification.is_read),
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def visible_to(user_id: str, role: str, school_id: str):
    return and_(
        Notification.is_active.is_(True),
        or_(
            Notification.recipient_id == user_id,
            Notification.recipient_type == "public",
            and_(
                Notification.school_id == school_id,
                or_(
                    Notification.recipient_type == "school",
                    and_(Notification.recipient_type == "role", Notification.recipient_role == role),
                ),
            ),
        ),
    )


def _channels_for(notification: Notification) -> Iterable[str]:
    if notification.recipient_type == "user" and notification.recipient_id:
        return [realtime.user_channel(notification.recipient_id)]
    if notification.recipient_type == "role" and notification.recipient_role:
        return [realtime.role_channel(notification.school_id, notification.recipient_role)]
    if notification.recipient_type == "public":
        return [realtime.public_channel()]
    return [realtime.school_channel(notification.school_id)]


async def create_notification(
    payload: Dict[str, Any],
    db: AsyncSession,
    *,
    school_id: str,
    sender: Optional[str] = None,
    publish: bool = True,
) -> Dict[str, Any]:
    """Persist a notification, then publish it best-effort to realtime subscribers."""
    title = str(payload.get("title") or "").strip()
    message = str(payload.get("message") or "").strip()
    if not title or not message:
        raise ValidationError("title and message are required")

    notification_type = payload.get("type") or "info"
    if notification_type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Invalid notification type: {notification_type}")
    priority = payload.get("priority") or "medium"
    if priority not in NOTIFICATION_PRIORITIES:
        raise ValidationError(f"Invalid notification priority: {priority}")

    recipient_type = payload.get("recipient_type") or ("user" if payload.get("recipient_id") else "school")
    if recipient_type not in RECIPIENT_TYPES:
        raise ValidationError(f"Invalid recipient type: {recipient_type}")
    if recipient_type == "user" and not payload.get("recipient_id"):
        raise ValidationError("recipient_id is required for user notifications")
    if recipient_type == "role" and not payload.get("recipient_role"):
        raise ValidationError("recipient_role is required for role notifications")

    category = payload.get("category") or "general"
    notification = Notification(
        id=str(uuid.uuid4()),
        title=title,
        title_bn=payload.get("title_bn") or title,
        message=message,
        message_bn=payload.get("message_bn") or message,
        type=notification_type,
        priority=priority,
        category=category,
        category_bn=payload.get("category_bn") or CATEGORY_LABELS_BN.get(category),
        recipient_id=payload.get("recipient_id") if recipient_type == "user" else None,
        recipient_type=recipient_type,
        recipient_role=payload.get("recipient_role") if recipient_type == "role" else None,
        school_id=school_id,
        sender=sender,
        action_required=bool(payload.get("action_required", False)),
        is_read=False,
    )
    db.add(notification)
    await db.commit()

    body = serialize_notification(notification)
    delivered = False
    if publish:
        delivered = await realtime.publish_event(
            _channels_for(notification),
            {"event": "notification.created", "notification": body},
        )
    body["realtime_delivered"] = delivered
    return body


async def list_notifications(
    db: AsyncSession,
    *,
    user_id: str,
    role: str,
    school_id: str,
    unread_only: bool = False,
    category: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Dict[str, Any]]:
    query = select(Notification).where(visible_to(user_id, role, school_id))
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if category:
        query = query.where(Notification.category == category)
    result = await db.execute(
        query.order_by(Notification.created_at.desc())
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 200)))
    )
    return [serialize_notification(row) for row in result.scalars().all()]


async def _get_visible(notification_id: str, db: AsyncSession, *, user_id: str, role: str, school_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            visible_to(user_id, role, school_id),
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


async def set_read_state(
    notification_id: str,
    db: AsyncSession,
    *,
    user_id: str,
    role: str,
    school_id: str,
    is_read: bool = True,
) -> Dict[str, Any]:
    notification = await _get_visible(notification_id, db, user_id=user_id, role=role, school_id=school_id)
    notification.is_read = bool(is_read)
    notification.read_at = datetime.now(timezone.utc) if is_read else None
    await db.commit()
    return serialize_notification(notification)


async def mark_all_read(
    db: AsyncSession,
    *,
    user_id: str,
    role: str,
    school_id: str,
    ids: Optional[list[str]] = None,
) -> int:
    """Mark visible unread notifications (optionally only `ids`) as read."""
    query = (
        update(Notification)
        .where(visible_to(user_id, role, school_id), Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if ids:
        query = query.where(Notification.id.in_(ids))
    result = await db.execute(query)
    await db.commit()
    return int(result.rowcount or 0)


async def notification_stats(db: AsyncSession, *, user_id: str, role: str, school_id: str) -> Dict[str, Any]:
    visible = visible_to(user_id, role, school_id)
    total_result = await db.execute(select(func.count(Notification.id)).where(visible))
    unread_result = await db.execute(
        select(func.count(Notification.id)).where(visible, Notification.is_read.is_(False))
    )
    category_result = await db.execute(
        select(Notification.category, func.count(Notification.id)).where(visible).group_by(Notification.category)
    )
    priority_result = await db.execute(
        select(Notification.priority, func.count(Notification.id))
        .where(visible, Notification.is_read.is_(False))
        .group_by(Notification.priority)
    )
    return {
        "total": int(total_result.scalar() or 0),
        "unread": int(unread_result.scalar() or 0),
        "by_category": {category: int(count) for category, count in category_result.all()},
        "unread_by_priority": {priority: int(count) for priority, count in priority_result.all()},
    }


async def delete_notification(
    notification_id: str,
    db: AsyncSession,
    *,
    user_id: str,
    role: str,
    school_id: str,
) -> None:
    """Admins may delete any visible notification; others only their own direct ones."""
    notification = await _get_visible(notification_id, db, user_id=user_id, role=role, school_id=school_id)
    if role != "admin" and notification.recipient_id != user_id:
        raise NotFoundError("Notification not found")
    await db.delete(notification)
    await db.commit()


async def notify_payment_verified(payment, db: AsyncSession) -> Optional[Dict[str, Any]]:
    from models.user import User

    user = await db.get(User, payment.user_id)
    if user is None:
        return None
    approved = payment.status == "completed"
    total = int(payment.credits or 0) + int(payment.bonus_credits or 0)
    return await create_notification(
        {
            "title": "Payment approved" if approved else "Payment rejected",
            "title_bn": "পেমেন্ট অনুমোদিত" if approved else "পেমেন্ট বাতিল",
            "message": (
                f"{total} credits were added to your account."
                if approved
                else "Your payment could not be verified. Contact the school office."
            ),
            "message_bn": (
                f"আপনার অ্যাকাউন্টে {total} ক্রেডিট যোগ করা হয়েছে।"
                if approved
                else "আপনার পেমেন্ট যাচাই করা যায়নি। স্কুল অফিসে যোগাযোগ করুন।"
            ),
            "type": "success" if approved else "error",
            "priority": "medium",
            "category": "credits",
            "recipient_type": "user",
            "recipient_id": payment.user_id,
        },
        db,
        school_id=user.school_id,
        sender="billing",
    )


async def notify_low_stock(item, db: AsyncSession) -> Dict[str, Any]:
    return await create_notification(
        {
            "title": f"Low stock: {item.name}",
            "title_bn": f"স্টক কম: {item.name_bn or item.name}",
            "message": f"{item.name} is down to {item.current_quantity} {item.unit} (minimum {item.minimum_threshold}).",
            "message_bn": f"{item.name_bn or item.name} এখন {item.current_quantity} {item.unit} (সর্বনিম্ন {item.minimum_threshold})।",
            "type": "warning",
            "priority": "high",
            "category": "inventory",
            "recipient_type": "role",
            "recipient_role": "admin",
            "action_required": True,
        },
        db,
        school_id=item.school_id,
        sender="inventory",
    )

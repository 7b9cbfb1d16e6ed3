"""School dashboard counters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from models.generated_document import GeneratedDocument
from models.inventory_item import InventoryItem
from models.library_book import LibraryBook
from models.notification import Notification
from models.student import Student
from models.teacher import Teacher
from models.user import User
from services.db_safety import safe_db_query
from services.notifications import visible_to


async def _scalar(db: AsyncSession, query) -> int:
    try:
        result = await db.execute(query)
    except Exception:
        await db.rollback()
        raise
    return int(result.scalar() or 0)


async def dashboard_stats(db: AsyncSession, *, user_id: str, role: str, school_id: str) -> Dict[str, Any]:
    """Each counter degrades to zero independently when the provider refuses a read."""
    month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    school_documents = (
        select(func.count(GeneratedDocument.id))
        .join(User, User.id == GeneratedDocument.user_id)
        .where(User.school_id == school_id, GeneratedDocument.status == "completed")
    )

    queries = {
        "students": select(func.count(Student.id)).where(Student.school_id == school_id, Student.status == "active"),
        "teachers": select(func.count(Teacher.id)).where(Teacher.school_id == school_id, Teacher.status == "active"),
        "documents_generated": school_documents,
        "documents_this_month": school_documents.where(GeneratedDocument.created_at >= month_start),
        "library_books": select(func.coalesce(func.sum(LibraryBook.total_copies), 0)).where(
            LibraryBook.school_id == school_id
        ),
        "low_stock_items": select(func.count(InventoryItem.id)).where(
            InventoryItem.school_id == school_id,
            InventoryItem.current_quantity <= InventoryItem.minimum_threshold,
        ),
        "unread_notifications": select(func.count(Notification.id)).where(
            visible_to(user_id, role, school_id),
            Notification.is_read.is_(False),
        ),
        "credit_balance": select(CreditBalance.current_credits).where(CreditBalance.user_id == user_id),
    }

    stats: Dict[str, Any] = {"school_id": school_id}
    for key, query in queries.items():
        stats[key] = await safe_db_query(lambda query=query: _scalar(db, query), 0, f"Dashboard {key}")
    return stats

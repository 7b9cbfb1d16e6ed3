"""Library catalogue, loans and overdue fines."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.library_book import LibraryBook
from models.library_loan import LibraryLoan
from models.student import Student
from services.db_safety import safe_db_query
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

BOOK_FIELDS = ("title", "title_bn", "author", "isbn", "category", "publisher", "publish_year", "location", "description")


def serialize_book(book: LibraryBook) -> Dict[str, Any]:
    return {
        "id": book.id,
        "school_id": book.school_id,
        "title": book.title,
        "title_bn": book.title_bn,
        "author": book.author,
        "isbn": book.isbn,
        "category": book.category,
        "publisher": book.publisher,
        "publish_year": book.publish_year,
        "total_copies": book.total_copies,
        "available_copies": book.available_copies,
        "location": book.location,
        "description": book.description,
    }


def serialize_loan(loan: LibraryLoan, book: Optional[LibraryBook] = None, student: Optional[Student] = None) -> Dict[str, Any]:
    body = {
        "id": loan.id,
        "book_id": loan.book_id,
        "student_id": loan.student_id,
        "borrow_date": loan.borrow_date.isoformat() if loan.borrow_date else None,
        "due_date": loan.due_date.isoformat() if loan.due_date else None,
        "return_date": loan.return_date.isoformat() if loan.return_date else None,
        "status": loan.status,
        "fine": int(loan.fine or 0),
        "notes": loan.notes,
    }
    if book is not None:
        body["book_title"] = book.title
        body["book_title_bn"] = book.title_bn
    if student is not None:
        body["student_name"] = student.name
        body["student_name_bn"] = student.name_bn
    return body


def calculate_fine(due_date: date, returned_on: date) -> int:
    overdue_days = (returned_on - due_date).days
    return max(overdue_days, 0) * max(int(settings.LIBRARY_FINE_PER_DAY), 0)


def _parse_date(value: Any, field: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)") from exc


def _copies(value: Any) -> int:
    try:
        copies = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("total_copies must be a positive integer") from exc
    if copies < 1:
        raise ValidationError("total_copies must be a positive integer")
    return copies


async def list_books(
    db: AsyncSession,
    *,
    school_id: str,
    search: Optional[str] = None,
    category: Optional[str] = None,
    available_only: bool = False,
) -> List[Dict[str, Any]]:
    async def _query() -> List[Dict[str, Any]]:
        query = select(LibraryBook).where(LibraryBook.school_id == school_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    LibraryBook.title.ilike(pattern),
                    LibraryBook.title_bn.ilike(pattern),
                    LibraryBook.author.ilike(pattern),
                    LibraryBook.isbn.ilike(pattern),
                )
            )
        if category:
            query = query.where(LibraryBook.category == category)
        if available_only:
            query = query.where(LibraryBook.available_copies > 0)
        result = await db.execute(query.order_by(LibraryBook.title))
        return [serialize_book(book) for book in result.scalars().all()]

    return await safe_db_query(_query, [], "Library books list")


async def _load_book(book_id: str, school_id: str, db: AsyncSession) -> LibraryBook:
    result = await db.execute(
        select(LibraryBook)
        .where(LibraryBook.id == book_id, LibraryBook.school_id == school_id)
        .execution_options(populate_existing=True)
    )
    book = result.scalar_one_or_none()
    if book is None:
        raise NotFoundError("Book not found")
    return book


async def create_book(payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    if not str(payload.get("title") or "").strip() or not str(payload.get("author") or "").strip():
        raise ValidationError("title and author are required")
    total = _copies(payload.get("total_copies", 1))
    book = LibraryBook(id=str(uuid.uuid4()), school_id=school_id, total_copies=total, available_copies=total)
    for key in BOOK_FIELDS:
        if payload.get(key) is not None:
            setattr(book, key, payload[key])
    db.add(book)
    await db.commit()
    logger.info("Added library book %s (%s copies) school=%s", book.id, total, school_id)
    return serialize_book(book)


async def update_book(book_id: str, payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    book = await _load_book(book_id, school_id, db)
    for key in BOOK_FIELDS:
        if payload.get(key) is not None:
            setattr(book, key, payload[key])
    if payload.get("total_copies") is not None:
        total = _copies(payload["total_copies"])
        # Copies on loan stay on loan; the shift is applied to the live row.
        result = await db.execute(
            update(LibraryBook)
            .where(
                LibraryBook.id == book_id,
                LibraryBook.school_id == school_id,
                LibraryBook.total_copies - LibraryBook.available_copies <= total,
            )
            .values(
                total_copies=total,
                available_copies=LibraryBook.available_copies + (total - LibraryBook.total_copies),
            )
            .returning(LibraryBook.available_copies)
            .execution_options(synchronize_session=False)
        )
        if result.first() is None:
            await db.rollback()
            raise ConflictError("Copies on loan exceed the requested total_copies")
    await db.commit()
    book = await _load_book(book_id, school_id, db)
    return serialize_book(book)


async def delete_book(book_id: str, db: AsyncSession, *, school_id: str) -> None:
    book = await _load_book(book_id, school_id, db)
    active_result = await db.execute(
        select(func.count(LibraryLoan.id)).where(LibraryLoan.book_id == book.id, LibraryLoan.status == "active")
    )
    if int(active_result.scalar() or 0) > 0:
        raise ConflictError("Book has copies on loan and cannot be deleted")
    await db.execute(delete(LibraryLoan).where(LibraryLoan.book_id == book.id))
    await db.delete(book)
    await db.commit()
    logger.info("Deleted library book %s school=%s", book_id, school_id)


async def borrow_book(
    book_id: str,
    student_id: str,
    db: AsyncSession,
    *,
    school_id: str,
    due_date: Any = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Lend one copy. The availability check and decrement are one statement."""
    student_result = await db.execute(
        select(Student).where(
            Student.id == student_id,
            Student.school_id == school_id,
            Student.status == "active",
        )
    )
    student = student_result.scalar_one_or_none()
    if student is None:
        raise NotFoundError("Student not found")

    today = date.today()
    due = _parse_date(due_date, "due_date") or today + timedelta(days=max(int(settings.LIBRARY_LOAN_DAYS), 1))
    if due < today:
        raise ValidationError("due_date cannot be in the past")

    result = await db.execute(
        update(LibraryBook)
        .where(
            LibraryBook.id == book_id,
            LibraryBook.school_id == school_id,
            LibraryBook.available_copies > 0,
        )
        .values(available_copies=LibraryBook.available_copies - 1)
        .returning(LibraryBook.available_copies)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        await db.rollback()
        await _load_book(book_id, school_id, db)
        raise ConflictError("No copies available", detail_bn="কোনো কপি পাওয়া যাচ্ছে না")

    loan = LibraryLoan(
        id=str(uuid.uuid4()),
        school_id=school_id,
        book_id=book_id,
        student_id=student.id,
        borrow_date=today,
        due_date=due,
        status="active",
        fine=0,
        notes=notes,
    )
    db.add(loan)
    await db.commit()
    logger.info("Book %s lent to student=%s due=%s", book_id, student.id, due.isoformat())
    body = serialize_loan(loan, student=student)
    body["available_copies"] = int(row[0])
    return body


async def return_book(
    loan_id: str,
    db: AsyncSession,
    *,
    school_id: str,
    returned_on: Optional[date] = None,
) -> Dict[str, Any]:
    """Close an active loan, restore the copy and charge any overdue fine."""
    loan_result = await db.execute(
        select(LibraryLoan).where(LibraryLoan.id == loan_id, LibraryLoan.school_id == school_id)
    )
    loan = loan_result.scalar_one_or_none()
    if loan is None:
        raise NotFoundError("Loan not found")

    return_date = returned_on or date.today()
    fine = calculate_fine(loan.due_date, return_date)
    result = await db.execute(
        update(LibraryLoan)
        .where(LibraryLoan.id == loan_id, LibraryLoan.status == "active")
        .values(status="returned", return_date=return_date, fine=fine)
        .returning(LibraryLoan.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        await db.rollback()
        raise ConflictError("Loan is already returned")

    await db.execute(
        update(LibraryBook)
        .where(LibraryBook.id == loan.book_id, LibraryBook.available_copies < LibraryBook.total_copies)
        .values(available_copies=LibraryBook.available_copies + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    refreshed = await db.execute(
        select(LibraryLoan).where(LibraryLoan.id == loan_id).execution_options(populate_existing=True)
    )
    logger.info("Loan %s returned fine=%s", loan_id, fine)
    return serialize_loan(refreshed.scalar_one())


async def list_loans(
    db: AsyncSession,
    *,
    school_id: str,
    status: Optional[str] = "active",
    overdue_only: bool = False,
    student_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    async def _query() -> List[Dict[str, Any]]:
        query = (
            select(LibraryLoan, LibraryBook, Student)
            .join(LibraryBook, LibraryBook.id == LibraryLoan.book_id)
            .join(Student, Student.id == LibraryLoan.student_id)
            .where(LibraryLoan.school_id == school_id)
        )
        if status:
            query = query.where(LibraryLoan.status == status)
        if overdue_only:
            query = query.where(LibraryLoan.status == "active", LibraryLoan.due_date < date.today())
        if student_id:
            query = query.where(LibraryLoan.student_id == student_id)
        result = await db.execute(query.order_by(LibraryLoan.due_date))
        return [serialize_loan(loan, book, student) for loan, book, student in result.all()]

    return await safe_db_query(_query, [], "Library loans list")


async def library_stats(db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    books_result = await db.execute(
        select(
            func.count(LibraryBook.id),
            func.coalesce(func.sum(LibraryBook.total_copies), 0),
            func.coalesce(func.sum(LibraryBook.available_copies), 0),
        ).where(LibraryBook.school_id == school_id)
    )
    titles, total_copies, available_copies = books_result.one()
    active_result = await db.execute(
        select(func.count(LibraryLoan.id)).where(LibraryLoan.school_id == school_id, LibraryLoan.status == "active")
    )
    overdue_result = await db.execute(
        select(func.count(LibraryLoan.id)).where(
            LibraryLoan.school_id == school_id,
            LibraryLoan.status == "active",
            LibraryLoan.due_date < date.today(),
        )
    )
    fines_result = await db.execute(
        select(func.coalesce(func.sum(LibraryLoan.fine), 0)).where(LibraryLoan.school_id == school_id)
    )
    return {
        "titles": int(titles or 0),
        "total_copies": int(total_copies or 0),
        "available_copies": int(available_copies or 0),
        "borrowed": int(active_result.scalar() or 0),
        "overdue": int(overdue_result.scalar() or 0),
        "fines_collected": int(fines_result.scalar() or 0),
    }

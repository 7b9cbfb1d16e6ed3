"""Library router: catalogue, loans and stats."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_staff
from services import library as library_service

router = APIRouter()


class BookFields(BaseModel):
    title_bn: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    publisher: Optional[str] = None
    publish_year: Optional[int] = Field(default=None, ge=1000, le=3000)
    location: Optional[str] = None
    description: Optional[str] = None


class BookCreateRequest(BookFields):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    total_copies: int = Field(default=1, ge=1, le=10000)


class BookUpdateRequest(BookFields):
    title: Optional[str] = None
    author: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=1, le=10000)


class BorrowRequest(BaseModel):
    book_id: str
    student_id: str
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ReturnRequest(BaseModel):
    loan_id: str


@router.get("/books")
async def list_books(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    available_only: bool = Query(default=False),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "books": await library_service.list_books(
            db,
            school_id=auth.school_id,
            search=search,
            category=category,
            available_only=available_only,
        )
    }


@router.post("/books", status_code=201)
async def create_book(
    request: BookCreateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await library_service.create_book(request.model_dump(exclude_none=True), db, school_id=staff.school_id)


@router.patch("/books/{book_id}")
async def update_book(
    book_id: str,
    request: BookUpdateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await library_service.update_book(
        book_id, request.model_dump(exclude_none=True), db, school_id=staff.school_id
    )


@router.delete("/books/{book_id}")
async def delete_book(
    book_id: str,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    await library_service.delete_book(book_id, db, school_id=staff.school_id)
    return {"ok": True}


@router.get("/stats")
async def library_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await library_service.library_stats(db, school_id=auth.school_id)


@router.get("/borrowed")
async def borrowed_books(
    overdue_only: bool = Query(default=False),
    student_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "loans": await library_service.list_loans(
            db,
            school_id=auth.school_id,
            overdue_only=overdue_only,
            student_id=student_id,
        )
    }


@router.post("/borrow", status_code=201)
async def borrow_book(
    request: BorrowRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await library_service.borrow_book(
        request.book_id,
        request.student_id,
        db,
        school_id=staff.school_id,
        due_date=request.due_date,
        notes=request.notes,
    )


@router.post("/return")
async def return_book(
    request: ReturnRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await library_service.return_book(request.loan_id, db, school_id=staff.school_id)

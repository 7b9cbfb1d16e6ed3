"""Student records router."""

from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_staff
from services import school_records

router = APIRouter()


class StudentFields(BaseModel):
    name_bn: Optional[str] = None
    class_name: Optional[str] = None
    section: Optional[str] = None
    roll_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    address: Optional[str] = None
    photo_url: Optional[str] = None


class StudentCreateRequest(StudentFields):
    student_code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)


class StudentUpdateRequest(StudentFields):
    name: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


@router.get("")
async def list_students(
    search: Optional[str] = Query(default=None),
    class_name: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "students": await school_records.list_students(
            db,
            school_id=auth.school_id,
            search=search,
            class_name=class_name,
            include_inactive=include_inactive,
            limit=limit,
            offset=offset,
        )
    }


@router.post("", status_code=201)
async def create_student(
    request: StudentCreateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.create_student(request.model_dump(exclude_none=True), db, school_id=staff.school_id)


@router.patch("/{student_id}")
async def update_student(
    student_id: str,
    request: StudentUpdateRequest,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.update_student(
        student_id, request.model_dump(exclude_none=True), db, school_id=staff.school_id
    )


@router.delete("/{student_id}")
async def deactivate_student(
    student_id: str,
    staff: AuthContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.deactivate_student(student_id, db, school_id=staff.school_id)

"""Teacher records router."""

from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from services import school_records

router = APIRouter()


class TeacherFields(BaseModel):
    name_bn: Optional[str] = None
    designation: Optional[str] = None
    subject: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    joining_date: Optional[date] = None


class TeacherCreateRequest(TeacherFields):
    teacher_code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)


class TeacherUpdateRequest(TeacherFields):
    name: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


@router.get("")
async def list_teachers(
    search: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "teachers": await school_records.list_teachers(
            db,
            school_id=auth.school_id,
            search=search,
            include_inactive=include_inactive,
            limit=limit,
            offset=offset,
        )
    }


@router.post("", status_code=201)
async def create_teacher(
    request: TeacherCreateRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.create_teacher(request.model_dump(exclude_none=True), db, school_id=admin.school_id)


@router.patch("/{teacher_id}")
async def update_teacher(
    teacher_id: str,
    request: TeacherUpdateRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.update_teacher(
        teacher_id, request.model_dump(exclude_none=True), db, school_id=admin.school_id
    )


@router.delete("/{teacher_id}")
async def deactivate_teacher(
    teacher_id: str,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await school_records.deactivate_teacher(teacher_id, db, school_id=admin.school_id)

"""Student and teacher records, scoped per school and soft-deleted."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Type
import uuid

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.student import Student
from models.teacher import Teacher
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STUDENT_FIELDS = (
    "name",
    "name_bn",
    "class_name",
    "section",
    "roll_number",
    "date_of_birth",
    "gender",
    "blood_group",
    "father_name",
    "mother_name",
    "guardian_phone",
    "address",
    "photo_url",
)
TEACHER_FIELDS = (
    "name",
    "name_bn",
    "designation",
    "subject",
    "phone",
    "email",
    "joining_date",
)
DATE_FIELDS = ("date_of_birth", "joining_date")


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_student(student: Student) -> Dict[str, Any]:
    return {
        "id": student.id,
        "school_id": student.school_id,
        "student_code": student.student_code,
        "name": student.name,
        "name_bn": student.name_bn,
        "class_name": student.class_name,
        "section": student.section,
        "roll_number": student.roll_number,
        "date_of_birth": _iso(student.date_of_birth),
        "gender": student.gender,
        "blood_group": student.blood_group,
        "father_name": student.father_name,
        "mother_name": student.mother_name,
        "guardian_phone": student.guardian_phone,
        "address": student.address,
        "photo_url": student.photo_url,
        "status": student.status,
    }


def serialize_teacher(teacher: Teacher) -> Dict[str, Any]:
    return {
        "id": teacher.id,
        "school_id": teacher.school_id,
        "teacher_code": teacher.teacher_code,
        "name": teacher.name,
        "name_bn": teacher.name_bn,
        "designation": teacher.designation,
        "subject": teacher.subject,
        "phone": teacher.phone,
        "email": teacher.email,
        "joining_date": _iso(teacher.joining_date),
        "status": teacher.status,
    }


def _clean_values(payload: Dict[str, Any], allowed: tuple) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key in allowed:
        if key not in payload or payload[key] is None:
            continue
        value = payload[key]
        if key == "status" and value not in ("active", "inactive"):
            raise ValidationError("status must be active or inactive")
        if key in DATE_FIELDS and isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError as exc:
                raise ValidationError(f"{key} must be an ISO date (YYYY-MM-DD)") from exc
        values[key] = value
    return values


async def _create_record(model: Type, code_field: str, payload: Dict[str, Any], allowed: tuple, school_id: str, db: AsyncSession):
    code = str(payload.get(code_field) or "").strip()
    name = str(payload.get("name") or "").strip()
    if not code or not name:
        raise ValidationError(f"{code_field} and name are required")
    record = model(id=str(uuid.uuid4()), school_id=school_id, status="active", **_clean_values(payload, allowed))
    setattr(record, code_field, code)
    record.name = name
    db.add(record)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(f"{code_field} {code} already exists") from exc
    logger.info("Created %s %s in school=%s", model.__tablename__, record.id, school_id)
    return record


async def _load_record(model: Type, record_id: str, school_id: str, db: AsyncSession):
    result = await db.execute(select(model).where(model.id == record_id, model.school_id == school_id))
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError(f"{model.__name__} not found")
    return record


async def list_students(
    db: AsyncSession,
    *,
    school_id: str,
    search: Optional[str] = None,
    class_name: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    query = select(Student).where(Student.school_id == school_id)
    if not include_inactive:
        query = query.where(Student.status == "active")
    if class_name:
        query = query.where(Student.class_name == class_name)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(Student.name.ilike(pattern), Student.name_bn.ilike(pattern), Student.student_code.ilike(pattern))
        )
    result = await db.execute(
        query.order_by(Student.class_name, Student.roll_number, Student.name)
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 500)))
    )
    return [serialize_student(student) for student in result.scalars().all()]


async def create_student(payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    student = await _create_record(Student, "student_code", payload, STUDENT_FIELDS, school_id, db)
    return serialize_student(student)


async def update_student(student_id: str, payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    student = await _load_record(Student, student_id, school_id, db)
    for key, value in _clean_values(payload, STUDENT_FIELDS + ("status",)).items():
        setattr(student, key, value)
    await db.commit()
    await db.refresh(student)
    return serialize_student(student)


async def deactivate_student(student_id: str, db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    student = await _load_record(Student, student_id, school_id, db)
    student.status = "inactive"
    await db.commit()
    await db.refresh(student)
    return serialize_student(student)


async def list_teachers(
    db: AsyncSession,
    *,
    school_id: str,
    search: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    query = select(Teacher).where(Teacher.school_id == school_id)
    if not include_inactive:
        query = query.where(Teacher.status == "active")
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(Teacher.name.ilike(pattern), Teacher.name_bn.ilike(pattern), Teacher.teacher_code.ilike(pattern))
        )
    result = await db.execute(
        query.order_by(Teacher.name).offset(max(int(offset), 0)).limit(max(1, min(int(limit), 500)))
    )
    return [serialize_teacher(teacher) for teacher in result.scalars().all()]


async def create_teacher(payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    teacher = await _create_record(Teacher, "teacher_code", payload, TEACHER_FIELDS, school_id, db)
    return serialize_teacher(teacher)


async def update_teacher(teacher_id: str, payload: Dict[str, Any], db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    teacher = await _load_record(Teacher, teacher_id, school_id, db)
    for key, value in _clean_values(payload, TEACHER_FIELDS + ("status",)).items():
        setattr(teacher, key, value)
    await db.commit()
    await db.refresh(teacher)
    return serialize_teacher(teacher)


async def deactivate_teacher(teacher_id: str, db: AsyncSession, *, school_id: str) -> Dict[str, Any]:
    teacher = await _load_record(Teacher, teacher_id, school_id, db)
    teacher.status = "inactive"
    await db.commit()
    await db.refresh(teacher)
    return serialize_teacher(teacher)

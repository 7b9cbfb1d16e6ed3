"""Document templates and the credit-gated generation flow."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import uuid

from jinja2 import DictLoader, Environment
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.document_template import DocumentTemplate
from models.generated_document import GeneratedDocument
from models.student import Student
from services import credits as credits_service
from services import document_storage
from services.errors import (
    DocumentGenerationError,
    NotFoundError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

FIELD_TYPES = ("string", "text", "number", "integer", "date", "boolean")
MAX_STUDENTS_PER_REQUEST = 500


def serialize_template(template: DocumentTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "name_bn": template.name_bn,
        "type": template.type,
        "category": template.category,
        "category_bn": template.category_bn,
        "description": template.description,
        "fields": template.fields or [],
        "layout": template.layout,
        "credit_cost": int(template.credit_cost or 0),
        "is_active": bool(template.is_active),
        "usage_count": int(template.usage_count or 0),
        "last_used_at": template.last_used_at.isoformat() if template.last_used_at else None,
        "school_id": template.school_id,
    }


def serialize_document(document: GeneratedDocument) -> Dict[str, Any]:
    return {
        "id": document.id,
        "user_id": document.user_id,
        "template_id": document.template_id,
        "input_data": document.input_data,
        "quantity": document.quantity,
        "credits_charged": document.credits_charged,
        "status": document.status,
        "file_url": document.file_url,
        "error_message": document.error_message,
        "refunded": bool(document.refunded),
        "created_at": document.created_at.isoformat() if document.created_at else None,
        "completed_at": document.completed_at.isoformat() if document.completed_at else None,
    }


def _template_scope(school_id: Optional[str]):
    if school_id is None:
        return DocumentTemplate.school_id.is_(None)
    return or_(DocumentTemplate.school_id.is_(None), DocumentTemplate.school_id == school_id)


async def list_templates(
    db: AsyncSession,
    *,
    school_id: Optional[str] = None,
    category: Optional[str] = None,
    template_type: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Dict[str, Any]]:
    query = select(DocumentTemplate).where(_template_scope(school_id))
    if not include_inactive:
        query = query.where(DocumentTemplate.is_active.is_(True))
    if category:
        query = query.where(DocumentTemplate.category == category)
    if template_type:
        query = query.where(DocumentTemplate.type == template_type)
    result = await db.execute(query.order_by(DocumentTemplate.category, DocumentTemplate.name))
    return [serialize_template(template) for template in result.scalars().all()]


async def _load_template(template_id: str, db: AsyncSession, *, school_id: Optional[str] = None) -> DocumentTemplate:
    result = await db.execute(
        select(DocumentTemplate).where(DocumentTemplate.id == template_id, _template_scope(school_id))
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise NotFoundError("Document template not found")
    return template


async def get_template(template_id: str, db: AsyncSession, *, school_id: Optional[str] = None) -> Dict[str, Any]:
    return serialize_template(await _load_template(template_id, db, school_id=school_id))


def _validate_field_schema(fields: Any) -> List[Dict[str, Any]]:
    if fields is None:
        return []
    if not isinstance(fields, list):
        raise ValidationError("fields must be a list")
    cleaned: List[Dict[str, Any]] = []
    seen = set()
    for index, field in enumerate(fields):
        if not isinstance(field, dict) or not str(field.get("name") or "").strip():
            raise ValidationError(f"fields[{index}] must be an object with a name")
        name = str(field["name"]).strip()
        if name in seen:
            raise ValidationError(f"Duplicate field name: {name}")
        seen.add(name)
        field_type = field.get("type") or "string"
        if field_type not in FIELD_TYPES:
            raise ValidationError(f"Unsupported field type for {name}: {field_type}")
        cleaned.append(
            {
                "name": name,
                "label": field.get("label") or name,
                "label_bn": field.get("label_bn") or field.get("label") or name,
                "type": field_type,
                "required": bool(field.get("required", False)),
            }
        )
    return cleaned


def _credit_cost(value: Any) -> int:
    try:
        cost = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("credit_cost must be a non-negative integer") from exc
    if cost < 0:
        raise ValidationError("credit_cost must be a non-negative integer")
    return cost


async def create_template(payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    for key in ("name", "type", "category"):
        if not str(payload.get(key) or "").strip():
            raise ValidationError(f"{key} is required")
    template = DocumentTemplate(
        id=str(uuid.uuid4()),
        name=payload["name"].strip(),
        name_bn=payload.get("name_bn"),
        type=payload["type"].strip(),
        category=payload["category"].strip(),
        category_bn=payload.get("category_bn"),
        description=payload.get("description"),
        fields=_validate_field_schema(payload.get("fields")),
        layout=payload.get("layout"),
        credit_cost=_credit_cost(payload.get("credit_cost", 1)),
        is_active=bool(payload.get("is_active", True)),
        usage_count=0,
        school_id=payload.get("school_id"),
    )
    db.add(template)
    await db.commit()
    logger.info("Created document template %s (%s)", template.id, template.type)
    return serialize_template(template)


async def update_template(template_id: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    template = await db.get(DocumentTemplate, template_id)
    if template is None:
        raise NotFoundError("Document template not found")
    for key in ("name", "name_bn", "type", "category", "category_bn", "description", "layout", "is_active"):
        if key in payload and payload[key] is not None:
            setattr(template, key, payload[key])
    if payload.get("fields") is not None:
        template.fields = _validate_field_schema(payload["fields"])
    if payload.get("credit_cost") is not None:
        template.credit_cost = _credit_cost(payload["credit_cost"])
    await db.commit()
    await db.refresh(template)
    return serialize_template(template)


async def deactivate_template(template_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Templates are referenced by generated documents, so they are only deactivated."""
    template = await db.get(DocumentTemplate, template_id)
    if template is None:
        raise NotFoundError("Document template not found")
    template.is_active = False
    await db.commit()
    await db.refresh(template)
    return serialize_template(template)


def _coerce_value(field: Dict[str, Any], value: Any) -> Any:
    field_type = field.get("type") or "string"
    name = field["name"]
    if field_type in ("string", "text"):
        return str(value)
    if field_type == "integer":
        if isinstance(value, bool):
            raise ValidationError(f"{name} must be an integer")
        try:
            parsed = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{name} must be an integer") from exc
        if isinstance(value, float) and parsed != value:
            raise ValidationError(f"{name} must be an integer")
        return parsed
    if field_type == "number":
        if isinstance(value, bool):
            raise ValidationError(f"{name} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{name} must be a number") from exc
    if field_type == "date":
        try:
            return date.fromisoformat(str(value)).isoformat()
        except ValueError as exc:
            raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)") from exc
    if field_type == "boolean":
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{name} must be true or false")
    return value


def validate_document_data(fields: List[Dict[str, Any]], data: Dict[str, Any]) -> Dict[str, Any]:
    """Check `data` against a template field schema and return coerced values.

    Keys not declared by the schema are passed through unchanged.
    """
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")
    cleaned = dict(data)
    missing = []
    for field in fields or []:
        name = field.get("name")
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if field.get("required"):
                missing.append(name)
            continue
        cleaned[name] = _coerce_value(field, value)
    if missing:
        raise ValidationError("Missing required fields", missing_fields=missing)
    return cleaned


def _student_context(student: Student) -> Dict[str, Any]:
    return {
        "student_id": student.student_code,
        "student_name": student.name,
        "student_name_bn": student.name_bn,
        "class_name": student.class_name,
        "section": student.section,
        "roll_number": student.roll_number,
        "date_of_birth": student.date_of_birth.isoformat() if student.date_of_birth else None,
        "blood_group": student.blood_group,
        "father_name": student.father_name,
        "mother_name": student.mother_name,
        "guardian_phone": student.guardian_phone,
        "address": student.address,
        "photo_url": student.photo_url,
    }


async def _build_pages(
    template: DocumentTemplate,
    data: Dict[str, Any],
    student_ids: Optional[List[str]],
    db: AsyncSession,
    *,
    school_id: Optional[str],
) -> List[Dict[str, Any]]:
    fields = template.fields or []
    if not student_ids:
        return [validate_document_data(fields, data)]

    unique_ids = list(dict.fromkeys(student_ids))
    if len(unique_ids) > MAX_STUDENTS_PER_REQUEST:
        raise ValidationError(f"At most {MAX_STUDENTS_PER_REQUEST} students per request")
    query = select(Student).where(Student.id.in_(unique_ids), Student.status == "active")
    if school_id:
        query = query.where(Student.school_id == school_id)
    result = await db.execute(query)
    students = {student.id: student for student in result.scalars().all()}
    unknown = [student_id for student_id in unique_ids if student_id not in students]
    if unknown:
        raise NotFoundError("Students not found", student_ids=unknown)

    pages = []
    for student_id in unique_ids:
        page_data = {key: value for key, value in _student_context(students[student_id]).items() if value is not None}
        page_data.update(data)
        pages.append(validate_document_data(fields, page_data))
    return pages


DOCUMENT_TEMPLATES = {
    "document.html": """<!DOCTYPE html>
<html lang="bn">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>@page { size: {{ page_size }}; } .page { page-break-after: always; }</style>
</head>
<body data-template-type="{{ template_type }}">
{% for page in pages %}
<section class="page" data-page="{{ loop.index }}">
<h1 lang="bn">{{ title_bn }}</h1>
<h2 lang="en">{{ title }}</h2>
<table>
{% for row in page %}
<tr><th lang="bn">{{ row.label_bn }}</th><th lang="en">{{ row.label }}</th><td>{{ row.value }}</td></tr>
{% endfor %}
</table>
</section>
{% endfor %}
</body>
</html>
""",
}

_environment = Environment(
    loader=DictLoader(DOCUMENT_TEMPLATES),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_document(template: DocumentTemplate, pages: List[Dict[str, Any]]) -> bytes:
    """Render pages as a printable bilingual HTML document."""
    labels = {field["name"]: field for field in (template.fields or [])}
    rendered_pages = []
    for page in pages:
        rows = []
        for key, value in page.items():
            if value is None:
                continue
            field = labels.get(key, {})
            rows.append(
                {
                    "label": field.get("label") or key,
                    "label_bn": field.get("label_bn") or field.get("label") or key,
                    "value": value,
                }
            )
        rendered_pages.append(rows)
    layout = template.layout if isinstance(template.layout, dict) else {}
    document = _environment.get_template("document.html").render(
        title=template.name or "",
        title_bn=template.name_bn or template.name or "",
        template_type=template.type or "",
        page_size=layout.get("page_size") or "A4",
        pages=rendered_pages,
    )
    return document.encode("utf-8")


async def _fail_and_refund(
    document_id: str,
    user_id: str,
    cost: int,
    error_message: str,
    db: AsyncSession,
) -> bool:
    """Move a pending document to failed and refund its charge in one commit.

    Returns False when the document already left the pending state, in which
    case nothing is refunded.
    """
    result = await db.execute(
        update(GeneratedDocument)
        .where(GeneratedDocument.id == document_id, GeneratedDocument.status == "pending")
        .values(
            status="failed",
            error_message=error_message[:500],
            refunded=cost > 0,
            completed_at=datetime.now(timezone.utc),
        )
        .returning(GeneratedDocument.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        await db.rollback()
        return False
    if cost > 0:
        await credits_service.refund_credits(
            user_id,
            cost,
            db,
            description="Refund for failed document generation",
            reference_type="generated_document",
            reference_id=document_id,
            commit=False,
        )
    await db.commit()
    return True


async def generate_document(
    user_id: str,
    template_id: str,
    data: Dict[str, Any],
    db: AsyncSession,
    *,
    student_ids: Optional[List[str]] = None,
    school_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Charge credits, render and store a document, refunding on failure.

    The debit, the pending document row and the ledger entry are committed
    together before rendering. Rendering or storage failures mark the
    document failed and refund the full charge in one commit.
    """
    template = await _load_template(template_id, db, school_id=school_id)
    if not template.is_active:
        raise NotFoundError("Document template not found")
    pages = await _build_pages(template, data or {}, student_ids, db, school_id=school_id)
    quantity = len(pages)
    cost = int(template.credit_cost or 0) * quantity
    document_id = str(uuid.uuid4())

    try:
        if cost > 0:
            await credits_service.debit_credits(
                user_id,
                cost,
                f"Document generation: {template.name}",
                db,
                reference_type="generated_document",
                reference_id=document_id,
                commit=False,
            )
        document = GeneratedDocument(
            id=document_id,
            user_id=user_id,
            template_id=template.id,
            input_data={"data": data or {}, "student_ids": list(student_ids or [])},
            quantity=quantity,
            credits_charged=cost,
            status="pending",
            refunded=False,
        )
        db.add(document)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise

    try:
        content = render_document(template, pages)
        file_url = await document_storage.store_document(user_id, document_id, content)
    except Exception as exc:
        logger.error("Document generation failed id=%s: %s", document_id, exc)
        refunded = await _fail_and_refund(document_id, user_id, cost, str(exc) or exc.__class__.__name__, db)
        raise DocumentGenerationError(
            "Document generation failed. Credits have been refunded.",
            document_id=document_id,
            refunded_credits=cost if refunded else 0,
        ) from exc

    now = datetime.now(timezone.utc)
    completed = await db.execute(
        update(GeneratedDocument)
        .where(GeneratedDocument.id == document_id, GeneratedDocument.status == "pending")
        .values(status="completed", file_url=file_url, completed_at=now)
        .returning(GeneratedDocument.id)
        .execution_options(synchronize_session=False)
    )
    if completed.first() is None:
        await db.rollback()
        logger.warning("Document %s left pending state before completion", document_id)
        raise DocumentGenerationError(
            "Document generation expired before completion. Credits have been refunded.",
            document_id=document_id,
            refunded_credits=cost,
        )
    await db.execute(
        update(DocumentTemplate)
        .where(DocumentTemplate.id == template.id)
        .values(usage_count=DocumentTemplate.usage_count + quantity, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    result = await db.execute(
        select(GeneratedDocument)
        .where(GeneratedDocument.id == document_id)
        .execution_options(populate_existing=True)
    )
    balance = await credits_service.get_balance(user_id, db)
    logger.info("Generated document id=%s user=%s pages=%s cost=%s", document_id, user_id, quantity, cost)
    return {
        "document": serialize_document(result.scalar_one()),
        "credits_charged": cost,
        "balance_after": balance["current"],
    }


async def recover_stale_generations(db: AsyncSession, max_age_minutes: Optional[int] = None) -> int:
    """Fail and refund documents stuck in pending longer than the threshold."""
    minutes = max(int(settings.STALE_GENERATION_MINUTES if max_age_minutes is None else max_age_minutes), 0)
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    result = await db.execute(
        select(GeneratedDocument.id, GeneratedDocument.user_id, GeneratedDocument.credits_charged).where(
            GeneratedDocument.status == "pending",
            GeneratedDocument.created_at < cutoff,
        )
    )
    recovered = 0
    for document_id, user_id, cost in result.all():
        if await _fail_and_refund(document_id, user_id, int(cost or 0), "Generation interrupted", db):
            recovered += 1
    if recovered:
        logger.warning("Recovered %s stale document generations", recovered)
    return recovered


async def get_document(document_id: str, db: AsyncSession, *, user_id: str, is_admin: bool = False) -> Dict[str, Any]:
    document = await db.get(GeneratedDocument, document_id)
    if document is None or (document.user_id != user_id and not is_admin):
        raise NotFoundError("Document not found")
    return serialize_document(document)


async def list_generated_documents(
    user_id: str,
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    query = select(GeneratedDocument).where(GeneratedDocument.user_id == user_id)
    if status:
        query = query.where(GeneratedDocument.status == status)
    result = await db.execute(
        query.order_by(GeneratedDocument.created_at.desc())
        .offset(max(int(offset), 0))
        .limit(max(1, min(int(limit), 200)))
    )
    return [serialize_document(document) for document in result.scalars().all()]


async def document_stats(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    status_result = await db.execute(
        select(GeneratedDocument.status, func.count(GeneratedDocument.id))
        .where(GeneratedDocument.user_id == user_id)
        .group_by(GeneratedDocument.status)
    )
    by_status = {status: int(count) for status, count in status_result.all()}
    monthly_result = await db.execute(
        select(func.count(GeneratedDocument.id)).where(
            GeneratedDocument.user_id == user_id,
            GeneratedDocument.status == "completed",
            GeneratedDocument.created_at >= month_start,
        )
    )
    spent_result = await db.execute(
        select(func.coalesce(func.sum(GeneratedDocument.credits_charged), 0)).where(
            GeneratedDocument.user_id == user_id,
            GeneratedDocument.status == "completed",
        )
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "completed_this_month": int(monthly_result.scalar() or 0),
        "credits_spent": int(spent_result.scalar() or 0),
    }


async def document_costs(db: AsyncSession, *, school_id: Optional[str] = None) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(DocumentTemplate)
        .where(DocumentTemplate.is_active.is_(True), _template_scope(school_id))
        .order_by(DocumentTemplate.credit_cost, DocumentTemplate.name)
    )
    return [
        {
            "template_id": template.id,
            "name": template.name,
            "name_bn": template.name_bn,
            "type": template.type,
            "credit_cost": int(template.credit_cost or 0),
        }
        for template in result.scalars().all()
    ]

"""Documents router: templates, costs and credit-gated generation."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services import documents as documents_service

router = APIRouter()


class TemplateField(BaseModel):
    name: str = Field(min_length=1)
    label: Optional[str] = None
    label_bn: Optional[str] = None
    type: str = "string"
    required: bool = False


class TemplateCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    name_bn: Optional[str] = None
    type: str = Field(min_length=1)
    category: str = Field(min_length=1)
    category_bn: Optional[str] = None
    description: Optional[str] = None
    fields: List[TemplateField] = Field(default_factory=list)
    layout: Optional[Dict[str, Any]] = None
    credit_cost: int = Field(default=1, ge=0, le=1000)
    is_active: bool = True
    school_scoped: bool = False


class TemplateUpdateRequest(BaseModel):
    name: Optional[str] = None
    name_bn: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    category_bn: Optional[str] = None
    description: Optional[str] = None
    fields: Optional[List[TemplateField]] = None
    layout: Optional[Dict[str, Any]] = None
    credit_cost: Optional[int] = Field(default=None, ge=0, le=1000)
    is_active: Optional[bool] = None


class GenerateRequest(BaseModel):
    template_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    student_ids: Optional[List[str]] = None


@router.get("/templates")
async def list_templates(
    category: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    include_inactive: bool = Query(default=False),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "templates": await documents_service.list_templates(
            db,
            school_id=auth.school_id,
            category=category,
            template_type=type,
            include_inactive=include_inactive and auth.is_admin,
        )
    }


@router.get("/templates/{template_id}")
async def get_template(
    template_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.get_template(template_id, db, school_id=auth.school_id)


@router.post("/templates", status_code=201)
async def create_template(
    request: TemplateCreateRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = request.model_dump(exclude={"school_scoped"})
    payload["school_id"] = admin.school_id if request.school_scoped else None
    return await documents_service.create_template(payload, db)


@router.patch("/templates/{template_id}")
async def update_template(
    template_id: str,
    request: TemplateUpdateRequest,
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.update_template(template_id, request.model_dump(exclude_none=True), db)


@router.delete("/templates/{template_id}")
async def deactivate_template(
    template_id: str,
    _admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.deactivate_template(template_id, db)


@router.get("/costs")
async def document_costs(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"costs": await documents_service.document_costs(db, school_id=auth.school_id)}


@router.post("/generate", status_code=201)
async def generate_document(
    request: GenerateRequest,
    _rate_limit: None = Depends(rate_limit("documents_generate", limit=60, window_seconds=600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.generate_document(
        auth.user_id,
        request.template_id,
        request.data,
        db,
        student_ids=request.student_ids,
        school_id=auth.school_id,
    )


@router.get("")
async def list_documents(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "documents": await documents_service.list_generated_documents(
            auth.user_id, db, status=status, limit=limit, offset=offset
        )
    }


@router.get("/stats")
async def document_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.document_stats(auth.user_id, db)


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await documents_service.get_document(document_id, db, user_id=auth.user_id, is_admin=auth.is_admin)

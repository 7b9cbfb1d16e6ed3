"""Dashboard router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_school_scope, get_auth_context
from services.dashboard import dashboard_stats

router = APIRouter()


@router.get("/stats")
async def get_dashboard_stats(
    school_id: Optional[str] = Query(default=None, alias="schoolId"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_school_id = ensure_school_scope(auth, school_id)
    return await dashboard_stats(db, user_id=auth.user_id, role=auth.role, school_id=scoped_school_id)

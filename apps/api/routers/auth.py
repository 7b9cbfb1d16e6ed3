"""
Authentication router: Supabase session exchange and current user profile.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import USER_ROLES, User
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.credits import get_balance, open_credit_account
from services.session_token import create_session_token, decode_supabase_access_token

router = APIRouter()
logger = logging.getLogger(__name__)


class SessionExchangeRequest(BaseModel):
    access_token: str
    full_name: Optional[str] = None
    full_name_bn: Optional[str] = None


class SessionExchangeResponse(BaseModel):
    user_id: str
    email: str
    role: str
    school_id: str
    session_token: str
    session_expires_at: int
    created: bool = False


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    full_name: Optional[str] = None
    full_name_bn: Optional[str] = None
    role: str
    school_id: str
    status: str
    credits: Optional[dict] = None


def _claim(claims: dict, key: str) -> Optional[str]:
    for source in (claims.get("app_metadata") or {}, claims.get("user_metadata") or {}):
        value = source.get(key)
        if value:
            return str(value)
    return None


@router.post("/session", response_model=SessionExchangeResponse)
async def exchange_session(
    request: SessionExchangeRequest,
    _rate_limit: None = Depends(rate_limit("auth_session", limit=60, window_seconds=600)),
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange a Supabase Auth access token for an API session token.
    The first exchange for an email is the signup: it creates the user and opens the credit account.
    """
    try:
        claims = decode_supabase_access_token(request.access_token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user_id = str(claims["sub"])
    email = str(claims["email"]).strip().lower()

    result = await db.execute(select(User).where((User.id == user_id) | (User.email == email)))
    user = result.scalars().first()
    created = False
    if user is None:
        role = _claim(claims, "role") or "teacher"
        if role not in USER_ROLES:
            role = "teacher"
        user = User(
            id=user_id,
            email=email,
            full_name=request.full_name or _claim(claims, "full_name"),
            full_name_bn=request.full_name_bn,
            role=role,
            school_id=_claim(claims, "school_id") or "default",
            status="active",
        )
        db.add(user)
        await db.flush()
        await open_credit_account(user.id, db, commit=False)
        await db.commit()
        created = True
        logger.info("Signed up user=%s school=%s role=%s", user.id, user.school_id, user.role)
    elif user.status != "active":
        raise HTTPException(status_code=403, detail="User account is inactive.")

    session = create_session_token(
        user_id=user.id,
        email=user.email,
        role=user.role,
        school_id=user.school_id,
    )
    return SessionExchangeResponse(
        user_id=user.id,
        email=user.email,
        role=user.role,
        school_id=user.school_id,
        session_token=session["token"],
        session_expires_at=session["expires_at"],
        created=created,
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get current user profile and credit balance."""
    result = await db.execute(select(User).where(User.id == auth.user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return CurrentUserResponse(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        full_name_bn=user.full_name_bn,
        role=user.role,
        school_id=user.school_id,
        status=user.status,
        credits=await get_balance(user.id, db),
    )

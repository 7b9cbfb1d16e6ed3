"""Authentication dependencies for API user and school scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None
    role: str = "teacher"
    school_id: str = "default"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def context_from_token(token: str) -> AuthContext:
    """Build an AuthContext from a raw session token; raises ValueError when invalid."""
    payload = decode_session_token(token)
    return AuthContext(
        user_id=str(payload.get("sub", "")),
        email=str(payload.get("email", "")) or None,
        role=str(payload.get("role") or "teacher"),
        school_id=str(payload.get("school_id") or "default"),
    )


def ensure_user_scope(auth: AuthContext, supplied_user_id: Optional[str]) -> str:
    """Return the target user_id, rejecting cross-user access for non-admins."""
    if supplied_user_id and supplied_user_id != auth.user_id:
        if not auth.is_admin:
            raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
        return supplied_user_id
    return auth.user_id


def ensure_school_scope(auth: AuthContext, supplied_school_id: Optional[str]) -> str:
    """Return the target school_id, rejecting cross-school access for non-admins."""
    if supplied_school_id and supplied_school_id != auth.school_id:
        if not auth.is_admin:
            raise HTTPException(status_code=403, detail="schoolId does not match authenticated session.")
        return supplied_school_id
    return auth.school_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        return context_from_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return auth


async def require_staff(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Admins and teachers manage school records, library and inventory."""
    if auth.role not in ("admin", "teacher"):
        raise HTTPException(status_code=403, detail="Staff access required.")
    return auth

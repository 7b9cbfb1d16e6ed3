"""Session token helpers for backend-authenticated user scope."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "school_session"


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    role: str = "teacher",
    school_id: str = "default",
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.SESSION_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "role": role,
        "school_id": school_id,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, settings.SESSION_SECRET, algorithm=settings.SESSION_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[settings.SESSION_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    return payload


def decode_supabase_access_token(token: str) -> Dict[str, Any]:
    """Verify a Supabase Auth access token and return its claims."""
    secret = (settings.SUPABASE_JWT_SECRET or "").strip()
    if not secret:
        raise ValueError("SUPABASE_JWT_SECRET is not configured.")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired Supabase access token.") from exc

    if not str(payload.get("sub", "")).strip():
        raise ValueError("Supabase access token missing subject.")
    if not str(payload.get("email", "")).strip():
        raise ValueError("Supabase access token missing email.")
    return payload

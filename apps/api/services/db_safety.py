"""Control-plane error detection and fallback reads for the managed database."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTROL_PLANE_MARKERS = (
    "control plane request failed",
    "endpoint is disabled",
)


def _sqlstate(error: BaseException) -> str:
    for candidate in (error, getattr(error, "orig", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode", "code"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    return ""


def is_control_plane_error(error: BaseException | None) -> bool:
    """True when the provider rejected the request at the infrastructure level."""
    if error is None:
        return False
    message = str(error).lower()
    if any(marker in message for marker in CONTROL_PLANE_MARKERS):
        return True
    return _sqlstate(error) == "XX000" and "control plane" in message


async def safe_db_query(
    query_fn: Callable[[], Awaitable[T]],
    fallback: T,
    description: str = "database operation",
) -> T:
    """Run a read, returning `fallback` only for control-plane errors.

    Every other error propagates. Only use this for reads whose fallback is
    harmless to show (counts, list pages); never for writes.
    """
    try:
        return await query_fn()
    except Exception as exc:
        if is_control_plane_error(exc):
            logger.warning("%s using fallback due to control plane restrictions: %s", description, exc)
            return fallback
        raise

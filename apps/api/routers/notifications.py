"""Notifications router, including the realtime WebSocket relay."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, context_from_token, get_auth_context, require_admin
from services import notifications as notifications_service
from services import realtime

router = APIRouter()
logger = logging.getLogger(__name__)


class NotificationCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    title_bn: Optional[str] = None
    message: str = Field(min_length=1)
    message_bn: Optional[str] = None
    type: Literal["info", "success", "warning", "error", "urgent"] = "info"
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    category: Optional[str] = None
    category_bn: Optional[str] = None
    recipient_type: Optional[Literal["user", "role", "school", "public"]] = None
    recipient_id: Optional[str] = None
    recipient_role: Optional[str] = None
    action_required: bool = False


class ReadStateRequest(BaseModel):
    is_read: bool = True


class MarkReadRequest(BaseModel):
    ids: Optional[List[str]] = None


def _scope(auth: AuthContext) -> dict:
    return {"user_id": auth.user_id, "role": auth.role, "school_id": auth.school_id}


@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    category: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {
        "notifications": await notifications_service.list_notifications(
            db,
            unread_only=unread_only,
            category=category,
            limit=limit,
            offset=offset,
            **_scope(auth),
        )
    }


@router.post("", status_code=201)
async def create_notification(
    request: NotificationCreateRequest,
    admin: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await notifications_service.create_notification(
        request.model_dump(exclude_none=True),
        db,
        school_id=admin.school_id,
        sender=admin.email or admin.user_id,
    )


@router.get("/stats")
async def notification_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await notifications_service.notification_stats(db, **_scope(auth))


@router.patch("/mark-read")
async def mark_notifications_read(
    request: MarkReadRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    updated = await notifications_service.mark_all_read(db, ids=request.ids, **_scope(auth))
    return {"ok": True, "updated": updated}


@router.patch("/{notification_id}/read")
async def set_notification_read(
    notification_id: str,
    request: Optional[ReadStateRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    is_read = request.is_read if request is not None else True
    return await notifications_service.set_read_state(notification_id, db, is_read=is_read, **_scope(auth))


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await notifications_service.delete_notification(notification_id, db, **_scope(auth))
    return {"ok": True}


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = Query(default="")):
    """Relay realtime notification events the caller is allowed to see."""
    try:
        auth = context_from_token(token)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    channels = realtime.subscription_channels(auth.user_id, auth.role, auth.school_id)
    try:
        async for message in realtime.subscribe(channels):
            await websocket.send_text(message)
    except WebSocketDisconnect:
        return
    except Exception as exc:
        logger.warning("Realtime relay closed for user=%s: %s", auth.user_id, exc)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)

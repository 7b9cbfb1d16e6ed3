"""Best-effort realtime fan-out over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "notifications"


def school_channel(school_id: str) -> str:
    return f"{CHANNEL_PREFIX}:school:{school_id}"


def role_channel(school_id: str, role: str) -> str:
    return f"{CHANNEL_PREFIX}:school:{school_id}:role:{role}"


def user_channel(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}:user:{user_id}"


def public_channel() -> str:
    return f"{CHANNEL_PREFIX}:public"


def subscription_channels(user_id: str, role: str, school_id: str) -> list[str]:
    """Channels a connected client may hear; mirrors `visible_to` for listings."""
    return [
        public_channel(),
        school_channel(school_id),
        role_channel(school_id, role),
        user_channel(user_id),
    ]


def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


async def publish_event(channels: Iterable[str], event: Dict[str, Any]) -> bool:
    """Publish one event to every channel. Failures are logged, never raised.

    Delivery is at-most-once: subscribers that are not connected miss it and
    nothing is replayed.
    """
    targets = [channel for channel in channels if channel]
    if not targets:
        return False
    body = json.dumps(event, default=str, ensure_ascii=False)
    try:
        client = get_redis_client()
        try:
            for channel in targets:
                await client.publish(channel, body)
        finally:
            await client.aclose()
    except Exception as exc:
        logger.warning("Realtime publish skipped for %s: %s", ", ".join(targets), exc)
        return False
    return True


async def subscribe(channels: Iterable[str]) -> AsyncIterator[str]:
    """Yield raw message payloads published to `channels` until cancelled."""
    client = get_redis_client()
    pubsub = client.pubsub()
    try:
        await pubsub.subscribe(*channels)
        async for message in pubsub.listen():
            if message.get("type") == "message":
                yield message.get("data")
    finally:
        await pubsub.aclose()
        await client.aclose()

"""Login sessions stored in Redis."""

import json
import secrets
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis

from liftcoach.core.config import get_settings

settings = get_settings()

SESSION_KEY_PREFIX = "liftcoach:session:"

# Redis client (initialized lazily)
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


def _key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


async def create_session(user_id: str, user_data: dict[str, Any]) -> str:
    """Store a new login session and return its id.

    Args:
        user_id: Id of the authenticated user (UUID string).
        user_data: Extra claims cached alongside the id (email, is_admin).

    Returns:
        Opaque session id for the cookie.
    """
    client = await get_redis()
    session_id = secrets.token_urlsafe(32)
    payload = {
        "user_id": user_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        **user_data,
    }
    await client.setex(_key(session_id), settings.session_ttl_seconds, json.dumps(payload))
    return session_id


async def get_session(session_id: str) -> Optional[dict[str, Any]]:
    """Return session data, or None if unknown or expired."""
    client = await get_redis()
    data = await client.get(_key(session_id))
    if data is None:
        return None
    return json.loads(data)


async def delete_session(session_id: str) -> bool:
    """Drop a session. Returns True if one existed."""
    client = await get_redis()
    return await client.delete(_key(session_id)) > 0

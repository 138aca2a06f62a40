"""Redis client for the session store shared with the auth service"""
import logging
from typing import Optional

import redis

from eventhub.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
redis_client = None

# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60


def get_redis_client():
    """Get or create Redis client (lazy initialization)
    
    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


def set_session(session_id: str, user_id: str) -> None:
    """Store session in Redis"""
    get_redis_client().setex(f"session:{session_id}", SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[str]:
    """Get user_id from session"""
    return get_redis_client().get(f"session:{session_id}") or None


def delete_session(session_id: str) -> None:
    """Delete session from Redis"""
    get_redis_client().delete(f"session:{session_id}")

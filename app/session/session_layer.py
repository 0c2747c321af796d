"""
Session layer - read side of the Redis token store.

Tokens are issued and written by the auth service; the chat backend only
resolves a token to the session payload ({"user_id": ..., ...}).
"""
from typing import Optional, Dict, Any
import logging
import json
import redis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"

_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def init_redis(host: str, port: int, db: int) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=10
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    logger.info("Redis initialized: %s:%s/%s", host, port, db)


def _get_redis_client() -> redis.Redis:
    """Get Redis client. Raises if not initialized."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """Get user data from Redis session if token exists."""
    client = _get_redis_client()
    data = client.get(f"{SESSION_KEY_PREFIX}{token}")
    if not data:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed session payload")
        return None


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract bearer token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]

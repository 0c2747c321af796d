"""
Session Middleware - resolves the caller's token to a Redis session.
"""
import logging
from typing import Callable

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.session import extract_token, get_session

logger = logging.getLogger(__name__)


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads session from Redis based on Authorization or x-auth-token header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.session = {}
        request.state.token = None

        token = extract_token(request.headers.get("authorization"))
        if not token:
            token = request.headers.get("x-auth-token") or None

        if token:
            request.state.token = token
            try:
                user_data = get_session(token)
            except (RuntimeError, redis.RedisError) as e:
                # Redis unavailable; the route dependency reports the expired session
                logger.warning("Session lookup unavailable: %s", e)
                user_data = None
            if user_data:
                request.state.session = user_data

        return await call_next(request)

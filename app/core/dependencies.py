"""
FastAPI dependencies for route protection.
"""
import uuid
from typing import Any, Dict

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.exceptions import NotAuthenticated, SessionExpired

# auto_error=False: the legacy x-auth-token header is accepted by the middleware too
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Token issued by the auth service",
    auto_error=False,
)


async def validate_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """
    Validates the session loaded by SessionMiddleware.

    Returns:
        Session dict with at least user_id.

    Raises:
        NotAuthenticated: No token provided
        SessionExpired: Token not found in Redis
    """
    if not request.state.token:
        raise NotAuthenticated()

    if not request.state.session:
        raise SessionExpired()

    return request.state.session


def current_user_id(current_user: Dict[str, Any]) -> uuid.UUID:
    try:
        return uuid.UUID(str(current_user["user_id"]))
    except (KeyError, ValueError) as e:
        raise SessionExpired(message="Session has no valid user id.") from e

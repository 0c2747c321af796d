from .session_layer import (
    init_redis,
    get_session,
    extract_token,
)

__all__ = [
    "init_redis",
    "get_session",
    "extract_token",
]

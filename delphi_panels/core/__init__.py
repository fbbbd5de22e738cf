"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    drop_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .dependencies import (
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    get_current_user,
)
from .errors import (
    Conflict,
    DelphiError,
    Internal,
    InvalidArgument,
    NotFound,
    RateLimited,
    ServiceUnavailable,
    Unauthenticated,
    Unauthorized,
)
from .rate_limit import FixedWindowRateLimiter, get_notification_rate_limiter
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "drop_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "CurrentUserDep",
    "SessionDep",
    # Errors
    "DelphiError",
    "Unauthenticated",
    "Unauthorized",
    "InvalidArgument",
    "NotFound",
    "Conflict",
    "RateLimited",
    "ServiceUnavailable",
    "Internal",
    # Rate limiting
    "FixedWindowRateLimiter",
    "get_notification_rate_limiter",
    # Security
    "create_access_token",
    "decode_token",
]

"""FastAPI dependencies for authentication and database access."""

import logging
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User, utcnow
from .config import get_settings
from .database import get_session
from .errors import Unauthenticated
from .security import FirebaseTokenPayload, decode_firebase_token, decode_token

logger = logging.getLogger(__name__)
settings = get_settings()

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_or_create_firebase_user(
    session: AsyncSession,
    firebase_payload: FirebaseTokenPayload,
) -> User:
    """Get or create a user from Firebase token payload."""
    user = await session.get(User, firebase_payload.uid)

    if user:
        if firebase_payload.email and user.email != firebase_payload.email:
            user.email = firebase_payload.email
        if firebase_payload.name and user.display_name != firebase_payload.name:
            user.display_name = firebase_payload.name
        if firebase_payload.picture and user.photo_url != firebase_payload.picture:
            user.photo_url = firebase_payload.picture
        user.last_login_at = utcnow()
        await session.flush()
        return user

    logger.info(f"Creating new Firebase user: uid={firebase_payload.uid}, email={firebase_payload.email}")

    user = User(
        id=firebase_payload.uid,
        email=firebase_payload.email,
        display_name=firebase_payload.name,
        photo_url=firebase_payload.picture,
        auth_provider="firebase",
        last_login_at=utcnow(),
    )
    session.add(user)
    await session.flush()
    return user


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(self, user: User):
        self.user = user

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def email(self) -> str | None:
        return self.user.email

    @property
    def name(self) -> str:
        return self.user.name


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user.

    Validates a Firebase ID token when Firebase is configured, falling back
    to a legacy HS256 access token.
    """
    if not credentials:
        raise Unauthenticated("Not authenticated")

    token = credentials.credentials

    if settings.firebase_enabled:
        firebase_payload = decode_firebase_token(token)
        if firebase_payload:
            user = await get_or_create_firebase_user(session, firebase_payload)
            return CurrentUser(user=user)

    payload = decode_token(token)
    if not payload:
        raise Unauthenticated("Invalid or expired token")

    if payload.type != "access":
        raise Unauthenticated("Invalid token type")

    user = await session.get(User, payload.sub)
    if not user:
        raise Unauthenticated("User not found")

    return CurrentUser(user=user)


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]

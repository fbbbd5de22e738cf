"""Security utilities: Firebase ID token verification and legacy JWTs."""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Firebase Admin SDK (lazy initialization)
_firebase_app = None


def get_firebase_app():
    """Get or initialize Firebase Admin SDK."""
    global _firebase_app

    if not settings.firebase_enabled:
        return None

    if _firebase_app is None:
        try:
            import firebase_admin
            from firebase_admin import credentials

            # The private key may arrive with escaped newlines
            private_key = settings.firebase_private_key
            if private_key:
                private_key = private_key.replace("\\n", "\n")

            cred = credentials.Certificate({
                "type": "service_account",
                "project_id": settings.firebase_project_id,
                "client_email": settings.firebase_client_email,
                "private_key": private_key,
                "token_uri": "https://oauth2.googleapis.com/token",
            })
            _firebase_app = firebase_admin.initialize_app(cred)
            logger.info(f"Firebase Admin SDK initialized for project: {settings.firebase_project_id}")
        except (ValueError, OSError) as e:
            logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
            return None

    return _firebase_app


# JWT Token handling
class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID (Firebase uid)
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    user_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token (legacy HS256)."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


class FirebaseTokenPayload(BaseModel):
    """Firebase JWT token payload."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None
    sign_in_provider: str | None = None
    exp: datetime
    iat: datetime


def decode_firebase_token(token: str) -> FirebaseTokenPayload | None:
    """Decode and validate a Firebase ID token."""
    app = get_firebase_app()

    if not app:
        return None

    try:
        from firebase_admin import auth

        decoded_token = auth.verify_id_token(token, app=app)
        firebase_claims = decoded_token.get("firebase", {})

        return FirebaseTokenPayload(
            uid=decoded_token["uid"],
            email=decoded_token.get("email"),
            email_verified=decoded_token.get("email_verified", False),
            name=decoded_token.get("name"),
            picture=decoded_token.get("picture"),
            sign_in_provider=firebase_claims.get("sign_in_provider"),
            exp=datetime.fromtimestamp(decoded_token["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(decoded_token["iat"], tz=timezone.utc),
        )
    except Exception as e:
        logger.warning(f"Firebase token verification failed: {e}")
        return None

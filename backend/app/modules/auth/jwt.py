"""JWT access token validation.

Tokens are issued by the main family site. This service only validates them;
``create_access_token`` exists for scripts and tests.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from app.core.config import settings

ALGORITHM = "HS256"


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str
    jti: str


def create_token(
    user_id: uuid.UUID,
    token_type: str,
    expires_delta: timedelta,
) -> tuple[str, str]:
    """Create a JWT token.

    Args:
        user_id: User UUID
        token_type: Token type claim, normally "access"
        expires_delta: Token lifetime

    Returns:
        tuple[str, str]: (token, jti)
    """
    jti = str(uuid.uuid4())
    now = datetime.utcnow()

    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
        "jti": jti,
    }

    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)
    return token, jti


def create_access_token(user_id: uuid.UUID, expires_minutes: Optional[int] = None) -> str:
    """Create an access token for a user."""
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    token, _ = create_token(user_id, "access", timedelta(minutes=minutes))
    return token


def decode_token(token: str) -> Optional[TokenPayload]:
    """Decode a JWT token, returning None when the signature or claims are invalid."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        return TokenPayload(
            sub=payload["sub"],
            exp=datetime.utcfromtimestamp(payload["exp"]),
            iat=datetime.utcfromtimestamp(payload["iat"]),
            type=payload["type"],
            jti=payload["jti"],
        )
    except (JWTError, KeyError):
        return None


def validate_token(token: str, expected_type: str = "access") -> Optional[TokenPayload]:
    """Validate a JWT token's signature, type and expiry."""
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.type != expected_type:
        return None

    if payload.exp < datetime.utcnow():
        return None

    return payload


def get_user_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Extract the user ID from a valid access token."""
    payload = validate_token(token, "access")
    if payload is None:
        return None

    try:
        return uuid.UUID(payload.sub)
    except ValueError:
        return None

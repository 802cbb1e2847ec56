"""FastAPI dependencies for caller authentication."""

import hmac
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.modules.auth.jwt import get_user_id_from_token

security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> uuid.UUID:
    """Extract the user ID from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    user_id = get_user_id_from_token(credentials.credentials) if credentials else None
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


def is_valid_cron_secret(authorization: Optional[str], secret: str) -> bool:
    """Check an Authorization header against ``Bearer <secret>`` in constant time.

    An empty configured secret never matches.
    """
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode())


async def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Guard the scheduled sweep endpoints with the shared cron secret."""
    if not is_valid_cron_secret(authorization, settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

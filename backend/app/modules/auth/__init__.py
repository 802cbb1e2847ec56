"""Authentication module."""

from app.modules.auth.dependencies import (
    get_current_user_id,
    is_valid_cron_secret,
    verify_cron_secret,
)
from app.modules.auth.jwt import (
    TokenPayload,
    create_access_token,
    decode_token,
    get_user_id_from_token,
    validate_token,
)

__all__ = [
    "TokenPayload",
    "create_access_token",
    "decode_token",
    "get_current_user_id",
    "get_user_id_from_token",
    "is_valid_cron_secret",
    "validate_token",
    "verify_cron_secret",
]

"""Login token service.

Tokens are HS256 JWTs carrying ``{"userId": ...}`` and an expiry. This is
the demo login path of the service; it establishes identity, it does not try
to be a hardened identity provider.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from app.chat.errors import AuthFailure
from app.config import get_config

logger = logging.getLogger(__name__)


class TokenService:
    """Signs and verifies login tokens."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_days: int = 7):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days

    def issue(self, user_id: Any) -> str:
        """Return a signed token for ``user_id``."""
        payload = {
            "userId": str(user_id),
            "exp": datetime.now(timezone.utc) + timedelta(days=self.expire_days),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> str:
        """Return the user id carried by a valid token.

        Raises:
            AuthFailure: If the token is missing, malformed, expired, or
                         carries no user id.
        """
        if not token:
            raise AuthFailure("missing token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            raise AuthFailure(f"invalid token: {e}") from e

        user_id = payload.get("userId")
        if user_id is None or str(user_id) == "":
            raise AuthFailure("token carries no userId")
        return str(user_id)


def get_token_service() -> TokenService:
    """Build a TokenService from the current config."""
    config = get_config()
    return TokenService(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
        expire_days=config.auth.token_expire_days,
    )

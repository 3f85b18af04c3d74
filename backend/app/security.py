"""
Affirmly Backend — Authenticated Identity & JWT Handling
=========================================================

What:  Bearer-token decoding and the identity value passed to services.
Why:   Services never read a "current user" from request state. Route
       handlers resolve an AuthenticatedUser once and pass it explicitly,
       so every service call states whose data it touches.
How:   HS256 JWTs (python-jose) with the user id in `sub`. Token issuance is
       owned by the accounts service; `create_access_token` exists for
       tooling and tests.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.config import settings
from app.exceptions import AuthenticationError, AuthorizationError


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: uuid.UUID
    email: str
    is_admin: bool = False

    def require_admin(self) -> "AuthenticatedUser":
        if not self.is_admin:
            raise AuthorizationError(
                message="Access denied",
                context={"user_id": str(self.user_id)},
            )
        return self


def create_access_token(
    user_id: uuid.UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": str(user_id), "iat": int(now.timestamp()), "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> uuid.UUID:
    """Return the user id carried by a valid token."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return uuid.UUID(str(payload.get("sub")))
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(message="Token expired")
    except (JWTError, TypeError, ValueError):
        raise AuthenticationError(message="Invalid token")

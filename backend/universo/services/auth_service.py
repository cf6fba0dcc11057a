# @TASK P4-T4.1 - JWT verification for API callers

"""Bearer-token authentication for the access API.

Tokens are issued by the identity service. This module verifies them on
every request and can mint them for local tooling and tests.

Claims:
- **sub**: the user's UUID.
- **email**: used to create the local user on first sight and to attribute
  activity log entries.
- **type**: must be ``access``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from universo.config import Settings, get_settings
from universo.database import get_db
from universo.exceptions import NotAuthenticatedError
from universo.services.user_service import get_or_create_user

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
    *,
    settings: Settings | None = None,
) -> str:
    """Sign ``data`` as an access token.

    ``exp`` defaults to ``JWT_ACCESS_TOKEN_EXPIRE_MINUTES`` from now.
    """
    settings = settings or get_settings()
    lifetime = expires_delta if expires_delta is not None else timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims = {**data, "exp": datetime.now(UTC) + lifetime, "type": ACCESS_TOKEN_TYPE}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, *, settings: Settings | None = None) -> dict:
    """Return the token's claims. Raises ``JWTError`` when the signature or expiry is bad."""
    settings = settings or get_settings()
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def _user_from_claims(claims: dict) -> dict | None:
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    try:
        user_id = uuid.UUID(str(claims["sub"]))
    except KeyError:
        return None
    except ValueError:
        logger.info("Rejected token with non-UUID subject")
        return None
    return {"user_id": user_id, "email": claims.get("email")}


async def get_current_user(
    token: str = Depends(oauth2_scheme),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> dict:
    """Resolve the caller from the bearer token.

    The caller's ``users`` row is created on first use. Returns
    ``{"user_id": UUID, "email": str | None}``.
    """
    try:
        user = _user_from_claims(verify_token(token))
    except JWTError:
        user = None
    if user is None:
        raise NotAuthenticatedError("Could not validate credentials")
    account = await get_or_create_user(db, user["user_id"], user["email"])
    return {"user_id": account.id, "email": user["email"] or account.email}

"""FastAPI auth dependencies: resolve the caller Identity from a bearer JWT."""

import uuid

import sentry_sdk
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealroom.core.database import get_db
from dealroom.core.errors import Unauthenticated
from dealroom.core.security import JWTError, decode_access_token
from dealroom.models.core import User
from dealroom.schemas.auth import Identity

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """
    Verify the HS256 JWT and build the caller Identity.

    ``sub`` carries the user id, ``email`` the verified address. A token with
    only ``sub`` gets its email from the users table; a token with only
    ``email`` identifies an invitee who has no account yet.
    """
    if credentials is None:
        raise Unauthenticated("Authentication required")

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("jwt_verification_failed", error=str(e))
        raise Unauthenticated("Invalid or expired token") from e

    user_id: uuid.UUID | None = None
    sub = payload.get("sub")
    if sub:
        try:
            user_id = uuid.UUID(str(sub))
        except ValueError as e:
            raise Unauthenticated("Token subject is not a user id") from e

    email: str | None = payload.get("email")

    if user_id is not None:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            logger.warning("user_not_found_or_inactive", user_id=str(user_id))
            raise Unauthenticated("User not found or inactive")
        email = email or user.email

    identity = Identity(user_id=user_id, email=email)
    if identity.is_anonymous:
        raise Unauthenticated("Token carries no identity claims")

    if user_id is not None:
        sentry_sdk.set_user({"id": str(user_id)})

    return identity

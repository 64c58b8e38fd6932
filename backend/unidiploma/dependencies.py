import uuid
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unidiploma.auth.service import decode_token
from unidiploma.config import settings
from unidiploma.database import get_db
from unidiploma.documents.pipeline import DiplomaPipeline
from unidiploma.gateway.blobs import StorageBlobStore
from unidiploma.gateway.records import SqlRecordStore
from unidiploma.models.blacklisted_token import BlacklistedToken
from unidiploma.models.enums import UserRole
from unidiploma.models.user import User

logger = structlog.get_logger()
security = HTTPBearer()

STAFF_ROLES = {UserRole.ADMIN, UserRole.UNIVERSITY_STAFF}


async def is_blacklisted(db: AsyncSession, jti: str) -> bool:
    result = await db.execute(select(BlacklistedToken).where(BlacklistedToken.jti == jti))
    return result.scalar_one_or_none() is not None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the bearer access token, return the authenticated user."""
    payload = decode_token(credentials.credentials, "access")
    if payload is None or payload.get("sub") is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    # Tokens without a jti could never be revoked
    jti = payload.get("jti")
    if not jti:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    if await is_blacklisted(db, jti):
        logger.warning("blacklisted_token_used", jti=jti, user_id=payload["sub"])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated.",
        )

    if user.password_changed_at:
        token_iat = payload.get("iat")
        if token_iat:
            # 500ms tolerance for clock skew between token issuance and DB write
            issued_at = datetime.fromtimestamp(token_iat, tz=timezone.utc)
            changed_at = user.password_changed_at
            if changed_at.tzinfo is None:
                changed_at = changed_at.replace(tzinfo=timezone.utc)
            if issued_at < changed_at - timedelta(milliseconds=500):
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Token invalidated by password change",
                )

    return user


async def get_current_staff(
    user: User = Depends(get_current_user),
) -> User:
    """Get current user and verify they belong to the university staff (or are an admin)."""
    if user.role not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="University staff access required",
        )
    return user


async def get_pipeline(db: AsyncSession = Depends(get_db)) -> DiplomaPipeline:
    """Build the document pipeline over the request-scoped session."""
    return DiplomaPipeline(SqlRecordStore(db), StorageBlobStore(), settings)

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unidiploma.auth.service import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    decode_token,
    verify_password_async,
)
from unidiploma.database import get_db
from unidiploma.dependencies import get_current_user, is_blacklisted, security
from unidiploma.models.blacklisted_token import BlacklistedToken
from unidiploma.models.user import User
from unidiploma.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from unidiploma.utils.log_mask import mask_email
from unidiploma.utils.rate_limit import AUTH_RATE_LIMIT, limiter

# Dummy hash for constant-time login failure (no timing oracle on unknown emails)
_DUMMY_HASH = "$2b$12$LJ3m4ys3Lg2UxMHFSKDcOedTqJtFHSfVLO7GRFXlI0Xp9jHQvaFYe"

logger = structlog.get_logger()
router = APIRouter()


def _expiry(payload: dict) -> datetime:
    exp = payload.get("exp")
    return datetime.fromtimestamp(exp, tz=timezone.utc) if exp else datetime.now(timezone.utc)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, response: Response, body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate a staff member, verifier or ministry agent and return a JWT pair."""
    response.headers["Cache-Control"] = "no-store"

    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if not user:
        await verify_password_async(body.password, _DUMMY_HASH)
        logger.info("login_failed", email=mask_email(body.email))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not await verify_password_async(body.password, user.password_hash):
        logger.info("login_failed", email=mask_email(body.email))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been deactivated.",
        )

    logger.info("user_login", user_id=str(user.id), role=str(user.role))
    user_id_str = str(user.id)
    return TokenResponse(
        access_token=create_access_token(user_id_str),
        refresh_token=create_refresh_token(user_id_str),
    )


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def refresh_tokens(request: Request, response: Response, body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new pair. The old refresh token is revoked."""
    response.headers["Cache-Control"] = "no-store"
    payload = decode_refresh_token(body.refresh_token)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    jti = payload.get("jti")
    if not jti or await is_blacklisted(db, jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token revoked",
        )
    db.add(BlacklistedToken(jti=jti, expires_at=_expiry(payload)))
    await db.flush()

    user_id = payload["sub"]
    user = await db.get(User, uuid.UUID(user_id))
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    logger.info("token_refreshed", user_id=user_id)
    return TokenResponse(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout")
async def logout(
    body: LogoutRequest = LogoutRequest(),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    """Revoke the current access token and, if given, the refresh token."""
    payload = decode_token(credentials.credentials, "access")
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    jti = payload.get("jti")
    if not jti:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token does not contain a jti claim",
        )
    if await is_blacklisted(db, jti):
        return {"status": "already_logged_out"}

    db.add(BlacklistedToken(jti=jti, expires_at=_expiry(payload)))
    await db.flush()

    if body.refresh_token:
        refresh_payload = decode_refresh_token(body.refresh_token)
        refresh_jti = refresh_payload.get("jti") if refresh_payload else None
        if refresh_jti and not await is_blacklisted(db, refresh_jti):
            db.add(BlacklistedToken(jti=refresh_jti, expires_at=_expiry(refresh_payload)))
            await db.flush()
            logger.info("refresh_token_blacklisted", jti=refresh_jti)
        elif refresh_payload is None:
            logger.warning("invalid_refresh_token_on_logout")

    logger.info("user_logged_out", jti=jti)
    return {"status": "logged_out"}

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt as _bcrypt
import jwt

from unidiploma.config import settings

JWT_ISSUER = "unidiploma"
_BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password using bcrypt. Synchronous, used by scripts and test fixtures."""
    salt = _bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return _bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return _bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    """Run bcrypt off the event loop (~300ms per check)."""
    return await asyncio.to_thread(verify_password, plain_password, hashed_password)


def _encode(claims: dict, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "exp": now + lifetime,
        "iat": now,
        "iss": JWT_ISSUER,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, token_type: str) -> dict | None:
    """Decode a token of the given type and return its payload, or None if invalid."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            options={"verify_iss": True},
        )
    except jwt.PyJWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def create_access_token(user_id: str) -> str:
    return _encode(
        {"sub": user_id, "type": "access"},
        timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(user_id: str) -> str:
    return _encode(
        {"sub": user_id, "type": "refresh"},
        timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_refresh_token(token: str) -> dict | None:
    """Return the refresh token payload ('sub', 'jti', 'exp'), or None if invalid."""
    return decode_token(token, "refresh")


def create_document_download_token(key: str, expires_in: int) -> str:
    """Signed stand-in for a pre-signed URL when files live on local disk."""
    return _encode({"key": key, "type": "download"}, timedelta(seconds=expires_in))


def decode_document_download_token(token: str) -> str | None:
    """Return the storage key a download token grants, or None if invalid."""
    payload = decode_token(token, "download")
    if payload is None:
        return None
    return payload.get("key")

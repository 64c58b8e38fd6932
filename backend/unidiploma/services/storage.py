import asyncio
import threading
from pathlib import Path

import boto3
import structlog
from botocore.exceptions import ClientError
from fastapi import UploadFile

from unidiploma.config import settings

logger = structlog.get_logger()

# Magic bytes for file type validation
MAGIC_BYTES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG"],
    "application/pdf": [b"%PDF"],
}

DIPLOMA_FOLDER = "diplomas"


class BlobExistsError(Exception):
    """Upload refused: the key is taken and overwrite was not requested."""


class BlobNotFoundError(Exception):
    pass


def _validate_magic_bytes(content: bytes, content_type: str) -> bool:
    """Validate file content matches declared content type via magic bytes."""
    signatures = MAGIC_BYTES.get(content_type, [])
    for sig in signatures:
        if content[:len(sig)] == sig:
            return True
    return False


def _validate_key(key: str) -> None:
    # Keys are server-generated; reject anything that could escape the folder
    if not key or key.startswith("/") or ".." in key.split("/"):
        raise ValueError(f"Invalid storage key '{key}'")


# Cache the S3 client at module level; only creation needs the lock
_s3_client = None
_s3_lock = threading.Lock()


def get_s3_client():
    """Get or create a cached S3-compatible client for R2/S3.

    Thread-safe via double-checked locking. The boto3 low-level client is
    safe for concurrent use once created; only creation needs synchronization.
    """
    global _s3_client
    if _s3_client is None:
        with _s3_lock:
            if _s3_client is None:  # double-check
                kwargs = {
                    "service_name": "s3",
                    "aws_access_key_id": settings.R2_ACCESS_KEY_ID,
                    "aws_secret_access_key": settings.R2_SECRET_ACCESS_KEY,
                }
                if settings.R2_ENDPOINT_URL:
                    kwargs["endpoint_url"] = settings.R2_ENDPOINT_URL
                _s3_client = boto3.client(**kwargs)
    return _s3_client


def _local_path(key: str) -> Path:
    return Path(settings.LOCAL_STORAGE_DIR) / key


async def read_upload(file: UploadFile, allowed_types: set[str], max_size: int) -> bytes:
    """Read an uploaded file in bounded chunks and check its type.

    Raises:
        ValueError: If file type or size is invalid.
    """
    if file.content_type not in allowed_types:
        raise ValueError(f"File type {file.content_type} not allowed.")

    # Early rejection on the declared size, before buffering anything
    if file.size is not None and file.size > max_size:
        raise ValueError(f"File too large. Maximum size is {max_size // (1024 * 1024)} MB.")

    chunk_size = 64 * 1024
    content = bytearray()
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > max_size:
            raise ValueError(f"File too large. Maximum size is {max_size // (1024 * 1024)} MB.")

    content = bytes(content)
    if not _validate_magic_bytes(content, file.content_type):
        raise ValueError(
            f"File content does not match declared type {file.content_type}. "
            "The file may be corrupted or mislabeled."
        )
    return content


async def upload_file_bytes(content: bytes, key: str, content_type: str, overwrite: bool = False) -> str:
    """Store server-generated bytes under ``key`` and return the key.

    Intended for trusted content only (generated PDFs); no magic-byte check.

    Raises:
        BlobExistsError: If ``key`` exists and ``overwrite`` is False.
        ValueError: If content exceeds the size limit or the key is invalid.
    """
    _validate_key(key)
    if len(content) > settings.MAX_GENERATED_FILE_SIZE:
        raise ValueError(
            f"Content too large. Maximum size is {settings.MAX_GENERATED_FILE_SIZE // (1024 * 1024)} MB."
        )

    if not settings.R2_ENDPOINT_URL:
        path = _local_path(key)

        def _write() -> None:
            if path.exists() and not overwrite:
                raise BlobExistsError(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info("file_upload_local", key=key, overwrite=overwrite)
        return key

    client = get_s3_client()
    if not overwrite and await _s3_object_exists(client, key):
        raise BlobExistsError(key)
    await asyncio.to_thread(
        client.put_object,
        Bucket=settings.R2_BUCKET_NAME,
        Key=key,
        Body=content,
        ContentType=content_type,
    )
    logger.info("file_uploaded", key=key, overwrite=overwrite)
    return key


async def _s3_object_exists(client, key: str) -> bool:
    try:
        await asyncio.to_thread(client.head_object, Bucket=settings.R2_BUCKET_NAME, Key=key)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
            return False
        raise
    return True


async def fetch_file_bytes(key: str) -> bytes:
    """Return the stored bytes for ``key``.

    Raises:
        BlobNotFoundError: If nothing is stored under ``key``.
    """
    _validate_key(key)
    if not settings.R2_ENDPOINT_URL:
        path = _local_path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return await asyncio.to_thread(path.read_bytes)

    client = get_s3_client()
    try:
        response = await asyncio.to_thread(client.get_object, Bucket=settings.R2_BUCKET_NAME, Key=key)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
            raise BlobNotFoundError(key) from exc
        raise
    return await asyncio.to_thread(response["Body"].read)


async def generate_presigned_url(key: str, expires_in: int = 900) -> str:
    """Generate a time-limited pre-signed URL for a stored object.

    In development (no R2 endpoint) the URL points at this API's own
    ``/documents/download`` route with a signed download token.
    """
    _validate_key(key)
    if not settings.R2_ENDPOINT_URL:
        from unidiploma.auth.service import create_document_download_token

        token = create_document_download_token(key, expires_in)
        return f"{settings.PUBLIC_API_URL}/documents/download?token={token}"

    client = get_s3_client()
    url = await asyncio.to_thread(
        client.generate_presigned_url,
        "get_object",
        Params={"Bucket": settings.R2_BUCKET_NAME, "Key": key},
        ExpiresIn=expires_in,
    )
    logger.info("presigned_url_generated", key=key, expires_in=expires_in)
    return url


def diploma_key(token: str) -> str:
    return f"{DIPLOMA_FOLDER}/{token}.pdf"


def authenticated_diploma_key(token: str) -> str:
    return f"{DIPLOMA_FOLDER}/{token}-authenticated.pdf"


async def delete_file(key: str) -> None:
    """Remove the object stored under ``key``; a missing object is not an error."""
    _validate_key(key)
    if not settings.R2_ENDPOINT_URL:
        await asyncio.to_thread(_local_path(key).unlink, missing_ok=True)
        logger.info("file_deleted_local", key=key)
        return

    client = get_s3_client()
    await asyncio.to_thread(client.delete_object, Bucket=settings.R2_BUCKET_NAME, Key=key)
    logger.info("file_deleted", key=key)

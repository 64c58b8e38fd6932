from unidiploma.services import storage


class StorageBlobStore:
    """BlobStore backed by the R2/S3 storage service (local directory in development)."""

    content_type = "application/pdf"

    async def upload(self, path: str, content: bytes, overwrite: bool = False) -> str:
        return await storage.upload_file_bytes(content, path, self.content_type, overwrite=overwrite)

    async def fetch(self, path: str) -> bytes:
        return await storage.fetch_file_bytes(path)

    async def signed_url(self, path: str, ttl: int) -> str:
        return await storage.generate_presigned_url(path, expires_in=ttl)

    async def delete(self, path: str) -> None:
        await storage.delete_file(path)

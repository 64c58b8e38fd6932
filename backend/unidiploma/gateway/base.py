"""Contract of the record and blob stores consumed by the document pipeline.

The pipeline only talks to these protocols. Production wires the SQL record
store and the R2/S3 blob store; tests wire in-memory fakes.
"""
import uuid
from typing import Any, Protocol

from unidiploma.models.diploma import Diploma
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student


class RecordStore(Protocol):
    async def get_student(self, student_id: uuid.UUID) -> Student | None: ...

    async def get_signer(self, signer_id: uuid.UUID) -> Signer | None: ...

    async def create_diploma(self, fields: dict[str, Any]) -> Diploma: ...

    async def get_diploma(self, diploma_id: uuid.UUID) -> Diploma | None: ...

    async def get_diploma_by_token(self, token: str) -> Diploma | None: ...

    async def update_diploma(self, diploma_id: uuid.UUID, fields: dict[str, Any]) -> Diploma: ...

    async def mark_authenticated(
        self, diploma_id: uuid.UUID, document_path: str, actor_id: uuid.UUID | None
    ) -> bool:
        """Flip ``is_authentic`` to true and point the record at the authenticated
        file, only if the flag is still false. Returns whether this call flipped it."""
        ...

    async def query_diplomas(self, filters: dict[str, Any]) -> list[Diploma]: ...

    async def delete_diploma(self, diploma_id: uuid.UUID) -> None: ...


class BlobStore(Protocol):
    async def upload(self, path: str, content: bytes, overwrite: bool = False) -> str: ...

    async def fetch(self, path: str) -> bytes: ...

    async def signed_url(self, path: str, ttl: int) -> str: ...

    async def delete(self, path: str) -> None: ...

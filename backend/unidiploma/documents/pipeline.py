"""Diploma document pipeline: issue, verify, authenticate.

``DiplomaPipeline`` is the only layer that turns codec, compositor and
gateway failures into caller-facing outcomes. It never talks to FastAPI or
SQLAlchemy directly: the record and blob stores are passed in, so tests run
it against in-memory fakes.

Ordering:

* ``issue`` uploads the composed PDF before the record is created, so a
  record never points at a missing file.
* ``authenticate`` uploads the authenticated PDF before the flag is flipped,
  so a reader never sees ``is_authentic=True`` next to the plain file.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable

import structlog

from unidiploma.documents import assets as branding
from unidiploma.documents import qr_codec
from unidiploma.documents.compositor import (
    AuthenticationAssets,
    CoverAssets,
    compose_authentication_page,
    compose_cover_page,
)
from unidiploma.documents.exceptions import (
    AlreadyAuthenticatedError,
    CompositionError,
    GatewayError,
    GatewayTimeoutError,
    InputError,
    InvalidTransitionError,
    NotFoundError,
    PipelineError,
)
from unidiploma.gateway.base import BlobStore, RecordStore
from unidiploma.metrics import (
    COMPOSITION_DURATION,
    DIPLOMAS_AUTHENTICATED,
    DIPLOMAS_ISSUED,
    VERIFICATIONS,
)
from unidiploma.models.diploma import Diploma
from unidiploma.models.enums import DiplomaStatus, VerificationStatus
from unidiploma.services.email_service import send_diploma_link_email
from unidiploma.services.storage import (
    BlobExistsError,
    BlobNotFoundError,
    authenticated_diploma_key,
    diploma_key,
)
from unidiploma.utils.diploma_state import diploma_status, require_role, validate_transition
from unidiploma.utils.log_mask import mask_email

logger = structlog.get_logger()

# Only these fields may change once a diploma exists
EDITABLE_FIELDS = frozenset({"title", "issue_date", "issue_place", "academic_year"})


@dataclass
class DiplomaInput:
    title: str
    student_id: uuid.UUID
    signer_id: uuid.UUID
    issue_date: date | None = None
    issue_place: str | None = None
    academic_year: str | None = None


@dataclass
class VerificationResult:
    status: VerificationStatus
    diploma: Diploma | None = None
    reason: qr_codec.DecodeFailure | None = None
    document_url: str | None = None
    token: str | None = None

    @property
    def message(self) -> str | None:
        if self.reason is not None:
            return qr_codec.DECODE_FAILURE_MESSAGES.get(self.reason)
        return None


@dataclass
class LinkDelivery:
    document_url: str
    sent: bool


def _is_pdf(content: bytes) -> bool:
    return qr_codec.PDF_SIGNATURE in content[:1024]


class DiplomaPipeline:
    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        settings,
        mailer: Callable[..., Awaitable[bool]] = send_diploma_link_email,
    ):
        self.records = records
        self.blobs = blobs
        self.settings = settings
        self.mailer = mailer

    # -- helpers ----------------------------------------------------------

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        """Await a gateway call under the gateway timeout.

        Timeouts become ``GatewayTimeoutError`` (retryable); any other store
        failure becomes ``GatewayError``.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.GATEWAY_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            logger.warning("gateway_timeout", operation=operation)
            raise GatewayTimeoutError(f"Timed out during {operation}") from exc
        except PipelineError:
            raise
        except BlobExistsError as exc:
            raise GatewayError(f"A document already exists at {exc}", code="BLOB_EXISTS") from exc
        except BlobNotFoundError as exc:
            raise GatewayError(f"Stored document {exc} is missing", code="BLOB_MISSING") from exc
        except Exception as exc:
            logger.error("gateway_call_failed", operation=operation, error=str(exc))
            raise GatewayError(f"{operation} failed") from exc

    async def _compose(self, page: str, compose: Callable[..., bytes], *args) -> bytes:
        started = time.perf_counter()
        try:
            pdf_bytes = await asyncio.wait_for(
                asyncio.to_thread(compose, *args),
                timeout=self.settings.PDF_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            logger.error("pdf_composition_timeout", page=page)
            raise CompositionError(f"{page} page composition timed out", code="COMPOSITION_TIMEOUT") from exc
        COMPOSITION_DURATION.labels(page=page).observe(time.perf_counter() - started)
        return pdf_bytes

    async def _get_diploma(self, diploma_id: uuid.UUID) -> Diploma:
        diploma = await self._call("get_diploma", self.records.get_diploma(diploma_id))
        if diploma is None:
            raise NotFoundError("Diploma not found")
        return diploma

    # -- issue --------------------------------------------------------------

    async def issue(self, diploma_input: DiplomaInput, source_file: bytes | None, actor) -> Diploma:
        """Compose the cover page, store the PDF, then create the record."""
        require_role(DiplomaStatus.ISSUED, actor.role)
        validate_transition(DiplomaStatus.DRAFT, DiplomaStatus.ISSUED)

        title = (diploma_input.title or "").strip()
        if not title:
            raise InputError("Diploma title is required", code="MISSING_TITLE")
        if source_file is not None and not _is_pdf(source_file):
            raise InputError("The diploma file must be a PDF", code="NOT_A_PDF")

        student = await self._call("get_student", self.records.get_student(diploma_input.student_id))
        if student is None:
            raise InputError("Unknown student", code="UNKNOWN_STUDENT")
        signer = await self._call("get_signer", self.records.get_signer(diploma_input.signer_id))
        if signer is None:
            raise InputError("Unknown signer", code="UNKNOWN_SIGNER")

        token = qr_codec.mint_token()
        qr_png = qr_codec.encode_png(token)
        (logo,) = await branding.load_assets(
            self.settings.INSTITUTION_LOGO, timeout=self.settings.ASSET_FETCH_TIMEOUT_SECONDS
        )
        cover = CoverAssets(
            qr_png=qr_png,
            token=token,
            institution_name=self.settings.INSTITUTION_NAME,
            subtitle=self.settings.INSTITUTION_SUBTITLE,
            signer_name=signer.full_name,
            signer_role=signer.role_label,
            copyright_notice=self.settings.COPYRIGHT_NOTICE,
            logo=logo,
        )
        pdf_bytes = await self._compose("cover", compose_cover_page, source_file, cover)
        if len(pdf_bytes) > self.settings.MAX_GENERATED_FILE_SIZE:
            raise InputError("The diploma file is too large once the cover page is added", code="FILE_TOO_LARGE")

        key = diploma_key(token)
        await self._call("blob_upload", self.blobs.upload(key, pdf_bytes, overwrite=False))

        fields = {
            "title": title,
            "issue_date": diploma_input.issue_date or date.today(),
            "issue_place": (diploma_input.issue_place or "").strip() or self.settings.DEFAULT_ISSUE_PLACE,
            "academic_year": diploma_input.academic_year,
            "student_id": student.id,
            "signer_id": signer.id,
            "qr_token": token,
            "document_path": key,
            "is_authentic": False,
            "issued_by_id": getattr(actor, "id", None),
        }
        try:
            diploma = await self._call("create_diploma", self.records.create_diploma(fields))
        except PipelineError:
            logger.error("diploma_orphaned_blob", key=key)
            raise

        DIPLOMAS_ISSUED.inc()
        logger.info(
            "diploma_issued",
            diploma_id=str(diploma.id),
            student_id=str(student.id),
            with_source=source_file is not None,
            size=len(pdf_bytes),
        )
        return diploma

    # -- verify -------------------------------------------------------------

    async def _decode(self, content: bytes) -> qr_codec.QRDecodeResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(qr_codec.decode_document, content),
                timeout=self.settings.PDF_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("qr_decode_timeout", size=len(content))
            return qr_codec.QRDecodeResult.not_found(qr_codec.DecodeFailure.RENDER_FAILED)

    def _outcome(self, result: VerificationResult) -> VerificationResult:
        VERIFICATIONS.labels(status=result.status.value).inc()
        logger.info(
            "diploma_verified",
            status=result.status.value,
            reason=result.reason.value if result.reason else None,
            diploma_id=str(result.diploma.id) if result.diploma else None,
        )
        return result

    async def verify(self, token: str | None = None, file: bytes | None = None) -> VerificationResult:
        """Look a diploma up from its token or from a scan of its first page.

        Exactly one of ``token`` and ``file`` must be given. A file whose QR
        code cannot be read is a ``not_found`` outcome carrying the decode
        reason; no lookup happens in that case.
        """
        if (token is None) == (file is None):
            raise InputError("Provide either a token or a file", code="TOKEN_OR_FILE")

        if file is not None:
            decoded = await self._decode(file)
            if not decoded.found:
                return self._outcome(
                    VerificationResult(status=VerificationStatus.NOT_FOUND, reason=decoded.reason)
                )
            token = decoded.token

        token = token.strip()
        if not token:
            raise InputError("Token is empty", code="EMPTY_TOKEN")

        diploma = await self._call("get_diploma_by_token", self.records.get_diploma_by_token(token))
        if diploma is None:
            return self._outcome(VerificationResult(status=VerificationStatus.NOT_FOUND, token=token))

        document_url = None
        if diploma.document_path:
            document_url = await self._call(
                "signed_url",
                self.blobs.signed_url(diploma.document_path, self.settings.SIGNED_URL_TTL_SECONDS),
            )
        status = (
            VerificationStatus.AUTHENTIC
            if diploma.is_authentic
            else VerificationStatus.REGISTERED_NOT_AUTHENTICATED
        )
        return self._outcome(
            VerificationResult(status=status, diploma=diploma, document_url=document_url, token=token)
        )

    # -- authenticate -------------------------------------------------------

    async def authenticate(self, diploma_id: uuid.UUID, actor) -> Diploma:
        """Prepend the ministry page and mark the diploma authentic.

        The authenticated PDF is written next to the issued one and always
        composed from the issued one, so two concurrent calls can never stack
        two ministry pages. Only the caller whose conditional update wins
        succeeds; the other gets ``AlreadyAuthenticatedError``.
        """
        require_role(DiplomaStatus.AUTHENTICATED, actor.role)

        diploma = await self._get_diploma(diploma_id)
        current = diploma_status(diploma)
        if current == DiplomaStatus.AUTHENTICATED:
            raise AlreadyAuthenticatedError("Diploma is already authenticated")
        if current == DiplomaStatus.DRAFT:
            raise InvalidTransitionError("Diploma has no document to authenticate", code="NO_DOCUMENT")
        validate_transition(current, DiplomaStatus.AUTHENTICATED)
        # Read while Issued: a concurrent winner may switch the path to its output
        source_path = diploma.document_path

        original = await self._call("blob_fetch", self.blobs.fetch(source_path))
        flag, emblem = await branding.load_assets(
            self.settings.NATIONAL_FLAG,
            self.settings.MINISTRY_EMBLEM,
            timeout=self.settings.ASSET_FETCH_TIMEOUT_SECONDS,
        )
        page = AuthenticationAssets(
            qr_png=qr_codec.encode_png(diploma.qr_token),
            token=diploma.qr_token,
            country_name=self.settings.COUNTRY_NAME,
            ministry_name=self.settings.MINISTRY_NAME,
            officer_name=self.settings.MINISTRY_OFFICER_NAME,
            officer_title=self.settings.MINISTRY_OFFICER_TITLE,
            flag=flag,
            emblem=emblem,
        )
        pdf_bytes = await self._compose("authentication", compose_authentication_page, original, page)
        if len(pdf_bytes) > self.settings.MAX_GENERATED_FILE_SIZE:
            raise CompositionError("Authenticated document exceeds the storage limit", code="FILE_TOO_LARGE")

        key = authenticated_diploma_key(diploma.qr_token)
        await self._call("blob_upload", self.blobs.upload(key, pdf_bytes, overwrite=True))
        flipped = await self._call(
            "mark_authenticated",
            self.records.mark_authenticated(diploma.id, key, getattr(actor, "id", None)),
        )
        if not flipped:
            logger.info("diploma_authentication_lost_race", diploma_id=str(diploma.id))
            raise AlreadyAuthenticatedError("Diploma is already authenticated")

        DIPLOMAS_AUTHENTICATED.inc()
        logger.info("diploma_authenticated", diploma_id=str(diploma.id), size=len(pdf_bytes))
        return await self._get_diploma(diploma.id)

    # -- staff operations ---------------------------------------------------

    async def update_metadata(self, diploma_id: uuid.UUID, changes: dict[str, Any], actor) -> Diploma:
        """Edit title, date, place or academic year. The token and the document are never touched."""
        require_role(DiplomaStatus.ISSUED, actor.role)
        forbidden = set(changes) - EDITABLE_FIELDS
        if forbidden:
            raise InputError(f"Fields cannot be edited: {', '.join(sorted(forbidden))}", code="READ_ONLY_FIELD")
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
            if not changes["title"]:
                raise InputError("Diploma title is required", code="MISSING_TITLE")

        diploma = await self._get_diploma(diploma_id)
        if diploma_status(diploma) == DiplomaStatus.AUTHENTICATED:
            raise AlreadyAuthenticatedError("An authenticated diploma cannot be edited")
        diploma = await self._call("update_diploma", self.records.update_diploma(diploma.id, changes))
        logger.info("diploma_updated", diploma_id=str(diploma.id), fields=sorted(changes))
        return diploma

    async def delete(self, diploma_id: uuid.UUID, actor) -> None:
        require_role(DiplomaStatus.ISSUED, actor.role)
        diploma = await self._get_diploma(diploma_id)
        if diploma_status(diploma) == DiplomaStatus.AUTHENTICATED:
            raise AlreadyAuthenticatedError("An authenticated diploma cannot be deleted")

        await self._call("delete_diploma", self.records.delete_diploma(diploma.id))
        if diploma.document_path:
            await self._call("blob_delete", self.blobs.delete(diploma.document_path))
        logger.info("diploma_deleted", diploma_id=str(diploma.id))

    async def resend_link(self, diploma_id: uuid.UUID, email: str, actor) -> LinkDelivery:
        """Email a long-lived download link of the current document to ``email``."""
        require_role(DiplomaStatus.ISSUED, actor.role)
        if not email or "@" not in email:
            raise InputError("A valid email address is required", code="INVALID_EMAIL")

        diploma = await self._get_diploma(diploma_id)
        if not diploma.document_path:
            raise InvalidTransitionError("Diploma has no document", code="NO_DOCUMENT")

        url = await self._call(
            "signed_url",
            self.blobs.signed_url(diploma.document_path, self.settings.SIGNED_URL_TTL_SECONDS),
        )
        sent = await self.mailer(email, diploma.student.full_name, diploma.title, url)
        logger.info(
            "diploma_link_sent" if sent else "diploma_link_not_sent",
            diploma_id=str(diploma.id),
            email=mask_email(email),
        )
        return LinkDelivery(document_url=url, sent=sent)

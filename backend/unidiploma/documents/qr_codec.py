"""QR token codec: mints verification tokens, renders them as QR images and
reads them back from images or rendered PDF pages.

The decode side never raises on bad input. Every failure comes back as a
``QRDecodeResult`` with ``token=None`` and a ``DecodeFailure`` reason so the
orchestrator can tell "no QR on this page" from "this is not a PDF".
"""
import enum
import io
import uuid
from dataclasses import dataclass

import cv2
import fitz  # PyMuPDF
import numpy as np
import qrcode
import structlog
from PIL import Image
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

logger = structlog.get_logger()

ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    # ~30% recovery: the code is printed, photographed and re-scanned
    "H": ERROR_CORRECT_H,
}

QR_BOX_SIZE = 10
QR_BORDER = 4

# Page render zoom used before scanning; 2.0 = 144 dpi
RENDER_SCALE = 2.0

PDF_SIGNATURE = b"%PDF"
IMAGE_SIGNATURES = (b"\x89PNG", b"\xff\xd8\xff")


class DecodeFailure(str, enum.Enum):
    UNSUPPORTED_FILE = "unsupported_file"
    INVALID_IMAGE = "invalid_image"
    UNREADABLE_PDF = "unreadable_pdf"
    MISSING_PAGE = "missing_page"
    RENDER_FAILED = "render_failed"
    QR_NOT_FOUND = "qr_not_found"


DECODE_FAILURE_MESSAGES = {
    DecodeFailure.UNSUPPORTED_FILE: "Le fichier n'est ni un PDF ni une image (PNG/JPEG).",
    DecodeFailure.INVALID_IMAGE: "L'image fournie est illisible.",
    DecodeFailure.UNREADABLE_PDF: "Erreur lors du chargement du PDF.",
    DecodeFailure.MISSING_PAGE: "Le PDF ne contient pas la page demandée.",
    DecodeFailure.RENDER_FAILED: "Erreur lors du rendu du PDF.",
    DecodeFailure.QR_NOT_FOUND: "Impossible de lire le QR code du fichier.",
}


@dataclass(frozen=True)
class QRDecodeResult:
    token: str | None = None
    reason: DecodeFailure | None = None

    @property
    def found(self) -> bool:
        return self.token is not None

    @property
    def message(self) -> str | None:
        return DECODE_FAILURE_MESSAGES.get(self.reason) if self.reason else None

    @classmethod
    def not_found(cls, reason: DecodeFailure) -> "QRDecodeResult":
        return cls(token=None, reason=reason)


def mint_token() -> str:
    """Return a new verification token (UUID4, drawn from the OS CSPRNG)."""
    return str(uuid.uuid4())


def encode(token: str, error_correction: str = "H") -> Image.Image:
    """Render ``token`` as a QR code image (RGB, white background)."""
    try:
        level = ERROR_CORRECTION_LEVELS[error_correction.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown error correction level '{error_correction}'. Use one of L, M, Q, H."
        )
    qr = qrcode.QRCode(
        version=None,
        error_correction=level,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    return img.get_image().convert("RGB")


def encode_png(token: str, error_correction: str = "H") -> bytes:
    """Same as :func:`encode`, serialized as PNG bytes for embedding."""
    buffer = io.BytesIO()
    encode(token, error_correction).save(buffer, format="PNG")
    return buffer.getvalue()


def _to_grayscale(image) -> np.ndarray | None:
    if isinstance(image, Image.Image):
        return np.asarray(image.convert("L"))
    if isinstance(image, (bytes, bytearray, memoryview)):
        buffer = np.frombuffer(bytes(image), dtype=np.uint8)
        if buffer.size == 0:
            return None
        return cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
    if isinstance(image, np.ndarray):
        if image.ndim == 2:
            return image.astype(np.uint8, copy=False)
        if image.ndim == 3 and image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    return None


def _candidates(gray: np.ndarray):
    yield gray
    # Photos and low-quality renders: retry on a hard black/white version
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    yield binary


def decode(image) -> QRDecodeResult:
    """Scan an image (PIL image, numpy array or PNG/JPEG bytes) for a QR code."""
    try:
        gray = _to_grayscale(image)
    except cv2.error:
        gray = None
    if gray is None or gray.size == 0:
        return QRDecodeResult.not_found(DecodeFailure.INVALID_IMAGE)

    detector = cv2.QRCodeDetector()
    for candidate in _candidates(gray):
        try:
            data, _points, _ = detector.detectAndDecode(candidate)
        except cv2.error as exc:
            logger.debug("qr_detector_error", error=str(exc))
            continue
        if data:
            return QRDecodeResult(token=data)
    return QRDecodeResult.not_found(DecodeFailure.QR_NOT_FOUND)


def decode_from_pdf_page(pdf_bytes: bytes, page_index: int = 0) -> QRDecodeResult:
    """Render one PDF page at ``RENDER_SCALE`` and scan it for a QR code."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        logger.info("qr_pdf_open_failed", error=str(exc))
        return QRDecodeResult.not_found(DecodeFailure.UNREADABLE_PDF)

    try:
        if page_index < 0 or page_index >= doc.page_count:
            return QRDecodeResult.not_found(DecodeFailure.MISSING_PAGE)
        try:
            page = doc.load_page(page_index)
            pix = page.get_pixmap(matrix=fitz.Matrix(RENDER_SCALE, RENDER_SCALE), alpha=False)
            pixels = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
        except Exception as exc:
            logger.info("qr_pdf_render_failed", page_index=page_index, error=str(exc))
            return QRDecodeResult.not_found(DecodeFailure.RENDER_FAILED)
    finally:
        doc.close()

    if pix.n == 1:
        pixels = pixels[:, :, 0]
    return decode(pixels)


def decode_document(content: bytes) -> QRDecodeResult:
    """Decode the token from an uploaded file: first page of a PDF, or an image."""
    if not content:
        return QRDecodeResult.not_found(DecodeFailure.UNSUPPORTED_FILE)
    if PDF_SIGNATURE in content[:1024]:
        return decode_from_pdf_page(content, 0)
    if content.startswith(IMAGE_SIGNATURES):
        return decode(content)
    return QRDecodeResult.not_found(DecodeFailure.UNSUPPORTED_FILE)

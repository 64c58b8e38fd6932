"""QR token codec: minting, rendering and scanning tokens back from images and PDFs."""
import io
import uuid

import fitz  # PyMuPDF
import numpy as np
import pytest
from PIL import Image

from tests.conftest import make_pdf
from unidiploma.documents.qr_codec import (
    DECODE_FAILURE_MESSAGES,
    DecodeFailure,
    QRDecodeResult,
    decode,
    decode_document,
    decode_from_pdf_page,
    encode,
    encode_png,
    mint_token,
)


def _pdf_with_qr(token: str, page_index: int = 0, pages: int = 1) -> bytes:
    doc = fitz.open(stream=make_pdf(pages=pages), filetype="pdf")
    page = doc[page_index]
    page.insert_image(fitz.Rect(200, 300, 400, 500), stream=encode_png(token))
    try:
        return doc.tobytes()
    finally:
        doc.close()


# ============ mint_token ============


def test_mint_token_is_uuid4():
    token = mint_token()
    assert uuid.UUID(token).version == 4
    assert str(uuid.UUID(token)) == token


def test_mint_token_is_unique():
    tokens = {mint_token() for _ in range(500)}
    assert len(tokens) == 500


# ============ encode / decode ============


@pytest.mark.parametrize("level", ["L", "M", "Q", "H", "h"])
def test_encode_decode_every_error_correction_level(level):
    token = mint_token()
    result = decode(encode(token, level))
    assert result.found
    assert result.token == token
    assert result.reason is None


def test_encode_unknown_level_raises():
    with pytest.raises(ValueError, match="Unknown error correction level"):
        encode(mint_token(), "X")


def test_encode_png_is_png():
    png = encode_png(mint_token())
    assert png.startswith(b"\x89PNG")
    assert Image.open(io.BytesIO(png)).mode == "RGB"


def test_decode_png_bytes():
    token = mint_token()
    assert decode(encode_png(token)).token == token


def test_decode_jpeg_bytes():
    """A lossy photo-like copy of the code still scans."""
    token = mint_token()
    buffer = io.BytesIO()
    encode(token).save(buffer, format="JPEG", quality=60)
    assert decode(buffer.getvalue()).token == token


def test_decode_numpy_rgb_array():
    token = mint_token()
    assert decode(np.asarray(encode(token))).token == token


def test_decode_garbage_bytes_is_invalid_image():
    result = decode(b"definitely not an image")
    assert not result.found
    assert result.reason == DecodeFailure.INVALID_IMAGE


def test_decode_empty_bytes_is_invalid_image():
    assert decode(b"").reason == DecodeFailure.INVALID_IMAGE


def test_decode_unsupported_object_is_invalid_image():
    assert decode(12345).reason == DecodeFailure.INVALID_IMAGE


def test_decode_blank_image_is_qr_not_found():
    blank = Image.new("RGB", (400, 400), "white")
    result = decode(blank)
    assert result.token is None
    assert result.reason == DecodeFailure.QR_NOT_FOUND


# ============ PDF pages ============


def test_decode_from_pdf_page_zero():
    token = mint_token()
    assert decode_from_pdf_page(_pdf_with_qr(token)).token == token


def test_decode_from_pdf_other_page():
    token = mint_token()
    pdf = _pdf_with_qr(token, page_index=1, pages=2)
    assert decode_from_pdf_page(pdf, 1).token == token
    assert decode_from_pdf_page(pdf, 0).reason == DecodeFailure.QR_NOT_FOUND


def test_decode_from_pdf_missing_page():
    pdf = make_pdf()
    assert decode_from_pdf_page(pdf, 3).reason == DecodeFailure.MISSING_PAGE
    assert decode_from_pdf_page(pdf, -1).reason == DecodeFailure.MISSING_PAGE


def test_decode_from_unreadable_pdf():
    result = decode_from_pdf_page(b"%PDF-1.7 truncated garbage")
    assert result.reason in (DecodeFailure.UNREADABLE_PDF, DecodeFailure.MISSING_PAGE)
    assert result.token is None


def test_decode_from_pdf_without_qr():
    assert decode_from_pdf_page(make_pdf()).reason == DecodeFailure.QR_NOT_FOUND


# ============ decode_document ============


def test_decode_document_pdf():
    token = mint_token()
    assert decode_document(_pdf_with_qr(token)).token == token


def test_decode_document_image():
    token = mint_token()
    assert decode_document(encode_png(token)).token == token


def test_decode_document_unsupported_file():
    result = decode_document(b"PK\x03\x04 a zip archive")
    assert result.reason == DecodeFailure.UNSUPPORTED_FILE


def test_decode_document_empty():
    assert decode_document(b"").reason == DecodeFailure.UNSUPPORTED_FILE


def test_every_failure_has_a_message():
    for reason in DecodeFailure:
        assert DECODE_FAILURE_MESSAGES[reason]
        assert QRDecodeResult.not_found(reason).message == DECODE_FAILURE_MESSAGES[reason]
    assert QRDecodeResult(token="abc").message is None

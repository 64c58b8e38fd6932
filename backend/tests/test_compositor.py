"""PDF compositor: cover and ministry pages, layout bounds and text fitting."""
import fitz  # PyMuPDF
import pytest

from tests.conftest import make_pdf
from unidiploma.documents.compositor import (
    MIN_FONT_SIZE,
    REGULAR_FONT,
    AuthenticationAssets,
    CoverAssets,
    authentication_layout,
    compose_authentication_page,
    compose_cover_page,
    cover_layout,
    fit_text,
    page_count,
)
from unidiploma.documents.exceptions import CompositionError
from unidiploma.documents.qr_codec import decode_from_pdf_page, encode_png, mint_token

PAPERS = ["a4", "letter", "a5", "a4-l"]


def _cover_assets(token: str, **overrides) -> CoverAssets:
    values = dict(
        qr_png=encode_png(token),
        token=token,
        institution_name="Université de Kinshasa",
        subtitle="Système de vérification sécurisé des diplômes",
        signer_name="Albert Kalonji",
        signer_role="Doyen de la faculté",
        copyright_notice="@Copyright Danisi Kibeye",
        logo=encode_png("logo"),
    )
    values.update(overrides)
    return CoverAssets(**values)


def _auth_assets(token: str, **overrides) -> AuthenticationAssets:
    values = dict(
        qr_png=encode_png(token),
        token=token,
        country_name="République Démocratique du Congo",
        ministry_name="Ministère de l'Enseignement Supérieur et Universitaire",
        officer_name="Mohindo Nzangi",
        officer_title="Ministre de l'Enseignement Supérieur et Universitaire",
        flag=encode_png("flag"),
        emblem=encode_png("emblem"),
    )
    values.update(overrides)
    return AuthenticationAssets(**values)


# ============ fit_text ============


def test_fit_text_keeps_short_text():
    text, size = fit_text("Kinshasa", REGULAR_FONT, 12, 500)
    assert text == "Kinshasa"
    assert size == 12


def test_fit_text_shrinks_font():
    text = "Secrétaire générale académique"
    width = fitz.get_text_length(text, fontname=REGULAR_FONT, fontsize=12)
    fitted, size = fit_text(text, REGULAR_FONT, 12, width * 0.8)
    assert fitted == text
    assert MIN_FONT_SIZE <= size < 12
    assert fitz.get_text_length(fitted, fontname=REGULAR_FONT, fontsize=size) <= width * 0.8


def test_fit_text_ellipsizes_at_floor():
    fitted, size = fit_text("x" * 500, REGULAR_FONT, 12, 100)
    assert size == MIN_FONT_SIZE
    assert fitted.endswith("...")
    assert fitz.get_text_length(fitted, fontname=REGULAR_FONT, fontsize=size) <= 100


# ============ layouts ============


@pytest.mark.parametrize("paper", PAPERS)
def test_cover_layout_stays_on_page(paper):
    rect = fitz.paper_rect(paper)
    layout = cover_layout(rect.width, rect.height, _cover_assets(mint_token()))
    assert layout.overflowing() == []
    assert set(layout.elements()) == {
        "logo", "institution_name", "subtitle", "qr", "token", "copyright", "issued_by",
    }


@pytest.mark.parametrize("paper", PAPERS)
def test_authentication_layout_stays_on_page(paper):
    rect = fitz.paper_rect(paper)
    layout = authentication_layout(rect.width, rect.height, _auth_assets(mint_token()))
    assert layout.overflowing() == []
    assert set(layout.elements()) == {
        "flag", "emblem", "country", "ministry", "qr", "token", "attribution", "officer_title",
    }


def test_cover_layout_without_logo():
    rect = fitz.paper_rect("a4")
    layout = cover_layout(rect.width, rect.height, _cover_assets(mint_token(), logo=None))
    assert "logo" not in layout.images
    assert layout.overflowing() == []


def test_cover_layout_long_names_are_fitted():
    rect = fitz.paper_rect("letter")
    assets = _cover_assets(
        mint_token(),
        institution_name="Université " * 30,
        signer_name="Kalonji " * 20,
    )
    layout = cover_layout(rect.width, rect.height, assets)
    assert layout.overflowing() == []


@pytest.mark.parametrize("paper", PAPERS + ["a5-l", "letter-l"])
def test_cover_elements_do_not_overlap(paper):
    rect = fitz.paper_rect(paper)
    layout = cover_layout(rect.width, rect.height, _cover_assets(mint_token()))
    copyright_box = layout.texts["copyright"].rect
    issued_box = layout.texts["issued_by"].rect
    assert copyright_box.x1 <= issued_box.x0

    # Header, QR block and footer are stacked without touching
    qr = layout.images["qr"]
    assert layout.texts["subtitle"].rect.y1 <= qr.y0
    assert layout.images["logo"].y1 <= layout.texts["institution_name"].rect.y0
    assert layout.texts["token"].rect.y1 <= min(copyright_box.y0, issued_box.y0)


def test_issued_by_attribution():
    assets = _cover_assets(mint_token())
    assert assets.issued_by == "issued by Albert Kalonji (Doyen de la faculté)"


def test_attribution_lines():
    assets = _auth_assets(mint_token())
    assert assets.attribution_lines == (
        "Document authentifié par: Mohindo Nzangi,",
        "Ministre de l'Enseignement Supérieur et Universitaire",
    )


# ============ composition ============


@pytest.mark.parametrize("paper", ["a4", "letter"])
def test_compose_cover_page_prepends_one_page(paper):
    token = mint_token()
    base = make_pdf(paper=paper, pages=2)
    result = compose_cover_page(base, _cover_assets(token))

    assert page_count(result) == 3
    doc = fitz.open(stream=result, filetype="pdf")
    try:
        assert doc[0].rect == fitz.paper_rect(paper)
        assert "Licence (1)" in doc[1].get_text()
        assert token in doc[0].get_text()
    finally:
        doc.close()
    assert decode_from_pdf_page(result, 0).token == token


def test_compose_cover_page_without_base_document():
    token = mint_token()
    result = compose_cover_page(None, _cover_assets(token, logo=None))
    assert page_count(result) == 1
    doc = fitz.open(stream=result, filetype="pdf")
    try:
        assert doc[0].rect == fitz.paper_rect("a4")
    finally:
        doc.close()
    assert decode_from_pdf_page(result, 0).token == token


def test_compose_authentication_page():
    token = mint_token()
    issued = compose_cover_page(make_pdf(), _cover_assets(token))
    result = compose_authentication_page(issued, _auth_assets(token))

    assert page_count(result) == 3
    doc = fitz.open(stream=result, filetype="pdf")
    try:
        text = doc[0].get_text()
        assert "Mohindo Nzangi" in text
        assert "du Congo" in text
    finally:
        doc.close()
    assert decode_from_pdf_page(result, 0).token == token
    # The cover page is kept, and still scans
    assert decode_from_pdf_page(result, 1).token == token


def test_compose_authentication_page_without_images():
    token = mint_token()
    result = compose_authentication_page(make_pdf(), _auth_assets(token, flag=None, emblem=None))
    assert page_count(result) == 2


def test_compose_rejects_unreadable_base():
    with pytest.raises(CompositionError) as exc_info:
        compose_cover_page(b"not a pdf at all", _cover_assets(mint_token()))
    assert exc_info.value.code in ("UNREADABLE_PDF", "COMPOSITION_FAILED")
    assert exc_info.value.status == 500


def test_compose_rejects_encrypted_base():
    doc = fitz.open(stream=make_pdf(), filetype="pdf")
    encrypted = doc.tobytes(encryption=fitz.PDF_ENCRYPT_AES_256, owner_pw="owner", user_pw="user")
    doc.close()
    with pytest.raises(CompositionError) as exc_info:
        compose_cover_page(encrypted, _cover_assets(mint_token()))
    assert exc_info.value.code == "ENCRYPTED_PDF"

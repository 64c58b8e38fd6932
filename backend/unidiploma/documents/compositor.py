"""PDF compositor for diploma documents.

Two passes, both bytes in / bytes out:

* ``compose_cover_page`` puts the university cover page (branding, QR code,
  token, signer attribution) in front of the uploaded diploma.
* ``compose_authentication_page`` puts the ministry authentication page in
  front of an issued diploma.

Geometry lives in ``cover_layout`` / ``authentication_layout``: pure functions
of the page size, so every element position scales with A4, Letter or any
other base document. Drawing only consumes a layout.
"""
from dataclasses import dataclass, field

import fitz  # PyMuPDF
import structlog

from unidiploma.documents.exceptions import CompositionError

logger = structlog.get_logger()

REGULAR_FONT = "helv"
BOLD_FONT = "hebo"
TEXT_COLOR = (0, 0, 0)
MIN_FONT_SIZE = 6.0
DEFAULT_PAPER = "a4"
ELLIPSIS = "..."


@dataclass(frozen=True)
class CoverAssets:
    qr_png: bytes
    token: str
    institution_name: str
    subtitle: str
    signer_name: str
    signer_role: str
    copyright_notice: str
    logo: bytes | None = None

    @property
    def issued_by(self) -> str:
        return f"issued by {self.signer_name} ({self.signer_role})"


@dataclass(frozen=True)
class AuthenticationAssets:
    qr_png: bytes
    token: str
    country_name: str
    ministry_name: str
    officer_name: str
    officer_title: str
    flag: bytes | None = None
    emblem: bytes | None = None

    @property
    def attribution_lines(self) -> tuple[str, str]:
        return (f"Document authentifié par: {self.officer_name},", self.officer_title)


@dataclass(frozen=True)
class TextItem:
    text: str
    origin: fitz.Point  # baseline, left edge
    fontsize: float
    fontname: str

    @property
    def width(self) -> float:
        return fitz.get_text_length(self.text, fontname=self.fontname, fontsize=self.fontsize)

    @property
    def rect(self) -> fitz.Rect:
        # Base-14 Helvetica: ascender ~0.72em, descender ~0.21em
        return fitz.Rect(
            self.origin.x,
            self.origin.y - self.fontsize * 0.75,
            self.origin.x + self.width,
            self.origin.y + self.fontsize * 0.25,
        )


@dataclass
class PageLayout:
    page_rect: fitz.Rect
    images: dict[str, fitz.Rect] = field(default_factory=dict)
    texts: dict[str, TextItem] = field(default_factory=dict)

    def elements(self) -> dict[str, fitz.Rect]:
        boxes = dict(self.images)
        boxes.update({name: item.rect for name, item in self.texts.items()})
        return boxes

    def overflowing(self) -> list[str]:
        """Names of elements that leave the page."""
        return [name for name, rect in self.elements().items() if not self.page_rect.contains(rect)]


def fit_text(text: str, fontname: str, preferred_size: float, max_width: float) -> tuple[str, float]:
    """Shrink the font until ``text`` fits in ``max_width``; ellipsize at the floor size."""
    size = preferred_size
    while size > MIN_FONT_SIZE and fitz.get_text_length(text, fontname=fontname, fontsize=size) > max_width:
        size -= 0.5
    size = max(size, MIN_FONT_SIZE)
    if fitz.get_text_length(text, fontname=fontname, fontsize=size) <= max_width:
        return text, size
    while text and fitz.get_text_length(text + ELLIPSIS, fontname=fontname, fontsize=size) > max_width:
        text = text[:-1]
    return text + ELLIPSIS, size


def _centered(text: str, fontname: str, preferred_size: float, page_width: float, margin: float, baseline: float) -> TextItem:
    text, size = fit_text(text, fontname, preferred_size, page_width - 2 * margin)
    width = fitz.get_text_length(text, fontname=fontname, fontsize=size)
    return TextItem(text, fitz.Point((page_width - width) / 2, baseline), size, fontname)


def cover_layout(width: float, height: float, assets: CoverAssets) -> PageLayout:
    layout = PageLayout(page_rect=fitz.Rect(0, 0, width, height))
    short_side = min(width, height)
    margin = short_side * 0.07
    usable = width - 2 * margin

    # Header band
    cursor = margin
    if assets.logo:
        side = short_side * 0.12
        layout.images["logo"] = fitz.Rect((width - side) / 2, cursor, (width + side) / 2, cursor + side)
        cursor += side + short_side * 0.02
    name = _centered(assets.institution_name, BOLD_FONT, 20, width, margin, cursor + 20)
    layout.texts["institution_name"] = name
    subtitle = _centered(assets.subtitle, REGULAR_FONT, 14, width, margin, name.origin.y + name.fontsize + 8)
    layout.texts["subtitle"] = subtitle

    # Body: QR code centered on the page, token right under it. On short
    # pages the QR slides down (and shrinks) to stay between header and footer.
    gap = short_side * 0.02
    baseline = height - margin
    header_bottom = subtitle.rect.y1 + gap
    footer_top = baseline - 10 * 0.75 - gap
    qr_side = min(short_side * 0.35, footer_top - header_bottom - 12 - 9 * 0.25)
    qr_top = max((height - qr_side) / 2, header_bottom)
    layout.images["qr"] = fitz.Rect((width - qr_side) / 2, qr_top, (width + qr_side) / 2, qr_top + qr_side)
    layout.texts["token"] = _centered(assets.token, REGULAR_FONT, 9, width, margin, qr_top + qr_side + 12)

    # Footer band: copyright left, signer attribution right
    copyright_text, copyright_size = fit_text(assets.copyright_notice, REGULAR_FONT, 10, usable * 0.35)
    layout.texts["copyright"] = TextItem(copyright_text, fitz.Point(margin, baseline), copyright_size, REGULAR_FONT)
    issued_text, issued_size = fit_text(assets.issued_by, REGULAR_FONT, 10, usable * 0.65 - 10)
    issued_width = fitz.get_text_length(issued_text, fontname=REGULAR_FONT, fontsize=issued_size)
    layout.texts["issued_by"] = TextItem(
        issued_text, fitz.Point(width - margin - issued_width, baseline), issued_size, REGULAR_FONT
    )
    return layout


def authentication_layout(width: float, height: float, assets: AuthenticationAssets) -> PageLayout:
    layout = PageLayout(page_rect=fitz.Rect(0, 0, width, height))
    short_side = min(width, height)
    margin = short_side * 0.07

    # Header: flag, then the country / ministry block, left-aligned
    text_left = margin
    if assets.flag:
        side = short_side * 0.085
        layout.images["flag"] = fitz.Rect(margin, margin, margin + side, margin + side)
        text_left = margin + side + 10
    block_right = width - margin
    if assets.emblem:
        side = short_side * 0.085
        layout.images["emblem"] = fitz.Rect(width - margin - side, margin, width - margin, margin + side)
        block_right = width - margin - side - 10
    block_width = block_right - text_left
    country, country_size = fit_text(assets.country_name, BOLD_FONT, 16, block_width)
    layout.texts["country"] = TextItem(country, fitz.Point(text_left, margin + 18), country_size, BOLD_FONT)
    ministry, ministry_size = fit_text(assets.ministry_name, REGULAR_FONT, 14, block_width)
    layout.texts["ministry"] = TextItem(
        ministry, fitz.Point(text_left, margin + 18 + country_size + 6), ministry_size, REGULAR_FONT
    )

    # Body: QR code centered, token under it, attribution block under that
    qr_side = short_side * 0.3
    qr_top = (height - qr_side) / 2
    layout.images["qr"] = fitz.Rect((width - qr_side) / 2, qr_top, (width + qr_side) / 2, qr_top + qr_side)
    token = _centered(assets.token, REGULAR_FONT, 9, width, margin, qr_top + qr_side + 12)
    layout.texts["token"] = token
    first, second = assets.attribution_lines
    line1 = _centered(first, BOLD_FONT, 16, width, margin, token.origin.y + 36)
    layout.texts["attribution"] = line1
    layout.texts["officer_title"] = _centered(second, REGULAR_FONT, 14, width, margin, line1.origin.y + line1.fontsize + 8)
    return layout


def _open(pdf_bytes: bytes | None) -> fitz.Document:
    if pdf_bytes is None:
        return fitz.open()
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise CompositionError("Base document is not a readable PDF", code="UNREADABLE_PDF") from exc
    if doc.needs_pass:
        doc.close()
        raise CompositionError("Base document is password protected", code="ENCRYPTED_PDF")
    return doc


def _draw(page: fitz.Page, layout: PageLayout, images: dict[str, bytes | None]) -> None:
    for name, rect in layout.images.items():
        page.insert_image(rect, stream=images[name], keep_proportion=True)
    for item in layout.texts.values():
        page.insert_text(item.origin, item.text, fontsize=item.fontsize, fontname=item.fontname, color=TEXT_COLOR)


def _prepend_page(base_pdf: bytes | None, build_layout, assets, images: dict[str, bytes | None]) -> bytes:
    doc = _open(base_pdf)
    try:
        if doc.page_count:
            size = doc[0].rect
        else:
            size = fitz.paper_rect(DEFAULT_PAPER)
        page = doc.new_page(pno=0, width=size.width, height=size.height)
        layout = build_layout(size.width, size.height, assets)
        _draw(page, layout, images)
        return doc.tobytes(garbage=3, deflate=True)
    except CompositionError:
        raise
    except Exception as exc:
        raise CompositionError(f"PDF composition failed: {exc}") from exc
    finally:
        doc.close()


def compose_cover_page(base_pdf: bytes | None, assets: CoverAssets) -> bytes:
    """Insert the university cover page as page 0 (or as the only page when ``base_pdf`` is None)."""
    pdf_bytes = _prepend_page(
        base_pdf, cover_layout, assets, {"logo": assets.logo, "qr": assets.qr_png}
    )
    logger.debug("cover_page_composed", size=len(pdf_bytes))
    return pdf_bytes


def compose_authentication_page(base_pdf: bytes, assets: AuthenticationAssets) -> bytes:
    """Prepend the ministry authentication page.

    Not idempotent: a second call stacks a second page. Callers check the
    diploma state first.
    """
    pdf_bytes = _prepend_page(
        base_pdf,
        authentication_layout,
        assets,
        {"flag": assets.flag, "emblem": assets.emblem, "qr": assets.qr_png},
    )
    logger.debug("authentication_page_composed", size=len(pdf_bytes))
    return pdf_bytes


def page_count(pdf_bytes: bytes) -> int:
    doc = _open(pdf_bytes)
    try:
        return doc.page_count
    finally:
        doc.close()

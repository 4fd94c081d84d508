import io
import logging
from dataclasses import dataclass
from pathlib import Path

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from pdf_engine import PageBox, Rect

logger = logging.getLogger(__name__)

FALLBACK_FONT = "Courier"
LINE_SPACING = 1.2

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}


@dataclass(frozen=True)
class OverlayEntry:
    """Text to draw on a blank page where a field widget used to be."""

    page_number: int
    rect: Rect
    text: str
    font_size: float


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str, fallback_font: str = FALLBACK_FONT) -> str:
    if _font_is_available(font_name):
        return font_name

    # Try case/spacing-insensitive match against registered fonts.
    normalized = _normalize_font_name(font_name)
    for candidate in list(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and _font_is_available(candidate):
            return candidate

    logger.warning("Font '%s' is unavailable. Falling back to '%s'.", font_name, fallback_font)
    return fallback_font


def register_fonts_from_directory(fonts_dir: Path) -> dict[str, str]:
    """Register every .ttf/.otf file in ``fonts_dir`` under its file stem.

    Returns a dict mapping font names to file paths.
    """
    font_map: dict[str, str] = {}
    if not fonts_dir.is_dir():
        return font_map

    for pattern in ("*.ttf", "*.otf"):
        for font_file in sorted(fonts_dir.glob(pattern)):
            font_name = font_file.stem
            try:
                pdfmetrics.registerFont(TTFont(font_name, str(font_file)))
            except Exception as exc:
                logger.warning("Failed to register %s: %s", font_file.name, exc)
                continue
            font_map[font_name] = str(font_file)
            logger.info("Registered font: %s", font_name)
    return font_map


def draw_entry(c: canvas.Canvas, entry: OverlayEntry, box: PageBox, font_name: str) -> None:
    """Draw one entry with its first line's top at the rectangle's top edge."""
    c.setFont(font_name, entry.font_size)
    x = entry.rect.left - box.left
    top = entry.rect.top - box.bottom
    baseline = top - pdfmetrics.getAscent(font_name, entry.font_size)
    lines = entry.text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    for i, line in enumerate(lines):
        if line:
            c.drawString(x, baseline - i * entry.font_size * LINE_SPACING, line)


def render_text_overlay(
    page_boxes: list[PageBox],
    entries: list[OverlayEntry],
    font_name: str = FALLBACK_FONT,
) -> bytes:
    """Build a field-free PDF with one blank page per box and the entries drawn on it.

    Entries are drawn in list order, so later entries land on top of
    earlier ones sharing the same spot.
    """
    font_name = resolve_font_name(font_name)
    by_page: dict[int, list[OverlayEntry]] = {}
    for entry in entries:
        by_page.setdefault(entry.page_number, []).append(entry)

    packet = io.BytesIO()
    first = page_boxes[0] if page_boxes else None
    c = canvas.Canvas(packet, pagesize=(first.width, first.height) if first else (612.0, 792.0))

    for page_number, box in enumerate(page_boxes, start=1):
        c.setPageSize((box.width, box.height))
        for entry in by_page.get(page_number, []):
            draw_entry(c, entry, box, font_name)
        c.showPage()

    c.save()
    packet.seek(0)
    return packet.read()

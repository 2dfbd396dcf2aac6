from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from pypdf import PdfReader
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen.canvas import Canvas

from lessoncards.errors import DocumentSerializationError, DocumentValidationError
from lessoncards.types import ImageCommand, LineCommand, Page, TextCommand


logger = logging.getLogger(__name__)

PDF_MAGIC = b'%PDF-'
PRODUCER = 'lessoncards'

FONT_LATIN_NAME = 'Helvetica'
FONT_CJK_NAME = 'STSong-Light'
FONT_UNICODE_NAME = 'LC-DejaVuSans'
FONT_UNICODE_CANDIDATES = (
    Path('/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf'),
    Path('/usr/share/fonts/TTF/DejaVuSans.ttf'),
)

# PyMuPDF built-in font names
FITZ_LATIN = 'helv'
FITZ_CJK = 'china-s'


@dataclass(frozen=True)
class PdfFonts:
    latin: str
    cjk: str
    unicode: str


_FONTS_CACHE: PdfFonts | None = None


def _contains_cjk(text: str) -> bool:
    for ch in text:
        if '\u3040' <= ch <= '\u30ff' or '\u3400' <= ch <= '\u9fff' or '\uac00' <= ch <= '\ud7af':
            return True
    return False


def _contains_non_latin1(text: str) -> bool:
    return any(ord(ch) > 0xFF for ch in text)


def _resolve_fonts() -> PdfFonts:
    global _FONTS_CACHE
    if _FONTS_CACHE is not None:
        return _FONTS_CACHE

    cjk_font = FONT_LATIN_NAME
    if FONT_CJK_NAME in pdfmetrics.getRegisteredFontNames():
        cjk_font = FONT_CJK_NAME
    else:
        try:
            pdfmetrics.registerFont(UnicodeCIDFont(FONT_CJK_NAME))
            cjk_font = FONT_CJK_NAME
        except Exception as exc:
            logger.warning('Failed to register CJK PDF font %s: %s', FONT_CJK_NAME, exc)

    # STSong-Light covers pinyin tone marks; a TTF is only preferred for other scripts.
    unicode_font = cjk_font
    for candidate in FONT_UNICODE_CANDIDATES:
        if not candidate.is_file():
            continue
        try:
            pdfmetrics.registerFont(TTFont(FONT_UNICODE_NAME, str(candidate)))
            unicode_font = FONT_UNICODE_NAME
            break
        except Exception as exc:
            logger.info('Skipped PDF font %s from %s: %s', FONT_UNICODE_NAME, candidate, exc)

    _FONTS_CACHE = PdfFonts(latin=FONT_LATIN_NAME, cjk=cjk_font, unicode=unicode_font)
    return _FONTS_CACHE


def _font_for(text: str, fonts: PdfFonts) -> str:
    if _contains_cjk(text):
        return fonts.cjk
    if _contains_non_latin1(text):
        return fonts.unicode
    return fonts.latin


def _rgb(color: tuple[int, int, int]) -> tuple[float, float, float]:
    red, green, blue = (max(0, min(255, int(channel))) / 255.0 for channel in color)
    return red, green, blue


# reportlab


def render_with_reportlab(pages: Sequence[Page], *, title: str) -> bytes:
    if not pages:
        raise DocumentSerializationError('no pages to serialize')

    fonts = _resolve_fonts()
    buffer = io.BytesIO()
    canvas = Canvas(buffer, pagesize=(pages[0].width, pages[0].height), pageCompression=1)
    canvas.setTitle(title)
    canvas.setAuthor(PRODUCER)
    canvas.setCreator(PRODUCER)
    canvas.setProducer(PRODUCER)

    for page in pages:
        canvas.setPageSize((page.width, page.height))
        for command in page.commands:
            _draw_reportlab(canvas, command, page_height=page.height, fonts=fonts)
        canvas.showPage()

    canvas.save()
    return buffer.getvalue()


def _draw_reportlab(canvas: Canvas, command, *, page_height: float, fonts: PdfFonts) -> None:
    if isinstance(command, ImageCommand):
        canvas.drawImage(
            ImageReader(io.BytesIO(command.data)),
            command.x,
            page_height - command.y - command.height,
            width=command.width,
            height=command.height,
            mask='auto',
        )
        return

    if isinstance(command, TextCommand):
        canvas.setFillColorRGB(*_rgb(command.color))
        canvas.setFont(_font_for(command.text, fonts), command.font_size)
        y = page_height - command.y
        if command.align == 'center':
            canvas.drawCentredString(command.x, y, command.text)
        elif command.align == 'right':
            canvas.drawRightString(command.x, y, command.text)
        else:
            canvas.drawString(command.x, y, command.text)
        return

    if isinstance(command, LineCommand):
        canvas.setStrokeColorRGB(*_rgb(command.color))
        canvas.setLineWidth(command.width)
        canvas.line(command.x1, page_height - command.y1, command.x2, page_height - command.y2)
        return

    raise DocumentSerializationError(f'unknown draw command: {type(command).__name__}')


# PyMuPDF


def render_with_pymupdf(pages: Sequence[Page], *, title: str) -> bytes:
    if not pages:
        raise DocumentSerializationError('no pages to serialize')

    import pymupdf as fitz

    doc = fitz.open()
    try:
        for page in pages:
            pdf_page = doc.new_page(width=page.width, height=page.height)
            for command in page.commands:
                _draw_pymupdf(fitz, pdf_page, command)
        doc.set_metadata({'title': title, 'author': PRODUCER, 'creator': PRODUCER, 'producer': PRODUCER})
        return doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()


def _draw_pymupdf(fitz, pdf_page, command) -> None:
    if isinstance(command, ImageCommand):
        rect = fitz.Rect(command.x, command.y, command.x + command.width, command.y + command.height)
        pdf_page.insert_image(rect, stream=command.data, keep_proportion=False)
        return

    if isinstance(command, TextCommand):
        fontname = FITZ_CJK if _contains_cjk(command.text) or _contains_non_latin1(command.text) else FITZ_LATIN
        width = fitz.get_text_length(command.text, fontname=fontname, fontsize=command.font_size)
        x = command.x
        if command.align == 'center':
            x -= width / 2
        elif command.align == 'right':
            x -= width
        pdf_page.insert_text(
            (x, command.y),
            command.text,
            fontname=fontname,
            fontsize=command.font_size,
            color=_rgb(command.color),
        )
        return

    if isinstance(command, LineCommand):
        pdf_page.draw_line(
            (command.x1, command.y1),
            (command.x2, command.y2),
            color=_rgb(command.color),
            width=command.width,
        )
        return

    raise DocumentSerializationError(f'unknown draw command: {type(command).__name__}')


# Validation


def validate_pdf(data: bytes | None, *, expected_pages: int | None = None) -> int:
    """Check the magic header and page count of a serialized document."""
    if not data:
        raise DocumentValidationError('generated PDF buffer is empty')
    if not data.startswith(PDF_MAGIC):
        raise DocumentValidationError(f"invalid PDF header: expected '%PDF', got {data[:4]!r}")

    try:
        page_count = len(PdfReader(io.BytesIO(data)).pages)
    except Exception as exc:
        raise DocumentValidationError(f'PDF could not be parsed: {exc}') from exc

    if page_count == 0:
        raise DocumentValidationError('PDF has no pages')
    if expected_pages is not None and page_count != expected_pages:
        raise DocumentValidationError(f'PDF has {page_count} pages, expected {expected_pages}')
    return page_count


Serializer = Callable[..., bytes]

DEFAULT_SERIALIZERS: tuple[tuple[str, Serializer], ...] = (
    ('reportlab', render_with_reportlab),
    ('pymupdf', render_with_pymupdf),
)


def serialize_pages(
    pages: Sequence[Page],
    *,
    title: str,
    serializers: Sequence[tuple[str, Serializer]] = DEFAULT_SERIALIZERS,
) -> bytes:
    """Serialize with the first engine whose output validates."""
    if not pages:
        raise DocumentSerializationError('no pages to serialize')

    errors: list[str] = []
    validation_failed = False
    for name, serializer in serializers:
        try:
            data = serializer(pages, title=title)
        except Exception as exc:
            logger.warning('PDF serialization with %s failed: %s: %s', name, type(exc).__name__, exc)
            errors.append(f'{name}: {type(exc).__name__}: {exc}')
            continue
        try:
            validate_pdf(data, expected_pages=len(pages))
        except DocumentValidationError as exc:
            logger.warning('PDF from %s failed validation: %s', name, exc)
            errors.append(f'{name}: {exc}')
            validation_failed = True
            continue
        if errors:
            logger.info('PDF serialized with fallback engine %s', name)
        return data

    message = '; '.join(errors) or 'no serializer available'
    if validation_failed:
        raise DocumentValidationError(message)
    raise DocumentSerializationError(message)

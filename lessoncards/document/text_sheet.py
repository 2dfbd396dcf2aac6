from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm

from lessoncards.adapters.glyph_service import (
    FallbackChain,
    GlyphRenderer,
    build_glyph_renderer,
    default_fallback_chain,
)
from lessoncards.config import Settings, get_settings
from lessoncards.document.composer import fit_image, image_dimensions
from lessoncards.document.serializers import serialize_pages
from lessoncards.errors import EmptyDeckError, UnsupportedFormatError
from lessoncards.scheduler import BatchPolicy, Sleep, run_with_policy
from lessoncards.types import ImageCommand, ImageResult, Page, PageKind, RenderMethod, TextCommand


logger = logging.getLogger(__name__)


def _text_page(index: int, image: ImageResult | None, *, margin: float) -> Page:
    width, height = A4
    page = Page(index=index, kind=PageKind.text, width=width, height=height)
    try:
        if image is None:
            raise UnsupportedFormatError('no image rendered')
        original_w, original_h = image_dimensions(image.data)
        fitted_w, fitted_h = fit_image(original_w, original_h, width - margin * 2, height - margin * 2)
        page.draw(ImageCommand(image.data, (width - fitted_w) / 2, (height - fitted_h) / 2, fitted_w, fitted_h))
    except (UnsupportedFormatError, ValueError) as exc:
        logger.warning('Text sheet page %d has no image: %s', index + 1, exc)
        page.degraded = True
        page.draw(TextCommand('Failed to render text', x=width / 2, y=height / 2, font_size=12, color=(200, 0, 0)))
    return page


async def build_text_sheet(
    texts: Sequence[str] | str,
    *,
    settings: Settings | None = None,
    renderer: GlyphRenderer | None = None,
    chain: FallbackChain | None = None,
    sleep: Sleep = asyncio.sleep,
) -> bytes:
    """One portrait page per text, each text rendered as a centered image."""
    settings = settings or get_settings()
    entries = [texts] if isinstance(texts, str) else list(texts)
    entries = [str(text).strip() for text in entries if str(text or '').strip()]
    if not entries:
        raise EmptyDeckError('at least one text is required to build a text sheet')

    renderer = renderer or build_glyph_renderer(settings)
    chain = chain or default_fallback_chain(renderer)

    async def render(text: str) -> ImageResult | None:
        req = renderer.build_request(text, RenderMethod.raster_direct, font_size=settings.word_font_size)
        result = await chain.render(req)
        if isinstance(result, ImageResult):
            return result
        logger.warning('Every text render strategy failed for %r: %s', text, result.reason)
        return None

    tasks = [lambda text=text: render(text) for text in entries]
    policy = BatchPolicy(batch_size=settings.card_batch_size, inter_batch_delay=settings.card_batch_delay_seconds)
    outcomes = await run_with_policy(tasks, policy, sleep=sleep, label='text sheet')

    margin = settings.text_sheet_margin_mm * mm
    pages = [_text_page(outcome.index, outcome.value if outcome.ok else None, margin=margin) for outcome in outcomes]
    return serialize_pages(pages, title=settings.document_title)

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import mm

from lessoncards.adapters.glyph_service import GlyphRenderer
from lessoncards.adapters.image_fetcher import ImageFetcher
from lessoncards.config import Settings, get_settings
from lessoncards.errors import ItemCompositionError, UnsupportedFormatError
from lessoncards.types import (
    ImageCommand,
    ImageResult,
    LineCommand,
    Page,
    PageKind,
    RenderMethod,
    RenderResult,
    TextCommand,
    VocabularyItem,
)


logger = logging.getLogger(__name__)

CARD_PAGE_SIZE = landscape(A4)

MUTED = (120, 120, 120)
HEADING = (60, 60, 60)
ERROR_RED = (255, 0, 0)
SOFT_RED = (200, 100, 100)
LIGHT_GREY = (150, 150, 150)
BLACK = (0, 0, 0)
SUBTLE = (100, 100, 100)


@dataclass
class ComposerConfig:
    page_size: tuple[float, float] = CARD_PAGE_SIZE
    fit_ratio: float = 0.7
    placeholder_markers: tuple[str, ...] = ('placeholder', 'via.placeholder')
    back_methods: tuple[RenderMethod, ...] = (RenderMethod.glyph_b, RenderMethod.raster_direct)
    word_font_size: int = 64
    word_font_weight: str = '800'
    phonetic_font_size: int = 36
    phonetic_font_weight: str = '600'
    min_glyph_bytes: int = 100


@dataclass(frozen=True)
class GlyphColumn:
    label: str
    result: RenderResult


def fit_image(width: float, height: float, max_width: float, max_height: float) -> tuple[float, float]:
    """Largest size inside ``max_width`` x ``max_height`` keeping ``width:height``."""
    if width <= 0 or height <= 0:
        raise ValueError(f'invalid image size {width}x{height}')
    aspect = width / height

    if aspect > 1:
        fitted_w = min(max_width, max_height * aspect)
        fitted_h = fitted_w / aspect
    else:
        fitted_h = min(max_height, max_width / aspect)
        fitted_w = fitted_h * aspect

    if fitted_w > max_width:
        fitted_w = max_width
        fitted_h = fitted_w / aspect
    if fitted_h > max_height:
        fitted_h = max_height
        fitted_w = fitted_h * aspect
    return fitted_w, fitted_h


def image_dimensions(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError) as exc:
        raise UnsupportedFormatError(f'unreadable image data: {exc}') from exc


class PageComposer:
    """Builds the front and back page of every vocabulary card."""

    def __init__(self, cfg: ComposerConfig, *, renderer: GlyphRenderer, fetcher: ImageFetcher):
        self.cfg = cfg
        self.renderer = renderer
        self.fetcher = fetcher

    @property
    def page_width(self) -> float:
        return self.cfg.page_size[0]

    @property
    def page_height(self) -> float:
        return self.cfg.page_size[1]

    def _new_page(self, index: int, kind: PageKind, template: ImageResult) -> Page:
        page = Page(index=index, kind=kind, width=self.page_width, height=self.page_height)
        page.draw(ImageCommand(template.data, 0, 0, self.page_width, self.page_height))
        return page

    def _centered(self, page: Page, text: str, y: float, size: float, color: tuple[int, int, int]) -> None:
        page.draw(TextCommand(text=text, x=self.page_width / 2, y=y, font_size=size, color=color))

    def usable_illustration(self, url: str | None) -> bool:
        token = str(url or '').strip().lower()
        if not token:
            return False
        return not any(marker in token for marker in self.cfg.placeholder_markers)

    # Front

    async def compose_front(self, item: VocabularyItem, template: ImageResult, *, index: int = 0) -> Page:
        page = self._new_page(index, PageKind.front, template)
        mid_y = self.page_height / 2

        if not self.usable_illustration(item.illustration_url):
            self._centered(page, 'No image available', mid_y, 12, MUTED)
            if item.illustration_url:
                self._centered(page, '(Placeholder URL detected)', mid_y + 15 * mm, 8, MUTED)
            return page

        result = await self.fetcher.fetch(item.illustration_url or '')
        try:
            if not isinstance(result, ImageResult):
                raise ItemCompositionError(result.reason)
            self._place_illustration(page, result)
        except (ItemCompositionError, UnsupportedFormatError, ValueError) as exc:
            logger.warning('Failed to add illustration for %r: %s', item.word, exc)
            page.degraded = True
            url = item.illustration_url or ''
            self._centered(page, 'Image failed to load', mid_y, 12, SOFT_RED)
            self._centered(page, f'URL: {url[:50]}...', mid_y + 15 * mm, 10, LIGHT_GREY)
        return page

    def _place_illustration(self, page: Page, image: ImageResult) -> None:
        original_w, original_h = image_dimensions(image.data)
        max_w = self.page_width * self.cfg.fit_ratio
        max_h = self.page_height * self.cfg.fit_ratio
        width, height = fit_image(original_w, original_h, max_w, max_h)
        x = (self.page_width - width) / 2
        y = (self.page_height - height) / 2
        page.draw(ImageCommand(image.data, x, y, width, height))

    # Back

    async def render_columns(self, item: VocabularyItem) -> list[GlyphColumn]:
        word = item.word
        phonetic = item.phonetic
        requests = [
            self.renderer.build_request(
                word,
                method,
                font_size=self.cfg.word_font_size,
                font_weight=self.cfg.word_font_weight,
            )
            for method in self.cfg.back_methods
        ] + [
            self.renderer.build_request(
                phonetic,
                method,
                font_size=self.cfg.phonetic_font_size,
                font_weight=self.cfg.phonetic_font_weight,
            )
            for method in self.cfg.back_methods
        ]
        results = await asyncio.gather(*(self.renderer.render(req) for req in requests))
        return [GlyphColumn(label=req.method.label, result=result) for req, result in zip(requests, results)]

    def _embeddable(self, column: GlyphColumn) -> tuple[ImageResult, tuple[int, int]] | None:
        result = column.result
        if not isinstance(result, ImageResult):
            return None
        if not result.is_raster or len(result.data) < self.cfg.min_glyph_bytes:
            return None
        try:
            return result, image_dimensions(result.data)
        except UnsupportedFormatError:
            return None

    async def compose_back(self, item: VocabularyItem, template: ImageResult, *, index: int = 1) -> Page:
        page = self._new_page(index, PageKind.back, template)
        try:
            columns = await self.render_columns(item)
            drawn = self._draw_glyph_grid(page, columns)
        except Exception as exc:
            logger.warning('Back page pipeline failed for %r: %s: %s', item.word, type(exc).__name__, exc)
            drawn = 0

        if drawn == 0:
            logger.warning('No glyph column rendered for %r; drawing plain text back page', item.word)
            page = self._new_page(index, PageKind.back, template)
            self._draw_plain_back(page, item)
            page.degraded = True
            return page

        if item.translation:
            self._centered(page, item.translation, self.page_height - 30 * mm, 14, BLACK)
        return page

    def _draw_glyph_grid(self, page: Page, columns: list[GlyphColumn]) -> int:
        count = len(columns)
        col_width = self.page_width / count
        start_y = 30 * mm
        box_w = col_width * 0.9
        box_h = 50 * mm
        image_y = start_y + 30 * mm

        drawn = 0
        for position, column in enumerate(columns):
            embeddable = self._embeddable(column)
            if embeddable is None:
                continue
            image, (original_w, original_h) = embeddable
            width, height = fit_image(original_w, original_h, box_w, box_h)
            x = position * col_width + (col_width - width) / 2
            y = image_y + (box_h - height) / 2
            page.draw(ImageCommand(image.data, x, y, width, height))
            page.draw(
                TextCommand(
                    text=column.label,
                    x=position * col_width + col_width / 2,
                    y=image_y + box_h + 15 * mm,
                    font_size=7,
                    color=MUTED,
                )
            )
            drawn += 1

        if drawn == 0:
            return 0

        for boundary in range(1, count):
            x = boundary * col_width
            page.draw(LineCommand(x, start_y + 20 * mm, x, image_y + box_h + 25 * mm, width=0.85))

        half = count // 2
        page.draw(TextCommand('WORD', x=col_width * half / 2, y=start_y + 10 * mm, font_size=10, color=HEADING))
        page.draw(
            TextCommand(
                'PHONETIC',
                x=col_width * (half + (count - half) / 2),
                y=start_y + 10 * mm,
                font_size=10,
                color=HEADING,
            )
        )
        return drawn

    def _draw_plain_back(self, page: Page, item: VocabularyItem) -> None:
        mid_y = self.page_height / 2
        self._centered(page, item.word, mid_y - 20 * mm, 24, BLACK)
        if item.phonetic:
            self._centered(page, item.phonetic, mid_y, 16, SUBTLE)
        if item.translation:
            self._centered(page, item.translation, mid_y + 20 * mm, 14, BLACK)

    # Item boundary

    def diagnostic_page(self, item: VocabularyItem, template: ImageResult, *, index: int, kind: PageKind) -> Page:
        page = self._new_page(index, kind, template)
        page.degraded = True
        mid_y = self.page_height / 2
        self._centered(page, 'Error generating card', mid_y, 24, ERROR_RED)
        self._centered(page, f'Card: {item.word}', mid_y + 20 * mm, 16, BLACK)
        return page

    async def compose_item(
        self,
        item: VocabularyItem,
        *,
        front_template: ImageResult,
        back_template: ImageResult,
        position: int,
    ) -> tuple[Page, Page]:
        front_index = position * 2
        back_index = front_index + 1
        front, back = await asyncio.gather(
            self.compose_front(item, front_template, index=front_index),
            self.compose_back(item, back_template, index=back_index),
            return_exceptions=True,
        )
        if isinstance(front, BaseException):
            if isinstance(front, asyncio.CancelledError):
                raise front
            logger.error('Error processing card %d (%s) front: %s: %s', position + 1, item.word, type(front).__name__, front)
            front = self.diagnostic_page(item, front_template, index=front_index, kind=PageKind.front)
        if isinstance(back, BaseException):
            if isinstance(back, asyncio.CancelledError):
                raise back
            logger.error('Error processing card %d (%s) back: %s: %s', position + 1, item.word, type(back).__name__, back)
            back = self.diagnostic_page(item, back_template, index=back_index, kind=PageKind.back)
        return front, back


def build_page_composer(
    renderer: GlyphRenderer,
    fetcher: ImageFetcher,
    settings: Settings | None = None,
) -> PageComposer:
    settings = settings or get_settings()
    methods = tuple(RenderMethod(name) for name in settings.back_page_method_names())
    return PageComposer(
        ComposerConfig(
            fit_ratio=settings.illustration_fit_ratio,
            placeholder_markers=settings.placeholder_markers(),
            back_methods=methods or (RenderMethod.glyph_b, RenderMethod.raster_direct),
            word_font_size=settings.word_font_size,
            word_font_weight=settings.word_font_weight,
            phonetic_font_size=settings.phonetic_font_size,
            phonetic_font_weight=settings.phonetic_font_weight,
            min_glyph_bytes=settings.glyph_min_bytes,
        ),
        renderer=renderer,
        fetcher=fetcher,
    )

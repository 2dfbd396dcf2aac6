from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol, Sequence

import httpx
from PIL import Image, ImageDraw, ImageFont

from lessoncards.config import Settings, get_settings
from lessoncards.errors import RecoverableError, RenderServiceError, UnsupportedFormatError
from lessoncards.templates import PLACEHOLDER_IMAGE
from lessoncards.types import (
    RASTER_FORMATS,
    ImageResult,
    RenderFailure,
    RenderMethod,
    RenderRequest,
    RenderResult,
    detect_image_format,
    format_from_content_type,
)


logger = logging.getLogger(__name__)

LOCAL_FONT_CANDIDATES = (
    Path('data/NotoSansTC-Regular.ttf'),
    Path('assets/fonts/NotoSansTC-Regular.ttf'),
    Path('/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc'),
    Path('/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf'),
)


@dataclass
class GlyphServiceConfig:
    base_url: str
    endpoint: str
    timeout_seconds: float
    font_family: str = 'NotoSansTC'
    width: int = 800
    height: int = 300
    background_color: str = 'transparent'
    text_color: str = '#000000'
    padding: int = 30
    line_height: float = 1.8
    text_align: str = 'center'
    quality: int = 100
    min_bytes: int = 100


class GlyphRenderer:
    """Client for the external text-to-raster service.

    ``render`` never raises for service problems; every failure comes back as a
    ``RenderFailure`` so the caller can pick another method or leave a cell empty.
    """

    def __init__(self, cfg: GlyphServiceConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.cfg.base_url)

    @property
    def url(self) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/{self.cfg.endpoint.lstrip('/')}"

    def build_request(
        self,
        text: str,
        method: RenderMethod,
        *,
        font_size: int = 48,
        font_weight: str = '700',
    ) -> RenderRequest:
        return RenderRequest(
            text=text,
            method=method,
            font_size=font_size,
            font_weight=font_weight,
            font_family=self.cfg.font_family,
            width=self.cfg.width,
            height=self.cfg.height,
            background_color=self.cfg.background_color,
            text_color=self.cfg.text_color,
        )

    def payload_for(self, req: RenderRequest) -> dict:
        return {
            'text': req.text,
            'method': req.method.value,
            'fontSize': req.font_size,
            'fontFamily': req.font_family,
            'fontWeight': req.font_weight,
            'width': req.width,
            'height': req.height,
            'backgroundColor': req.background_color,
            'textColor': req.text_color,
            'padding': self.cfg.padding,
            'lineHeight': self.cfg.line_height,
            'textAlign': self.cfg.text_align,
            'quality': self.cfg.quality,
        }

    async def render(self, req: RenderRequest) -> RenderResult:
        if not self.configured:
            return RenderFailure('glyph service is not configured', kind=RenderServiceError.__name__)
        try:
            result = await self._render_remote(req)
        except RecoverableError as exc:
            logger.warning('Glyph render failed (method=%s, text=%r): %s', req.method.value, req.text, exc)
            return RenderFailure(str(exc), kind=type(exc).__name__)
        logger.debug(
            'Glyph render ok (method=%s, text=%r, format=%s, bytes=%d)',
            req.method.value,
            req.text,
            result.image_format,
            len(result.data),
        )
        return result

    async def _render_remote(self, req: RenderRequest) -> ImageResult:
        try:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers={'Content-Type': 'application/json'},
                    json=self.payload_for(req),
                )
        except httpx.TimeoutException as exc:
            raise RenderServiceError(f'timeout after {self.cfg.timeout_seconds}s') from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise RenderServiceError(f'{type(exc).__name__}: {exc}') from exc

        content_type = response.headers.get('content-type', '')
        if 'json' in content_type.lower():
            raise RenderServiceError(f'service error ({response.status_code}): {self._error_message(response)}')
        if response.status_code < 200 or response.status_code >= 300:
            raise RenderServiceError(f'service returned status {response.status_code}')

        return classify_image_payload(
            response.content,
            content_type,
            min_bytes=self.cfg.min_bytes,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200] or 'unreadable error body'
        if isinstance(payload, dict):
            for key in ('message', 'error', 'detail'):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return str(payload)[:200]


def classify_image_payload(data: bytes, content_type: str | None, *, min_bytes: int = 0) -> ImageResult:
    if len(data) < max(1, min_bytes):
        raise RenderServiceError(f'payload too small ({len(data)} bytes)')

    declared = format_from_content_type(content_type)
    sniffed = detect_image_format(data)
    # The bytes win over the header: the service labels SVG output as image/png.
    image_format = sniffed or declared
    if image_format == 'svg':
        raise UnsupportedFormatError('vector output cannot be embedded as a raster image')
    if image_format not in RASTER_FORMATS:
        raise UnsupportedFormatError(f'unsupported image format: {image_format or content_type or "unknown"}')
    return ImageResult(data=data, content_type=f'image/{image_format}', image_format=image_format)


class RenderStrategy(Protocol):
    name: str

    async def render(self, req: RenderRequest) -> RenderResult: ...


class ServiceMethodStrategy:
    def __init__(self, renderer: GlyphRenderer, method: RenderMethod):
        self.renderer = renderer
        self.method = method
        self.name = f'service:{method.value}'

    async def render(self, req: RenderRequest) -> RenderResult:
        return await self.renderer.render(req.with_method(self.method))


class LocalRasterStrategy:
    """Draws the text with Pillow when the service is out of options."""

    name = 'local:pillow'

    def __init__(self, font_candidates: Iterable[Path] = LOCAL_FONT_CANDIDATES):
        self.font_candidates = tuple(font_candidates)

    async def render(self, req: RenderRequest) -> RenderResult:
        try:
            data = await asyncio.to_thread(self._draw, req)
        except (OSError, ValueError) as exc:
            logger.warning('Local text raster failed for %r: %s', req.text, exc)
            return RenderFailure(f'local raster failed: {exc}', kind=RenderServiceError.__name__)
        return ImageResult(data=data, content_type='image/png', image_format='png')

    def _load_font(self, size: int):
        for candidate in self.font_candidates:
            if not candidate.exists():
                continue
            try:
                return ImageFont.truetype(str(candidate), size)
            except OSError:
                continue
        return ImageFont.load_default(size=size)

    def _draw(self, req: RenderRequest) -> bytes:
        width = max(1, int(req.width))
        height = max(1, int(req.height))
        canvas = Image.new('RGB', (width, height), (255, 255, 255))
        draw = ImageDraw.Draw(canvas)
        font = self._load_font(max(8, int(req.font_size)))
        left, top, right, bottom = draw.textbbox((0, 0), req.text, font=font)
        x = (width - (right - left)) / 2 - left
        y = (height - (bottom - top)) / 2 - top
        draw.text((x, y), req.text, fill=_parse_color(req.text_color), font=font)
        buffer = io.BytesIO()
        canvas.save(buffer, format='PNG')
        return buffer.getvalue()


def _parse_color(value: str) -> tuple[int, int, int]:
    token = str(value or '').strip().lstrip('#')
    if len(token) == 3:
        token = ''.join(ch * 2 for ch in token)
    if len(token) != 6:
        return (17, 17, 17)
    try:
        return (int(token[0:2], 16), int(token[2:4], 16), int(token[4:6], 16))
    except ValueError:
        return (17, 17, 17)


class FallbackChain:
    """Ordered rendering strategies, tried until one yields a raster image."""

    def __init__(self, strategies: Sequence[RenderStrategy]):
        if not strategies:
            raise ValueError('fallback chain needs at least one strategy')
        self.strategies = list(strategies)

    async def render(self, req: RenderRequest) -> RenderResult:
        reasons: list[str] = []
        for strategy in self.strategies:
            result = await strategy.render(req)
            if isinstance(result, ImageResult):
                if reasons:
                    logger.info('Rendered %r with %s after %d failed attempt(s)', req.text, strategy.name, len(reasons))
                return result
            reasons.append(f'{strategy.name}: {result.reason}')
        return RenderFailure('; '.join(reasons), kind=RenderServiceError.__name__)


def default_fallback_chain(renderer: GlyphRenderer) -> FallbackChain:
    return FallbackChain(
        [
            ServiceMethodStrategy(renderer, RenderMethod.raster_direct),
            ServiceMethodStrategy(renderer, RenderMethod.glyph_b),
            LocalRasterStrategy(),
        ]
    )


async def render_text_image(
    text: str,
    *,
    renderer: GlyphRenderer | None = None,
    chain: FallbackChain | None = None,
    font_size: int = 48,
    font_weight: str = '400',
) -> ImageResult:
    """Render ``text`` to a raster image, degrading to a transparent pixel."""
    renderer = renderer or build_glyph_renderer()
    chain = chain or default_fallback_chain(renderer)
    req = renderer.build_request(text, RenderMethod.raster_direct, font_size=font_size, font_weight=font_weight)
    result = await chain.render(req)
    if isinstance(result, ImageResult):
        return result
    logger.warning('Every text render strategy failed for %r: %s', text, result.reason)
    return PLACEHOLDER_IMAGE


def build_glyph_renderer(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GlyphRenderer:
    settings = settings or get_settings()
    return GlyphRenderer(
        GlyphServiceConfig(
            base_url=settings.glyph_service_base_url,
            endpoint=settings.glyph_service_endpoint,
            timeout_seconds=settings.glyph_service_timeout_seconds,
            font_family=settings.glyph_font_family,
            width=settings.glyph_width,
            height=settings.glyph_height,
            background_color=settings.glyph_background_color,
            text_color=settings.glyph_text_color,
            padding=settings.glyph_padding,
            line_height=settings.glyph_line_height,
            text_align=settings.glyph_text_align,
            quality=settings.glyph_quality,
            min_bytes=settings.glyph_min_bytes,
        ),
        transport=transport,
    )

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

import httpx

from lessoncards.config import Settings, get_settings
from lessoncards.errors import IllustrationFetchError, RecoverableError, UnsupportedFormatError
from lessoncards.scheduler import BatchPolicy, Sleep, run_with_policy
from lessoncards.types import RASTER_FORMATS, ImageResult, RenderFailure, RenderResult, detect_image_format, format_from_content_type


logger = logging.getLogger(__name__)


@dataclass
class ImageFetcherConfig:
    timeout_seconds: float
    default_content_type: str
    batch_policy: BatchPolicy


class ImageFetcher:
    def __init__(self, cfg: ImageFetcherConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self._transport = transport

    async def fetch(self, url: str) -> RenderResult:
        try:
            result = await self._fetch(url)
        except RecoverableError as exc:
            logger.warning('Illustration fetch failed for %s: %s', url, exc)
            return RenderFailure(str(exc), kind=type(exc).__name__)
        return result

    async def fetch_many(self, urls: Sequence[str], *, sleep: Sleep = asyncio.sleep) -> list[RenderResult]:
        tasks = [lambda url=url: self.fetch(url) for url in urls]
        outcomes = await run_with_policy(tasks, self.cfg.batch_policy, sleep=sleep, label='illustration')
        results: list[RenderResult] = []
        for outcome in outcomes:
            if outcome.ok and outcome.value is not None:
                results.append(outcome.value)
            else:
                results.append(RenderFailure(str(outcome.error), kind=IllustrationFetchError.__name__))
        return results

    async def _fetch(self, url: str) -> ImageResult:
        target = str(url or '').strip()
        if not target.lower().startswith(('http://', 'https://')):
            raise IllustrationFetchError(f'not an http(s) url: {target!r}')

        try:
            async with httpx.AsyncClient(
                timeout=self.cfg.timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(target)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IllustrationFetchError(f'status {exc.response.status_code}') from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise IllustrationFetchError(f'{type(exc).__name__}: {exc}') from exc

        data = response.content
        if not data:
            raise IllustrationFetchError('empty response body')

        content_type = response.headers.get('content-type') or self.cfg.default_content_type
        image_format = detect_image_format(data) or format_from_content_type(content_type)
        if image_format not in RASTER_FORMATS:
            raise UnsupportedFormatError(f'cannot embed {image_format or content_type} illustration')
        declared = str(content_type).split(';', 1)[0].strip() or self.cfg.default_content_type
        if format_from_content_type(declared) != image_format:
            declared = f'image/{image_format}'
        return ImageResult(data=data, content_type=declared, image_format=image_format)


def build_image_fetcher(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ImageFetcher:
    settings = settings or get_settings()
    return ImageFetcher(
        ImageFetcherConfig(
            timeout_seconds=settings.illustration_timeout_seconds,
            default_content_type=settings.illustration_default_content_type,
            batch_policy=BatchPolicy(
                batch_size=settings.illustration_batch_size,
                inter_batch_delay=settings.illustration_batch_delay_seconds,
            ),
        ),
        transport=transport,
    )

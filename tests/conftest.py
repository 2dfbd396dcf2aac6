import io
import json
import random

import httpx
import pytest
from PIL import Image

from lessoncards.adapters.glyph_service import GlyphRenderer, GlyphServiceConfig
from lessoncards.adapters.image_fetcher import ImageFetcher, ImageFetcherConfig
from lessoncards.document.composer import ComposerConfig, PageComposer
from lessoncards.scheduler import BatchPolicy
from lessoncards.templates import TemplateConfig, TemplateStore


GLYPH_HOST = 'glyph.test'
IMAGE_HOST = 'images.test'
UNREACHABLE_HOST = 'unreachable.test'


def make_png(width: int, height: int, *, seed: int = 7) -> bytes:
    """Noisy RGB PNG, large enough to pass minimum-size checks."""
    rng = random.Random(seed)
    raw = rng.randbytes(width * height * 3)
    image = Image.frombytes('RGB', (width, height), raw)
    buffer = io.BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


def make_jpeg(width: int, height: int) -> bytes:
    image = Image.new('RGB', (width, height), (30, 120, 200))
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG')
    return buffer.getvalue()


SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg" width="800" height="300"><text x="10" y="40">' + b'x' * 200 + b'</text></svg>'


class FakeServices:
    """Routes mocked HTTP calls for the glyph service and the image host."""

    def __init__(self):
        self.glyph_calls: list[dict] = []
        self.image_calls: list[str] = []
        # Values are (status, content type, body) or an httpx exception class to raise.
        self.glyph_responses: dict = {}
        self.glyph_default = (200, 'image/png', make_png(80, 30))
        self.images: dict = {}

    @staticmethod
    def _respond(reply, request: httpx.Request) -> httpx.Response:
        if isinstance(reply, type) and issubclass(reply, Exception):
            raise reply('simulated failure', request=request)
        status, content_type, body = reply
        headers = {'content-type': content_type} if content_type else {}
        return httpx.Response(status, headers=headers, content=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == UNREACHABLE_HOST:
            raise httpx.ConnectError('connection refused', request=request)
        if host == GLYPH_HOST:
            payload = json.loads(request.content)
            self.glyph_calls.append(payload)
            key = f"{payload['text']}|{payload['method']}"
            reply = self.glyph_responses.get(key) or self.glyph_responses.get(payload['method']) or self.glyph_default
            return self._respond(reply, request)
        if host == IMAGE_HOST:
            self.image_calls.append(request.url.path)
            reply = self.images.get(request.url.path) or (404, 'text/plain', b'not found')
            return self._respond(reply, request)
        raise httpx.ConnectError(f'unexpected host {host}', request=request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def renderer(services) -> GlyphRenderer:
    return GlyphRenderer(
        GlyphServiceConfig(base_url=f'https://{GLYPH_HOST}', endpoint='/api/convert', timeout_seconds=5),
        transport=services.transport,
    )


@pytest.fixture
def fetcher(services) -> ImageFetcher:
    return ImageFetcher(
        ImageFetcherConfig(
            timeout_seconds=5,
            default_content_type='image/jpeg',
            batch_policy=BatchPolicy(batch_size=2, inter_batch_delay=1.0),
        ),
        transport=services.transport,
    )


@pytest.fixture
def composer(renderer, fetcher) -> PageComposer:
    return PageComposer(ComposerConfig(), renderer=renderer, fetcher=fetcher)


@pytest.fixture
def template_files(tmp_path):
    front = tmp_path / 'flashcard-front.png'
    back = tmp_path / 'flashcard-back.png'
    front.write_bytes(make_png(60, 42, seed=1))
    back.write_bytes(make_png(60, 42, seed=2))
    return front, back


@pytest.fixture
def template_store(template_files) -> TemplateStore:
    front, back = template_files
    return TemplateStore(TemplateConfig(front_path=front, back_path=back))


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()

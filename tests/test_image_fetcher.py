"""Tests for illustration fetching."""

import pytest

from lessoncards.types import ImageResult, RenderFailure

from conftest import IMAGE_HOST, UNREACHABLE_HOST, make_jpeg, make_png


@pytest.mark.asyncio
async def test_fetch_returns_data_uri_with_declared_type(fetcher, services):
    services.images['/cat.png'] = (200, 'image/png', make_png(20, 10))
    result = await fetcher.fetch(f'https://{IMAGE_HOST}/cat.png')

    assert isinstance(result, ImageResult)
    assert result.content_type == 'image/png'
    assert result.data_uri.startswith('data:image/png;base64,')


@pytest.mark.asyncio
async def test_missing_content_type_uses_default(fetcher, services):
    services.images['/dog'] = (200, '', make_jpeg(20, 10))
    result = await fetcher.fetch(f'https://{IMAGE_HOST}/dog')

    assert isinstance(result, ImageResult)
    assert result.content_type == 'image/jpeg'


@pytest.mark.asyncio
async def test_non_2xx_is_failure(fetcher):
    result = await fetcher.fetch(f'https://{IMAGE_HOST}/missing.png')

    assert isinstance(result, RenderFailure)
    assert '404' in result.reason
    assert result.kind == 'IllustrationFetchError'


@pytest.mark.asyncio
async def test_unreachable_host_is_failure(fetcher):
    result = await fetcher.fetch(f'https://{UNREACHABLE_HOST}/cat.png')
    assert isinstance(result, RenderFailure)


@pytest.mark.asyncio
async def test_non_image_body_is_failure(fetcher, services):
    services.images['/page.html'] = (200, 'text/html', b'<html><body>hi</body></html>')
    result = await fetcher.fetch(f'https://{IMAGE_HOST}/page.html')

    assert isinstance(result, RenderFailure)
    assert result.kind == 'UnsupportedFormatError'


@pytest.mark.asyncio
async def test_rejects_non_http_url(fetcher, services):
    result = await fetcher.fetch('file:///etc/passwd')

    assert isinstance(result, RenderFailure)
    assert services.image_calls == []


@pytest.mark.asyncio
async def test_fetch_many_keeps_order_and_pauses_between_batches(fetcher, services, fake_sleep):
    services.images['/a.png'] = (200, 'image/png', make_png(8, 8))
    services.images['/c.png'] = (200, 'image/png', make_png(8, 8))
    urls = [f'https://{IMAGE_HOST}/a.png', f'https://{IMAGE_HOST}/b.png', f'https://{IMAGE_HOST}/c.png']

    results = await fetcher.fetch_many(urls, sleep=fake_sleep)

    assert [isinstance(result, ImageResult) for result in results] == [True, False, True]
    assert fake_sleep.calls == [1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize('url', ['http://[::1/cat.png', 'http://exa mple.com/\x00cat.png'])
async def test_malformed_url_is_failure(fetcher, services, url):
    result = await fetcher.fetch(url)

    assert isinstance(result, RenderFailure)
    assert result.kind == 'IllustrationFetchError'
    assert services.image_calls == []

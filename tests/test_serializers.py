"""Tests for PDF serialization engines and validation."""

import io

import pytest
from pypdf import PdfReader

from lessoncards.document.serializers import (
    render_with_pymupdf,
    render_with_reportlab,
    serialize_pages,
    validate_pdf,
)
from lessoncards.errors import DocumentSerializationError, DocumentValidationError
from lessoncards.types import ImageCommand, LineCommand, Page, PageKind, TextCommand

from conftest import make_jpeg, make_png


def _pages(count: int = 2) -> list[Page]:
    pages = []
    for index in range(count):
        page = Page(index=index, kind=PageKind.front if index % 2 == 0 else PageKind.back, width=842, height=595)
        page.draw(ImageCommand(make_png(30, 20), 0, 0, 842, 595))
        page.draw(ImageCommand(make_jpeg(40, 20), 100, 100, 200, 100))
        page.draw(TextCommand('朋友', x=421, y=300, font_size=24))
        page.draw(TextCommand('péngyǒu', x=421, y=330, font_size=16, color=(100, 100, 100)))
        page.draw(TextCommand('bạn bè', x=421, y=360, font_size=14))
        page.draw(TextCommand('No image available', x=20, y=20, font_size=12, align='left'))
        page.draw(LineCommand(210, 100, 210, 400))
        pages.append(page)
    return pages


@pytest.mark.parametrize('serializer', [render_with_reportlab, render_with_pymupdf])
def test_engines_produce_valid_documents(serializer):
    data = serializer(_pages(3), title='Deck')

    assert data.startswith(b'%PDF-')
    assert validate_pdf(data, expected_pages=3) == 3
    assert PdfReader(io.BytesIO(data)).metadata.title == 'Deck'


def test_engines_reject_empty_page_list():
    with pytest.raises(DocumentSerializationError):
        render_with_reportlab([], title='x')


class TestValidatePdf:
    def test_empty_buffer(self):
        with pytest.raises(DocumentValidationError):
            validate_pdf(b'')

    def test_bad_magic_header(self):
        with pytest.raises(DocumentValidationError, match='header'):
            validate_pdf(b'<html>not a pdf</html>')

    def test_truncated_document(self):
        data = render_with_reportlab(_pages(1), title='x')
        with pytest.raises(DocumentValidationError):
            validate_pdf(data[:40], expected_pages=1)

    def test_page_count_mismatch(self):
        data = render_with_reportlab(_pages(2), title='x')
        with pytest.raises(DocumentValidationError, match='expected 4'):
            validate_pdf(data, expected_pages=4)


class TestSerializePages:
    def test_primary_engine_wins(self):
        calls = []

        def primary(pages, *, title):
            calls.append('primary')
            return render_with_reportlab(pages, title=title)

        def secondary(pages, *, title):
            calls.append('secondary')
            return render_with_pymupdf(pages, title=title)

        serialize_pages(_pages(), title='x', serializers=[('primary', primary), ('secondary', secondary)])
        assert calls == ['primary']

    def test_falls_back_when_primary_raises(self):
        def broken(pages, *, title):
            raise RuntimeError('encoder crashed')

        data = serialize_pages(_pages(), title='x', serializers=[('broken', broken), ('pymupdf', render_with_pymupdf)])
        assert validate_pdf(data, expected_pages=2) == 2

    def test_falls_back_when_primary_output_is_invalid(self):
        def garbage(pages, *, title):
            return b'garbage'

        data = serialize_pages(_pages(), title='x', serializers=[('garbage', garbage), ('reportlab', render_with_reportlab)])
        assert data.startswith(b'%PDF-')

    def test_all_engines_raising_is_serialization_error(self):
        def broken(pages, *, title):
            raise RuntimeError('nope')

        with pytest.raises(DocumentSerializationError):
            serialize_pages(_pages(), title='x', serializers=[('a', broken), ('b', broken)])

    def test_invalid_output_everywhere_is_validation_error(self):
        def garbage(pages, *, title):
            return b'%PDX'

        with pytest.raises(DocumentValidationError):
            serialize_pages(_pages(), title='x', serializers=[('a', garbage), ('b', garbage)])

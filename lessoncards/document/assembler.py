from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from lessoncards.adapters.glyph_service import build_glyph_renderer
from lessoncards.adapters.image_fetcher import build_image_fetcher
from lessoncards.config import Settings, get_settings
from lessoncards.document.composer import PageComposer, build_page_composer
from lessoncards.document.serializers import DEFAULT_SERIALIZERS, Serializer, serialize_pages, validate_pdf
from lessoncards.errors import DocumentValidationError, EmptyDeckError
from lessoncards.scheduler import BatchPolicy, Sleep, run_with_policy
from lessoncards.templates import TemplateStore, build_template_store
from lessoncards.types import Page, PageKind, VocabularyItem


logger = logging.getLogger(__name__)


@dataclass
class AssemblerConfig:
    title: str
    batch_policy: BatchPolicy


@dataclass(frozen=True)
class DocumentResult:
    data: bytes
    page_count: int
    degraded_pages: list[int]


def coerce_items(items: Iterable[VocabularyItem | Mapping[str, Any]]) -> list[VocabularyItem]:
    normalized: list[VocabularyItem] = []
    for position, raw in enumerate(items or []):
        if isinstance(raw, VocabularyItem):
            normalized.append(raw)
            continue
        try:
            normalized.append(VocabularyItem.model_validate(raw))
        except ValidationError as exc:
            raise ValueError(f'invalid vocabulary item at position {position}: {exc}') from exc
    if not normalized:
        raise EmptyDeckError('at least one vocabulary item is required to generate a document')
    return normalized


class DocumentAssembler:
    """Builds one flashcard PDF: front, back, front, back, ... in input order.

    An assembler owns the page list of the build in progress, so a single
    instance must not serve two ``assemble`` calls at once.
    """

    def __init__(
        self,
        cfg: AssemblerConfig,
        *,
        templates: TemplateStore,
        composer: PageComposer,
        serializers: Sequence[tuple[str, Serializer]] = DEFAULT_SERIALIZERS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.cfg = cfg
        self.templates = templates
        self.composer = composer
        self.serializers = serializers
        self.sleep = sleep
        self._in_flight = False

    async def compose_pages(self, items: Sequence[VocabularyItem]) -> list[Page]:
        front_template = self.templates.load(PageKind.front)
        back_template = self.templates.load(PageKind.back)

        tasks = [
            lambda item=item, position=position: self.composer.compose_item(
                item,
                front_template=front_template,
                back_template=back_template,
                position=position,
            )
            for position, item in enumerate(items)
        ]
        outcomes = await run_with_policy(tasks, self.cfg.batch_policy, sleep=self.sleep, label='card')

        pages: list[Page] = []
        for outcome in outcomes:
            item = items[outcome.index]
            if outcome.ok and outcome.value is not None:
                front, back = outcome.value
            else:
                logger.error('Card %d (%s) could not be composed: %s', outcome.index + 1, item.word, outcome.error)
                front = self.composer.diagnostic_page(
                    item, front_template, index=outcome.index * 2, kind=PageKind.front
                )
                back = self.composer.diagnostic_page(
                    item, back_template, index=outcome.index * 2 + 1, kind=PageKind.back
                )
            pages.append(front)
            pages.append(back)
        return pages

    async def build(self, items: Iterable[VocabularyItem | Mapping[str, Any]]) -> DocumentResult:
        normalized = coerce_items(items)
        if self._in_flight:
            raise RuntimeError('DocumentAssembler is already building a document; use one instance per call')

        self._in_flight = True
        started = time.monotonic()
        try:
            logger.info('Starting flashcard PDF generation for %d card(s)', len(normalized))
            pages = await self.compose_pages(normalized)
            expected = 2 * len(normalized)
            if len(pages) != expected:
                raise DocumentValidationError(f'composed {len(pages)} pages, expected {expected}')

            data = serialize_pages(pages, title=self.cfg.title, serializers=self.serializers)
            page_count = validate_pdf(data, expected_pages=expected)
        finally:
            self._in_flight = False

        degraded = [page.index for page in pages if page.degraded]
        logger.info(
            'Flashcard PDF generated in %.0fms: %d page(s), %d byte(s), %d degraded page(s)',
            (time.monotonic() - started) * 1000,
            page_count,
            len(data),
            len(degraded),
        )
        return DocumentResult(data=data, page_count=page_count, degraded_pages=degraded)

    async def assemble(self, items: Iterable[VocabularyItem | Mapping[str, Any]]) -> bytes:
        result = await self.build(items)
        return result.data


def build_assembler(settings: Settings | None = None, **overrides: Any) -> DocumentAssembler:
    settings = settings or get_settings()
    renderer = overrides.pop('renderer', None) or build_glyph_renderer(settings)
    fetcher = overrides.pop('fetcher', None) or build_image_fetcher(settings)
    templates = overrides.pop('templates', None) or build_template_store(settings)
    composer = overrides.pop('composer', None) or build_page_composer(renderer, fetcher, settings)
    return DocumentAssembler(
        AssemblerConfig(
            title=settings.document_title,
            batch_policy=BatchPolicy(
                batch_size=settings.card_batch_size,
                inter_batch_delay=settings.card_batch_delay_seconds,
            ),
        ),
        templates=templates,
        composer=composer,
        **overrides,
    )


async def generate_document(
    items: Iterable[VocabularyItem | Mapping[str, Any]],
    *,
    settings: Settings | None = None,
    assembler: DocumentAssembler | None = None,
) -> bytes:
    """Generate the printable flashcard PDF for ``items``.

    Raises ``EmptyDeckError`` for an empty list and another
    ``FatalDocumentError`` when no valid document could be produced.
    """
    normalized = coerce_items(items)
    assembler = assembler or build_assembler(settings)
    return await assembler.assemble(normalized)

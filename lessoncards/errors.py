from __future__ import annotations


class LessonCardsError(Exception):
    """Base class for every error raised by the flashcard generator."""


class RecoverableError(LessonCardsError):
    """A failure confined to one asset, render call or item.

    Recoverable errors never reach the caller of ``generate_document``; they are
    turned into ``RenderFailure`` values, placeholder images or fallback pages.
    """


class TemplateAssetError(RecoverableError):
    pass


class RenderServiceError(RecoverableError):
    pass


class UnsupportedFormatError(RecoverableError):
    pass


class IllustrationFetchError(RecoverableError):
    pass


class ItemCompositionError(RecoverableError):
    pass


class FatalDocumentError(LessonCardsError):
    """The document as a whole could not be produced."""


class EmptyDeckError(FatalDocumentError, ValueError):
    pass


class DocumentSerializationError(FatalDocumentError):
    pass


class DocumentValidationError(FatalDocumentError):
    pass

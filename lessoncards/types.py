from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


RASTER_FORMATS = frozenset({'png', 'jpeg', 'gif'})


class VocabularyItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    word: str
    phonetic: str = Field(default='', validation_alias=AliasChoices('phonetic', 'pinyin'))
    translation: str | None = Field(default=None, validation_alias=AliasChoices('translation', 'vietnamese'))
    illustration_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices('illustration_url', 'illustrationUrl', 'imageUrl', 'image_url'),
    )
    part_of_speech: str | None = Field(
        default=None,
        validation_alias=AliasChoices('part_of_speech', 'partOfSpeech'),
    )

    @field_validator('word', 'phonetic', mode='before')
    @classmethod
    def _strip_required(cls, value: object) -> str:
        return str(value or '').strip()

    @field_validator('word')
    @classmethod
    def _require_word(cls, value: str) -> str:
        if not value:
            raise ValueError('word must not be empty')
        return value

    @field_validator('translation', 'illustration_url', 'part_of_speech', mode='before')
    @classmethod
    def _strip_optional(cls, value: object) -> str | None:
        token = str(value or '').strip()
        return token or None


class RenderMethod(str, Enum):
    glyph_a = 'svg'
    glyph_b = 'text-to-image'
    raster_direct = 'png'

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]


_METHOD_LABELS = {
    RenderMethod.glyph_a: 'SVG',
    RenderMethod.glyph_b: 'Text-to-Image',
    RenderMethod.raster_direct: 'PNG',
}


@dataclass(frozen=True)
class RenderRequest:
    text: str
    method: RenderMethod
    font_size: int = 48
    font_weight: str = '700'
    font_family: str = 'NotoSansTC'
    width: int = 800
    height: int = 300
    background_color: str = 'transparent'
    text_color: str = '#000000'

    def with_method(self, method: RenderMethod) -> RenderRequest:
        return RenderRequest(
            text=self.text,
            method=method,
            font_size=self.font_size,
            font_weight=self.font_weight,
            font_family=self.font_family,
            width=self.width,
            height=self.height,
            background_color=self.background_color,
            text_color=self.text_color,
        )


@dataclass(frozen=True)
class ImageResult:
    data: bytes
    content_type: str
    image_format: str

    @property
    def is_raster(self) -> bool:
        return self.image_format in RASTER_FORMATS

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode('ascii')
        return f'data:{self.content_type};base64,{encoded}'


@dataclass(frozen=True)
class RenderFailure:
    reason: str
    kind: str = 'RenderServiceError'


RenderResult = Union[ImageResult, RenderFailure]


def detect_image_format(data: bytes) -> str | None:
    """Identify an image payload by its leading bytes."""
    if data.startswith(b'\x89PNG\r\n\x1a\n'):
        return 'png'
    if data.startswith(b'\xff\xd8\xff'):
        return 'jpeg'
    if data.startswith(b'GIF87a') or data.startswith(b'GIF89a'):
        return 'gif'
    if data.startswith(b'RIFF') and data[8:12] == b'WEBP':
        return 'webp'
    head = data[:512].lstrip().lower()
    if head.startswith(b'<svg') or (head.startswith(b'<?xml') and b'<svg' in head):
        return 'svg'
    return None


def format_from_content_type(content_type: str | None) -> str | None:
    token = str(content_type or '').split(';', 1)[0].strip().lower()
    if not token.startswith('image/'):
        return None
    subtype = token[len('image/'):]
    if subtype in {'jpg', 'jpeg', 'pjpeg'}:
        return 'jpeg'
    if subtype.startswith('svg'):
        return 'svg'
    return subtype or None


# Page model. Coordinates are PDF points with the origin at the top-left corner.


@dataclass(frozen=True)
class ImageCommand:
    data: bytes
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class TextCommand:
    text: str
    x: float
    y: float
    font_size: float
    color: tuple[int, int, int] = (0, 0, 0)
    align: str = 'center'


@dataclass(frozen=True)
class LineCommand:
    x1: float
    y1: float
    x2: float
    y2: float
    color: tuple[int, int, int] = (180, 180, 180)
    width: float = 0.85


DrawCommand = Union[ImageCommand, TextCommand, LineCommand]


class PageKind(str, Enum):
    front = 'front'
    back = 'back'
    text = 'text'


@dataclass
class Page:
    index: int
    kind: PageKind
    width: float
    height: float
    commands: list[DrawCommand] = field(default_factory=list)
    degraded: bool = False

    def draw(self, command: DrawCommand) -> None:
        self.commands.append(command)

    def texts(self) -> list[str]:
        return [command.text for command in self.commands if isinstance(command, TextCommand)]

    def images(self) -> list[ImageCommand]:
        return [command for command in self.commands if isinstance(command, ImageCommand)]

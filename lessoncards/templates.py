from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path

from .config import Settings, get_settings
from .errors import TemplateAssetError
from .types import ImageResult, PageKind, detect_image_format


logger = logging.getLogger(__name__)

# 1x1 transparent PNG
PLACEHOLDER_PNG = base64.b64decode(
    'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=='
)
PLACEHOLDER_IMAGE = ImageResult(data=PLACEHOLDER_PNG, content_type='image/png', image_format='png')


@dataclass(frozen=True)
class TemplateConfig:
    front_path: Path
    back_path: Path


class TemplateStore:
    """Reads the front/back background rasters.

    A missing or unreadable template is replaced by a transparent pixel so the
    build carries on with plain pages.
    """

    def __init__(self, cfg: TemplateConfig):
        self.cfg = cfg

    def path_for(self, kind: PageKind) -> Path:
        if kind == PageKind.front:
            return self.cfg.front_path
        if kind == PageKind.back:
            return self.cfg.back_path
        raise ValueError(f'no template for page kind: {kind}')

    def load(self, kind: PageKind) -> ImageResult:
        path = self.path_for(kind)
        try:
            return self._read(path)
        except TemplateAssetError as exc:
            logger.warning('Using placeholder for %s template: %s', kind.value, exc)
            return PLACEHOLDER_IMAGE

    def _read(self, path: Path) -> ImageResult:
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise TemplateAssetError(f'cannot read {path}: {exc}') from exc

        image_format = detect_image_format(data)
        if image_format not in {'png', 'jpeg', 'gif'}:
            raise TemplateAssetError(f'{path} is not a raster image (detected {image_format or "unknown"})')
        return ImageResult(data=data, content_type=f'image/{image_format}', image_format=image_format)


def build_template_store(settings: Settings | None = None) -> TemplateStore:
    settings = settings or get_settings()
    return TemplateStore(
        TemplateConfig(
            front_path=settings.template_front_path,
            back_path=settings.template_back_path,
        )
    )

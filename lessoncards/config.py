from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'lessoncards flashcard generator'

    output_dir: Path = Field(default=Path('./data/exports'))

    # External glyph rendering service
    glyph_service_base_url: str = 'https://booking.hoangha.shop'
    glyph_service_endpoint: str = '/api/convert-chinese-text'
    glyph_service_timeout_seconds: float = 30.0
    glyph_font_family: str = 'NotoSansTC'
    glyph_width: int = 800
    glyph_height: int = 300
    glyph_background_color: str = 'transparent'
    glyph_text_color: str = '#000000'
    glyph_padding: int = 30
    glyph_line_height: float = 1.8
    glyph_text_align: str = 'center'
    glyph_quality: int = 100
    glyph_min_bytes: int = 100
    # Comma-separated wire names of the two methods drawn on every back page
    back_page_methods: str = 'text-to-image,png'
    word_font_size: int = 64
    word_font_weight: str = '800'
    phonetic_font_size: int = 36
    phonetic_font_weight: str = '600'

    # Illustration fetches
    illustration_timeout_seconds: float = 20.0
    illustration_default_content_type: str = 'image/jpeg'
    # Comma-separated substrings marking stock placeholder URLs
    illustration_placeholder_markers: str = 'placeholder,via.placeholder'
    illustration_fit_ratio: float = 0.7

    # Templates
    template_front_path: Path = Field(default=Path('assets/templates/flashcard-front.png'))
    template_back_path: Path = Field(default=Path('assets/templates/flashcard-back.png'))

    # Rate limiting
    card_batch_size: int = 3
    card_batch_delay_seconds: float = 0.5
    illustration_batch_size: int = 2
    illustration_batch_delay_seconds: float = 1.0

    # Document
    document_title: str = 'Flashcards'
    text_sheet_margin_mm: float = 20.0

    def back_page_method_names(self) -> list[str]:
        names: list[str] = []
        for item in self.back_page_methods.split(','):
            normalized = item.strip()
            if not normalized:
                continue
            names.append(normalized)
        return names

    def placeholder_markers(self) -> tuple[str, ...]:
        return tuple(
            marker.strip().lower()
            for marker in self.illustration_placeholder_markers.split(',')
            if marker.strip()
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from lessoncards.adapters.glyph_service import render_text_image
from lessoncards.adapters.image_fetcher import build_image_fetcher
from lessoncards.config import get_settings
from lessoncards.document.assembler import build_assembler, coerce_items
from lessoncards.document.serializers import validate_pdf
from lessoncards.document.text_sheet import build_text_sheet
from lessoncards.errors import FatalDocumentError
from lessoncards.storage import default_export_path, load_vocabulary, write_bytes_atomic
from lessoncards.types import ImageResult


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _load_items(path_arg: str):
    path = Path(path_arg).expanduser().resolve()
    if not path.exists() or not path.is_file():
        raise FileNotFoundError(f'Vocabulary file not found: {path}')
    return coerce_items(load_vocabulary(path))


def cmd_generate(args: argparse.Namespace) -> int:
    try:
        items = _load_items(args.input)
    except (OSError, ValueError) as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2

    output = Path(args.output).expanduser() if args.output else default_export_path('Flashcard')
    try:
        result = asyncio.run(build_assembler(get_settings()).build(items))
    except FatalDocumentError as exc:
        _print_json({'status': 'error', 'message': f'Failed to generate flashcard PDF: {exc}'})
        return 2

    write_bytes_atomic(output, result.data)
    _print_json(
        {
            'status': 'ok',
            'output': str(output),
            'cards': len(items),
            'pages': result.page_count,
            'bytes': len(result.data),
            'degraded_pages': result.degraded_pages,
        }
    )
    return 0


def cmd_render_text(args: argparse.Namespace) -> int:
    image = asyncio.run(render_text_image(args.text, font_size=args.font_size))
    output = Path(args.output).expanduser() if args.output else default_export_path('Text', f'.{image.image_format}')
    write_bytes_atomic(output, image.data)
    _print_json(
        {
            'status': 'ok',
            'output': str(output),
            'content_type': image.content_type,
            'bytes': len(image.data),
        }
    )
    return 0


def cmd_text_sheet(args: argparse.Namespace) -> int:
    output = Path(args.output).expanduser() if args.output else default_export_path('TextSheet')
    try:
        data = asyncio.run(build_text_sheet(args.text))
    except FatalDocumentError as exc:
        _print_json({'status': 'error', 'message': f'Failed to generate text sheet: {exc}'})
        return 2

    write_bytes_atomic(output, data)
    _print_json({'status': 'ok', 'output': str(output), 'pages': validate_pdf(data), 'bytes': len(data)})
    return 0


def cmd_check_images(args: argparse.Namespace) -> int:
    try:
        items = _load_items(args.input)
    except (OSError, ValueError) as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2

    settings = get_settings()
    markers = settings.placeholder_markers()
    fetcher = build_image_fetcher(settings)
    candidates = [
        position for position, item in enumerate(items)
        if item.illustration_url and not any(marker in item.illustration_url.lower() for marker in markers)
    ]
    results = asyncio.run(fetcher.fetch_many([items[position].illustration_url or '' for position in candidates]))
    by_position = dict(zip(candidates, results))

    rows = []
    for position, item in enumerate(items):
        result = by_position.get(position)
        if result is None:
            rows.append({'word': item.word, 'url': item.illustration_url, 'usable': False, 'reason': 'missing_or_placeholder'})
        elif isinstance(result, ImageResult):
            rows.append({'word': item.word, 'url': item.illustration_url, 'usable': True, 'content_type': result.content_type})
        else:
            rows.append({'word': item.word, 'url': item.illustration_url, 'usable': False, 'reason': result.reason})

    _print_json({'status': 'ok', 'usable': sum(1 for row in rows if row['usable']), 'total': len(rows), 'items': rows})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Printable flashcard PDF generator')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    sub = parser.add_subparsers(dest='command', required=True)

    generate = sub.add_parser('generate', help='Build the flashcard PDF from a vocabulary JSON file')
    generate.add_argument('--input', required=True, help='Path to vocabulary JSON')
    generate.add_argument('--output', required=False, help='Output PDF path')
    generate.set_defaults(func=cmd_generate)

    render_text = sub.add_parser('render-text', help='Render one text string to an image')
    render_text.add_argument('--text', required=True)
    render_text.add_argument('--font-size', type=int, default=48)
    render_text.add_argument('--output', required=False)
    render_text.set_defaults(func=cmd_render_text)

    text_sheet = sub.add_parser('text-sheet', help='One page per text, rendered as images')
    text_sheet.add_argument('--text', action='append', required=True, help='Repeat for every page')
    text_sheet.add_argument('--output', required=False)
    text_sheet.set_defaults(func=cmd_text_sheet)

    check_images = sub.add_parser('check-images', help='Check illustration URLs of a vocabulary file')
    check_images.add_argument('--input', required=True, help='Path to vocabulary JSON')
    check_images.set_defaults(func=cmd_check_images)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())

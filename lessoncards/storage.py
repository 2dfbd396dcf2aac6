from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings


def exports_root() -> Path:
    root = get_settings().output_dir
    root.mkdir(parents=True, exist_ok=True)
    return root


def default_export_path(prefix: str = 'Flashcard', suffix: str = '.pdf') -> Path:
    stamp = datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S%f')
    return exports_root() / f'{prefix}_{stamp}{suffix}'


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(content)
    tmp.replace(path)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding='utf-8'))


def load_vocabulary(path: Path) -> list[dict[str, Any]]:
    payload = read_json(path)
    if isinstance(payload, dict):
        for key in ('flashcards', 'items', 'vocabulary'):
            rows = payload.get(key)
            if isinstance(rows, list):
                payload = rows
                break
    if not isinstance(payload, list):
        raise ValueError(f'{path} must contain a list of vocabulary records')
    return [row for row in payload if isinstance(row, dict)]

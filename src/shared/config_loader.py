"""Завантаження YAML конфігурацій."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from src.contracts.errors import ValidationError

log = logging.getLogger(__name__)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Зчитує YAML файл та повертає його вміст як dict.

    Args:
        path: Шлях до файлу.

    Returns:
        Вміст файлу як словник (порожній dict для порожнього файлу).

    Raises:
        FileNotFoundError: Якщо файл не знайдено.
        ValidationError: Якщо документ не є словником або не є валідним YAML.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Malformed YAML in {p}: {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ValidationError(f"Expected a mapping at top level of {p}, got {type(data).__name__}")
    log.debug("Loaded config %s (%d top-level keys)", p.name, len(data or {}))
    return data or {}

"""Налаштування логування."""

from __future__ import annotations

import logging
import os
import sys

_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Налаштовує стандартний логер з лаконічним форматом.

    Args:
        level: Рівень логування (DEBUG, INFO, WARNING, ERROR). Якщо не
            задано, береться зі змінної ``REMEDIATION_LOG_LEVEL``, інакше INFO.
    """
    chosen = level or os.environ.get("REMEDIATION_LOG_LEVEL", "INFO")
    numeric = getattr(logging, chosen.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format=_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    # asyncio debug chatter drowns the scheduler logs at DEBUG
    logging.getLogger("asyncio").setLevel(max(numeric, logging.INFO))

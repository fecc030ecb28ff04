"""Налаштування логування."""

from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Налаштовує кореневий логер монітора.

    Args:
        level: Рівень логування (DEBUG, INFO, WARNING, ERROR).
        log_file: Необов'язковий файл, куди дублюються записи.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )
    # HTTP client chatter drowns the per-update debug lines
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

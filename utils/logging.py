"""Logging setup shared by the CLI and the comparison pipeline."""
from __future__ import annotations

import logging
import sys
from typing import List, Optional, Union

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Image and PDF libraries log per-page chatter at DEBUG.
_NOISY_LOGGERS = ("PIL", "fitz")


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(level: Union[int, str] = logging.INFO, logfile: Optional[str] = None) -> None:
    """Route records to stdout (and optionally ``logfile``); accepts "DEBUG"-style names."""
    numeric = _resolve_level(level)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if logfile:
        handlers.append(logging.FileHandler(logfile, encoding="utf-8"))

    logging.basicConfig(level=numeric, format=_LOG_FORMAT, handlers=handlers, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))


logger = logging.getLogger("pagematch")

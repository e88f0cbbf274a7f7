"""Logging setup for entry points."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "[%(asctime)s %(levelname)s] %(name)s: %(message)s"


def configure_logging(debug: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """Apply a root logging config; DEBUG when ``debug`` is set, INFO otherwise."""

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("src.sieve")

"""Runtime configuration for the scene sieve service."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Tuple

SERVICE_VERSION = "0.1.0"

_BASE_DIR = Path(os.environ.get("SIEVE_BASE_DIR", ".")).resolve()

DATA_DIR = Path(os.environ.get("SIEVE_DATA_DIR", _BASE_DIR / "data")).resolve()
LOG_DIR = Path(os.environ.get("SIEVE_LOG_DIR", _BASE_DIR / "logs")).resolve()
OUTPUT_DIR = Path(os.environ.get("SIEVE_OUTPUT_DIR", _BASE_DIR / "scenes")).resolve()

EXECUTION = os.environ.get("SIEVE_EXECUTION", "process")
INLINE_FALLBACK = bool(int(os.environ.get("SIEVE_INLINE_FALLBACK", "1")))
JOB_TIMEOUT_MS = int(os.environ.get("SIEVE_JOB_TIMEOUT_MS", "600000"))
DEBUG = bool(int(os.environ.get("SIEVE_DEBUG", "0")))


def ensure_dirs() -> Tuple[Path, Path]:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    return DATA_DIR, LOG_DIR


__all__ = [
    "SERVICE_VERSION",
    "DATA_DIR",
    "LOG_DIR",
    "OUTPUT_DIR",
    "EXECUTION",
    "INLINE_FALLBACK",
    "JOB_TIMEOUT_MS",
    "DEBUG",
    "ensure_dirs",
]

#!/usr/bin/env python3
"""Command-line runner for the scene sieve, locally or through the service."""
from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import requests

from src.sieve import (
    FileInput,
    PipelineError,
    ProgressEvent,
    SieveConfig,
    SieveResult,
    WorkerError,
    run_sieve,
)
from src.sieve.config import DEFAULT_COUNT, DEFAULT_THRESHOLD
from src.sieve.logs import configure_logging

SERVICE_URL_ENV = "SIEVE_SERVICE_URL"
HTTP_TIMEOUT_DEFAULT = int(os.getenv("SIEVE_HTTP_TIMEOUT", "600"))
RETRY_ATTEMPTS = 3


def log_info(message: str) -> None:
    print(f"[INFO] {message}")


def log_error(message: str) -> None:
    print(f"[ERROR] {message}", file=sys.stderr)


class ProgressPrinter:
    """Single-line progress display."""

    def __init__(self, stream=None) -> None:
        self._stream = stream or sys.stdout
        self._last_phase: Optional[str] = None

    def __call__(self, event: ProgressEvent) -> None:
        phase = event.phase.value
        if self._last_phase and phase != self._last_phase:
            self._stream.write("\n")
        self._last_phase = phase
        self._stream.write(f"\r{phase:<11} {event.percent:5.1f}%")
        self._stream.flush()

    def close(self) -> None:
        if self._last_phase:
            self._stream.write("\n")
            self._stream.flush()


def build_config(args: argparse.Namespace) -> SieveConfig:
    config = SieveConfig(
        count=args.count,
        threshold=args.threshold,
        execution="process" if args.worker else "inline",
        debug=args.debug,
        output_path=Path(args.output) if args.output else None,
    )
    extractor = config.extractor
    if args.fps is not None:
        extractor = replace(extractor, fps=args.fps)
    if args.scale is not None:
        extractor = replace(extractor, scale=args.scale)
    if args.max_frames is not None:
        extractor = replace(extractor, max_frames=args.max_frames)
    config.extractor = extractor
    return config


def format_summary(result: SieveResult) -> str:
    return (
        f"Done! {result.original_frames_count} frames -> {result.pruned_frames_count} scenes "
        f"({result.execution_time_ms} ms)"
    )


def post_with_retry(url: str, payload: dict, timeout_sec: int) -> requests.Response:
    for attempt in range(RETRY_ATTEMPTS):
        try:
            response = requests.post(url, json=payload, timeout=(timeout_sec, timeout_sec))
        except requests.ConnectionError as error:
            wait_time = 2 ** attempt
            print(f"[WARN] POST failed ({error}); retrying in {wait_time}s", file=sys.stderr)
            time.sleep(wait_time)
            continue
        if response.status_code == 422:
            raise ValueError(response.json().get("detail", "Request rejected"))
        response.raise_for_status()
        return response
    raise RuntimeError("Failed to submit sieve request after retries")


def fetch_result(base_url: str, job_id: str, timeout_sec: int) -> dict:
    response = requests.get(f"{base_url}/result/{job_id}", timeout=(timeout_sec, timeout_sec))
    response.raise_for_status()
    return response.json()


def run_remote(args: argparse.Namespace, base_url: str) -> int:
    overrides = {
        "count": args.count,
        "threshold": args.threshold,
        "fps": args.fps,
        "scale": args.scale,
        "max_frames": args.max_frames,
        "execution": "process" if args.worker else None,
    }
    payload = {
        "input_path": str(Path(args.input).resolve()),
        "output_dir": str(Path(args.output).resolve()) if args.output else None,
        "config": {key: value for key, value in overrides.items() if value is not None},
    }
    response = post_with_retry(f"{base_url}/sieve", payload, args.http_timeout)
    job_id = response.json()["job_id"]
    log_info(f"Job {job_id} submitted to {base_url}")
    result = fetch_result(base_url, job_id, args.http_timeout)
    summary = result.get("summary", {})
    print(
        f"Done! {summary.get('original_frames', 0)} frames -> {summary.get('retained_frames', 0)} scenes "
        f"({summary.get('execution_time_ms') or 0} ms)"
    )
    for scene in result.get("scenes", []):
        if scene.get("output_file"):
            print(f"  {scene['output_file']}")
    return 0


def run_local(args: argparse.Namespace) -> int:
    config = build_config(args)
    printer = ProgressPrinter()
    try:
        result = run_sieve(FileInput(path=Path(args.input)), config, on_progress=printer)
    finally:
        printer.close()
    print(format_summary(result))
    for path in result.output_files:
        print(f"  {path}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Extract the distinct scenes of a video or GIF")
    parser.add_argument("input", help="Path to a video or GIF file")
    parser.add_argument(
        "-n",
        "--count",
        type=int,
        default=DEFAULT_COUNT,
        help=f"Maximum number of scenes to keep (default: {DEFAULT_COUNT})",
    )
    parser.add_argument(
        "-t",
        "--threshold",
        type=float,
        default=DEFAULT_THRESHOLD,
        help=f"Normalized change threshold in (0, 1] (default: {DEFAULT_THRESHOLD})",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output directory (default: <input dir>/<input name>_scenes)",
    )
    parser.add_argument("--fps", type=float, default=None, help="Extraction frame rate (default: 5)")
    parser.add_argument("-s", "--scale", type=int, default=None, help="Extraction frame height (default: 720)")
    parser.add_argument("--max-frames", type=int, default=None, help="Upper bound on extracted frames (default: 300)")
    parser.add_argument("--worker", action="store_true", help="Run the analysis in a separate process")
    parser.add_argument("--debug", action="store_true", help="Verbose logs; keep the temp workspace")
    parser.add_argument(
        "--service-url",
        default=None,
        help=f"Submit the job to a running service instead (default: env {SERVICE_URL_ENV})",
    )
    parser.add_argument(
        "--http-timeout",
        type=int,
        default=HTTP_TIMEOUT_DEFAULT,
        help=f"HTTP timeout in seconds for service calls (default: {HTTP_TIMEOUT_DEFAULT})",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.debug)
    service_url = args.service_url or os.environ.get(SERVICE_URL_ENV)

    try:
        if service_url:
            return run_remote(args, service_url.rstrip("/"))
        return run_local(args)
    except ValueError as error:  # ConfigError, InputError and service 422s
        log_error(str(error))
        return 2
    except PipelineError as error:
        log_error(f"{error} (phase: {error.phase.value})")
        return 1
    except (WorkerError, requests.RequestException, RuntimeError) as error:
        log_error(str(error))
        return 1


if __name__ == "__main__":
    sys.exit(main())

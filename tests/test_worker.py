from __future__ import annotations

import multiprocessing as mp
import os
import threading
import time

import numpy as np
import pytest

from src.sieve.config import ConfigError, SieveConfig
from src.sieve.inputs import FramesInput, InputError
from src.sieve.orchestrator import PipelineError
from src.sieve.types import PipelineStatus
from src.sieve.worker import WorkerCancelled, WorkerError, WorkerHandle, rebuild_error, run_in_worker, run_sieve

requires_fork = pytest.mark.skipif("fork" not in mp.get_all_start_methods(), reason="fork start method unavailable")


def _frames() -> FramesInput:
    images = []
    for bgr in ((0, 0, 255), (0, 255, 0), (255, 0, 0)):
        frame = np.zeros((32, 32, 3), dtype=np.uint8)
        frame[:, :] = bgr
        images.append(frame)
    return FramesInput(images=images)


def _crashing_target(conn, source, config) -> None:
    conn.send(("progress", "EXTRACTING", 0.0))
    os._exit(3)


def _failing_target(conn, source, config) -> None:
    conn.send(("progress", "EXTRACTING", 0.0))
    conn.send(("progress", "ANALYZING", 40.0))
    conn.send(("error", "pipeline", "ANALYZING", "ANALYZING failed: boom"))
    conn.close()


def _sleeping_target(conn, source, config) -> None:
    time.sleep(30)


def test_rebuild_error_maps_kinds() -> None:
    assert isinstance(rebuild_error("config", "INIT", "bad"), ConfigError)
    assert isinstance(rebuild_error("input", "EXTRACTING", "bad"), InputError)
    error = rebuild_error("pipeline", "PRUNING", "PRUNING failed: x")
    assert isinstance(error, PipelineError)
    assert error.phase == PipelineStatus.PRUNING


@requires_fork
def test_worker_crash_is_reported_with_exit_code() -> None:
    handle = WorkerHandle(_frames(), start_method="fork", target=_crashing_target)
    events = []
    with pytest.raises(WorkerError) as excinfo:
        handle.run(events.append)

    assert excinfo.value.exit_code == 3
    assert not isinstance(excinfo.value, PipelineError)
    assert [event.phase for event in events] == [PipelineStatus.EXTRACTING]


@requires_fork
def test_worker_pipeline_error_is_rebuilt_with_phase() -> None:
    handle = WorkerHandle(_frames(), start_method="fork", target=_failing_target)
    events = []
    with pytest.raises(PipelineError) as excinfo:
        handle.run(events.append)

    assert excinfo.value.phase == PipelineStatus.ANALYZING
    assert [(event.phase, event.percent) for event in events] == [
        (PipelineStatus.EXTRACTING, 0.0),
        (PipelineStatus.ANALYZING, 40.0),
    ]


@requires_fork
def test_cancel_terminates_the_worker() -> None:
    handle = WorkerHandle(_frames(), start_method="fork", target=_sleeping_target).start()
    timer = threading.Timer(0.3, handle.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(WorkerCancelled):
            handle.run()
    finally:
        timer.cancel()
    assert time.monotonic() - started < 10
    assert handle.result is None


def test_real_worker_matches_inline_run() -> None:
    config = SieveConfig(count=5)
    inline = run_sieve(_frames(), config)

    events = []
    isolated = run_in_worker(_frames(), config, on_progress=events.append)

    assert isolated.retained_ids == inline.retained_ids == [0, 1, 2]
    assert isolated.scene_ranks == inline.scene_ranks
    assert len(isolated.output_buffers or []) == 3
    assert events and events[-1].phase == PipelineStatus.FINALIZING


def test_worker_relays_config_errors() -> None:
    with pytest.raises(ConfigError):
        WorkerHandle(_frames(), SieveConfig(threshold=2.0)).run()


def test_run_sieve_validates_before_dispatch() -> None:
    with pytest.raises(ConfigError):
        run_sieve(_frames(), SieveConfig(count=0, execution="process"))

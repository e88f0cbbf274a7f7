"""FastAPI job service for the scene sieve."""
from __future__ import annotations

import asyncio
import csv
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query

from src.sieve import (
    ConfigError,
    FileInput,
    InputError,
    PipelineError,
    ProgressEvent,
    SieveConfig,
    SievePipeline,
    SieveResult,
    WorkerError,
    WorkerHandle,
    validate_input,
)
from src.sieve.logs import configure_logging
from src.sieve.worker import WorkerCancelled

from .config import (
    DEBUG,
    EXECUTION,
    INLINE_FALLBACK,
    JOB_TIMEOUT_MS,
    LOG_DIR,
    OUTPUT_DIR,
    SERVICE_VERSION,
    ensure_dirs,
)
from .db import get_job, get_scenes, init_db, insert_job, insert_scenes, list_jobs, mark_interrupted, update_job
from .schemas import (
    AnimationItem,
    JobStatus,
    ResultResponse,
    SceneItem,
    SieveOverrides,
    SieveRequest,
    SieveResponse,
    StatusResponse,
    StopRequest,
    Summary,
)

REPORT_SCHEMA_VERSION = "1.0"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


logger = logging.getLogger("scenesieve.service")
if DEBUG:
    configure_logging(debug=True)

ensure_dirs()
init_db()
_interrupted = mark_interrupted(_utcnow())
if _interrupted:
    logger.warning("Marked %d unfinished job(s) from a previous run as failed", _interrupted)

app = FastAPI(title="Scene Sieve Service", version=SERVICE_VERSION)


def _job_timeout() -> float | None:
    return JOB_TIMEOUT_MS / 1000 if JOB_TIMEOUT_MS > 0 else None


def _create_config(overrides: SieveOverrides | None, output_dir: Path) -> SieveConfig:
    config = SieveConfig(execution=EXECUTION, debug=DEBUG, output_path=output_dir)
    if overrides:
        if overrides.count is not None:
            config.count = overrides.count
        if overrides.threshold is not None:
            config.threshold = overrides.threshold
        if overrides.quality is not None:
            config.quality = overrides.quality
        if overrides.execution:
            config.execution = overrides.execution
        extractor = config.extractor
        if overrides.fps is not None:
            extractor = replace(extractor, fps=overrides.fps)
        if overrides.scale is not None:
            extractor = replace(extractor, scale=overrides.scale)
        if overrides.max_frames is not None:
            extractor = replace(extractor, max_frames=overrides.max_frames)
        config.extractor = extractor
        if overrides.iou_threshold is not None:
            config.tracker = replace(config.tracker, iou_threshold=overrides.iou_threshold)
        if overrides.animation_threshold is not None:
            config.tracker = replace(config.tracker, animation_threshold=overrides.animation_threshold)
        if overrides.cluster_alpha is not None:
            config.cluster = replace(config.cluster, alpha=overrides.cluster_alpha)
        if overrides.cluster_min_pts is not None:
            config.cluster = replace(config.cluster, min_pts=overrides.cluster_min_pts)
    return config.validate()


@app.get("/health")
def health():
    return {"status": "ok", "service": "scenesieve", "version": SERVICE_VERSION}


_jobs: Dict[str, ResultResponse] = {}
_jobs_lock = asyncio.Lock()

@dataclass
class _JobControl:
    """Stop state shared between a request, its worker thread and /jobs/{id}/stop."""

    handle: Optional[WorkerHandle] = None
    stop_reason: Optional[str] = None


# written from worker threads, read by /status and /jobs/{id}/stop
_progress: Dict[str, Tuple[str, float]] = {}
_controls: Dict[str, _JobControl] = {}
_live_lock = threading.Lock()


def _record_progress(job_id: str, event: ProgressEvent) -> None:
    with _live_lock:
        _progress[job_id] = (event.phase.value, event.percent)


def _request_stop(control: _JobControl, reason: str) -> Optional[WorkerHandle]:
    """Flag the job as stopped and return the worker to terminate, if any."""

    with _live_lock:
        if control.stop_reason is None:
            control.stop_reason = reason
        return control.handle


def _execute(job_id: str, source: FileInput, config: SieveConfig, control: _JobControl) -> SieveResult:
    """Blocking run; called through ``asyncio.to_thread``."""

    def on_progress(event: ProgressEvent) -> None:
        _record_progress(job_id, event)

    if config.execution == "process":
        handle = WorkerHandle(source, config, logger=logger)
        with _live_lock:
            if control.stop_reason is not None:
                raise WorkerCancelled(control.stop_reason)
            control.handle = handle
        try:
            return handle.run(on_progress)
        except WorkerCancelled:
            raise
        except WorkerError as error:
            if not INLINE_FALLBACK:
                raise
            logger.warning("Worker for job %s crashed (%s); restarting inline", job_id, error)
        finally:
            with _live_lock:
                control.handle = None

    def on_inline_progress(event: ProgressEvent) -> None:
        on_progress(event)
        # an inline run can only be interrupted between progress events
        if control.stop_reason is not None:
            raise WorkerCancelled(control.stop_reason)

    return SievePipeline(source, config, logger=logger).run(on_inline_progress)


async def _run_job(job_id: str, source: FileInput, config: SieveConfig, control: _JobControl) -> SieveResult:
    timeout = _job_timeout()
    work = asyncio.to_thread(_execute, job_id, source, config, control)
    if not timeout:
        return await work
    try:
        return await asyncio.wait_for(work, timeout=timeout)
    except asyncio.TimeoutError:
        handle = _request_stop(control, f"Job timed out after {JOB_TIMEOUT_MS} ms")
        if handle is not None:
            await asyncio.to_thread(handle.cancel)
        raise


def _store_job_placeholder(job_id: str, request: SieveRequest, config: SieveConfig) -> None:
    insert_job(
        {
            "id": job_id,
            "created_at": _utcnow(),
            "status": JobStatus.PENDING.value,
            "input_path": request.input_path,
            "output_dir": str(config.output_path) if config.output_path else None,
            "execution": config.execution,
        }
    )


def _scene_items(result: SieveResult) -> List[SceneItem]:
    incoming = {edge.target_id: index for index, edge in enumerate(result.edges)}
    items: List[SceneItem] = []
    for position, frame_id in enumerate(result.retained_ids):
        edge_index = incoming.get(frame_id)
        score = None
        if edge_index is not None and edge_index < len(result.normalized_scores):
            score = round(float(result.normalized_scores[edge_index]), 6)
        output_file = result.output_files[position] if position < len(result.output_files) else None
        items.append(
            SceneItem(
                rank=result.scene_ranks.get(frame_id, position + 1),
                frame_id=frame_id,
                score=score,
                output_file=output_file,
            )
        )
    return items


def _animation_items(result: SieveResult) -> List[AnimationItem]:
    return [
        AnimationItem(
            start_frame_id=run.start_frame_id,
            end_frame_id=run.end_frame_id,
            edge_count=run.edge_count,
            region=[run.region.x, run.region.y, run.region.width, run.region.height],
        )
        for run in result.animations
    ]


def _write_reports(job_id: str, report: Dict[str, object], scenes: List[SceneItem]) -> Dict[str, str]:
    json_path = LOG_DIR / f"{job_id}.json"
    csv_path = LOG_DIR / f"{job_id}.csv"
    paths: Dict[str, str] = {}

    try:
        json_path.write_text(json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8")
        paths["json_path"] = str(json_path)
    except OSError as error:
        logger.warning("Failed to write JSON report for %s: %s", job_id, error)

    try:
        with csv_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["job_id", "rank", "frame_id", "score", "output_file"])
            for scene in scenes:
                writer.writerow(
                    [
                        job_id,
                        scene.rank,
                        scene.frame_id,
                        "" if scene.score is None else f"{scene.score:.6f}",
                        scene.output_file or "",
                    ]
                )
        paths["csv_path"] = str(csv_path)
    except OSError as error:
        logger.warning("Failed to write CSV report for %s: %s", job_id, error)
    return paths


async def _fail_job(job_id: str, status: JobStatus, phase: Optional[str], error: Exception | str) -> None:
    update_job(job_id, status=status.value, phase=phase, error=str(error), finished_at=_utcnow())
    async with _jobs_lock:
        stored = _jobs.get(job_id)
        if stored:
            stored.status = status


@app.post("/sieve", response_model=SieveResponse)
async def sieve(payload: SieveRequest) -> SieveResponse:
    """Run a sieve job to completion and return its identifier."""

    job_id = uuid4().hex
    started = time.perf_counter()
    output_dir = Path(payload.output_dir) if payload.output_dir else OUTPUT_DIR / job_id
    try:
        config = _create_config(payload.config, output_dir)
        source = validate_input(FileInput(path=Path(payload.input_path)))
    except (ConfigError, InputError) as error:
        raise HTTPException(status_code=422, detail=str(error)) from error

    _store_job_placeholder(job_id, payload, config)
    async with _jobs_lock:
        _jobs[job_id] = ResultResponse(
            job_id=job_id,
            status=JobStatus.RUNNING,
            summary=Summary(original_frames=0, retained_frames=0, execution=config.execution),
        )
    update_job(job_id, status=JobStatus.RUNNING.value)

    control = _JobControl()
    with _live_lock:
        _controls[job_id] = control
    try:
        result = await _run_job(job_id, source, config, control)
        if control.stop_reason is not None:
            # the run finished before the stop reached it
            raise WorkerCancelled(control.stop_reason)
    except WorkerCancelled as error:
        await _fail_job(job_id, JobStatus.STOPPED, None, control.stop_reason or error)
        raise HTTPException(status_code=409, detail="Job was stopped") from error
    except asyncio.TimeoutError as error:
        await _fail_job(job_id, JobStatus.FAILED, None, control.stop_reason or "Job timed out")
        logger.error("Job %s timed out after %d ms", job_id, JOB_TIMEOUT_MS)
        raise HTTPException(status_code=500, detail=control.stop_reason or "Job timed out") from error
    except (ConfigError, InputError) as error:
        await _fail_job(job_id, JobStatus.FAILED, None, error)
        raise HTTPException(status_code=422, detail=str(error)) from error
    except PipelineError as error:
        await _fail_job(job_id, JobStatus.FAILED, error.phase.value, error)
        logger.error("Job %s failed in %s: %s", job_id, error.phase.value, error)
        raise HTTPException(status_code=500, detail=str(error)) from error
    except Exception as error:
        await _fail_job(job_id, JobStatus.FAILED, None, error)
        logger.error("Job %s failed: %s", job_id, error)
        raise HTTPException(status_code=500, detail="Sieve failed") from error
    finally:
        with _live_lock:
            _progress.pop(job_id, None)
            _controls.pop(job_id, None)

    scenes = _scene_items(result)
    summary = Summary(
        original_frames=result.original_frames_count,
        retained_frames=result.pruned_frames_count,
        execution_time_ms=result.execution_time_ms,
        threshold=config.threshold,
        count=config.count,
        animation_runs=len(result.animations),
        execution=config.execution,
        output_dir=str(output_dir),
    )
    response = ResultResponse(
        job_id=job_id,
        status=JobStatus.COMPLETED,
        summary=summary,
        scenes=scenes,
        animations=_animation_items(result),
    )
    async with _jobs_lock:
        _jobs[job_id] = response

    report = {
        "job_id": job_id,
        "schema_version": REPORT_SCHEMA_VERSION,
        "service_version": SERVICE_VERSION,
        "input_path": payload.input_path,
        "summary": summary.model_dump(),
        "scenes": [scene.model_dump() for scene in scenes],
        "animations": [item.model_dump() for item in response.animations],
    }
    paths = _write_reports(job_id, report, scenes)
    insert_scenes(job_id, [scene.model_dump() for scene in scenes])

    update_job(
        job_id,
        status=JobStatus.COMPLETED.value,
        finished_at=_utcnow(),
        original_frames=result.original_frames_count,
        retained_frames=result.pruned_frames_count,
        execution_time_ms=result.execution_time_ms,
        json_path=paths.get("json_path"),
        csv_path=paths.get("csv_path"),
    )
    logger.info(
        "Job %s completed in %.2fs (%d frames -> %d scenes)",
        job_id,
        time.perf_counter() - started,
        result.original_frames_count,
        result.pruned_frames_count,
    )
    return SieveResponse(job_id=job_id, status=JobStatus.COMPLETED)


@app.get("/status/{job_id}", response_model=StatusResponse)
async def status(job_id: str) -> StatusResponse:
    """Return the current status and live progress for a job."""

    async with _jobs_lock:
        stored = _jobs.get(job_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="Unknown job id")
    with _live_lock:
        live = _progress.get(job_id)
    phase, percent = live if live else (None, None)
    return StatusResponse(job_id=job_id, status=stored.status, phase=phase, percent=percent)


@app.get("/result/{job_id}", response_model=ResultResponse)
async def result(job_id: str) -> ResultResponse:
    """Return the final result for a job, from memory or from the job history."""

    async with _jobs_lock:
        stored = _jobs.get(job_id)
    if stored is not None:
        return stored

    record = get_job(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown job id")
    # jobs from an earlier service process only survive in the database
    return ResultResponse(
        job_id=job_id,
        status=JobStatus(record["status"]),
        summary=Summary(
            original_frames=record["original_frames"] or 0,
            retained_frames=record["retained_frames"] or 0,
            execution_time_ms=record["execution_time_ms"],
            execution=record["execution"],
            output_dir=record["output_dir"],
        ),
        scenes=[SceneItem(**scene) for scene in get_scenes(job_id)],
    )


@app.get("/jobs")
def jobs(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status: Optional[JobStatus] = None,
):
    return list_jobs(limit=limit, offset=offset, status=status.value if status else None)


@app.get("/jobs/{job_id}")
def job_detail(job_id: str):
    record = get_job(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown job id")
    record["scenes"] = get_scenes(job_id)
    return record


@app.post("/jobs/{job_id}/stop")
async def stop_job(job_id: str, payload: StopRequest | None = None):
    record = get_job(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown job id")
    with _live_lock:
        control = _controls.get(job_id)
    if control is None:
        raise HTTPException(status_code=409, detail=f"Job is not running (status: {record['status']})")

    reason = (payload.reason if payload else None) or "Stopped by request"
    handle = _request_stop(control, reason)
    if handle is not None:
        await asyncio.to_thread(handle.cancel)
    logger.info("Stop requested for job %s (%s)", job_id, reason)
    update_job(job_id, status=JobStatus.STOPPED.value, finished_at=_utcnow(), error=reason)
    async with _jobs_lock:
        stored = _jobs.get(job_id)
        if stored:
            stored.status = JobStatus.STOPPED
    return {"job_id": job_id, "status": JobStatus.STOPPED, "cancelled": handle is not None}

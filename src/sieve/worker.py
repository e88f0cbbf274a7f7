"""Run the pipeline in an isolated child process.

The child drives the same :class:`SievePipeline` as an inline run and reports
back over a one-way pipe:

* ``("progress", phase, percent)`` for every progress event, then exactly one of
* ``("result", SieveResult)`` or
* ``("error", kind, phase, message)``.

A child that exits without sending a terminal message surfaces as
:class:`WorkerError`, distinct from :class:`PipelineError`.
"""
from __future__ import annotations

import logging
import multiprocessing as mp
from multiprocessing.connection import Connection
from typing import Any, Callable, Iterator, Optional

from .config import ConfigError, SieveConfig
from .inputs import InputError
from .logs import configure_logging
from .orchestrator import PipelineError, ProgressCallback, SievePipeline
from .types import PipelineStatus, ProgressEvent, SieveResult

POLL_INTERVAL_SEC = 0.1


class WorkerError(RuntimeError):
    """The worker process died or was cancelled before delivering a result."""

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class WorkerCancelled(WorkerError):
    """The run was cancelled by the caller."""


def _error_kind(error: BaseException) -> str:
    if isinstance(error, ConfigError):
        return "config"
    if isinstance(error, InputError):
        return "input"
    if isinstance(error, PipelineError):
        return "pipeline"
    return "internal"


def pipeline_worker_main(conn: Connection, source: Any, config: SieveConfig) -> None:
    """Child-process entry point."""

    configure_logging(config.debug)
    pipeline = SievePipeline(source, config)
    try:
        for event in pipeline.events():
            conn.send(("progress", event.phase.value, event.percent))
        conn.send(("result", pipeline.result))
    except Exception as error:  # reported to the parent
        phase = getattr(error, "phase", None)
        if phase is None and pipeline.context is not None:
            phase = pipeline.context.status
        conn.send(("error", _error_kind(error), PipelineStatus(phase or PipelineStatus.INIT).value, str(error)))
    finally:
        conn.close()


def rebuild_error(kind: str, phase: str, message: str) -> Exception:
    if kind == "config":
        return ConfigError(message)
    if kind == "input":
        return InputError(message)
    return PipelineError(PipelineStatus(phase), message)


class WorkerHandle:
    """Submits one pipeline run to a child process and streams its events back."""

    def __init__(
        self,
        source: Any,
        config: SieveConfig | None = None,
        start_method: str = "spawn",
        target: Callable[..., None] = pipeline_worker_main,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._source = source
        self._config = config or SieveConfig()
        self._context = mp.get_context(start_method)
        self._target = target
        self._logger = logger or logging.getLogger(__name__)
        self._process: Optional[mp.process.BaseProcess] = None
        self._reader: Optional[Connection] = None
        self._cancelled = False
        self.result: Optional[SieveResult] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def start(self) -> "WorkerHandle":
        if self._process is not None:
            raise RuntimeError("Worker already started")
        reader, writer = self._context.Pipe(duplex=False)
        process = self._context.Process(
            target=self._target,
            args=(writer, self._source, self._config),
            name="scene-sieve-worker",
            daemon=True,
        )
        process.start()
        # keep only the child's copy of the write end so EOF is observable
        writer.close()
        self._process = process
        self._reader = reader
        self._logger.debug("Started worker pid=%s", process.pid)
        return self

    def events(self) -> Iterator[ProgressEvent]:
        if self._process is None:
            self.start()
        process = self._process
        reader = self._reader
        assert process is not None and reader is not None
        try:
            while not self._cancelled:
                if reader.poll(POLL_INTERVAL_SEC):
                    try:
                        message = reader.recv()
                    except EOFError:
                        break
                    kind = message[0]
                    if kind == "progress":
                        yield ProgressEvent(phase=PipelineStatus(message[1]), percent=float(message[2]))
                    elif kind == "result":
                        self.result = message[1]
                        process.join()
                        return
                    elif kind == "error":
                        process.join()
                        raise rebuild_error(message[1], message[2], message[3])
                    else:
                        raise WorkerError(f"Unexpected worker message: {kind!r}")
                elif not process.is_alive():
                    if reader.poll(0):
                        continue
                    break
        finally:
            reader.close()

        process.join(timeout=5)
        if self._cancelled:
            raise WorkerCancelled("Worker run was cancelled", exit_code=process.exitcode)
        raise WorkerError(
            f"Worker exited without a result (exit code {process.exitcode})",
            exit_code=process.exitcode,
        )

    def cancel(self) -> None:
        """Terminate the child; partial results are discarded."""

        self._cancelled = True
        if self._process is not None and self._process.is_alive():
            self._logger.info("Terminating worker pid=%s", self._process.pid)
            self._process.terminate()
            self._process.join(timeout=5)

    def run(self, on_progress: Optional[ProgressCallback] = None) -> SieveResult:
        for event in self.events():
            if on_progress:
                on_progress(event)
        assert self.result is not None
        return self.result


def run_in_worker(
    source: Any,
    config: SieveConfig | None = None,
    on_progress: Optional[ProgressCallback] = None,
    start_method: str = "spawn",
) -> SieveResult:
    config = (config or SieveConfig()).validate()
    return WorkerHandle(source, config, start_method=start_method).run(on_progress)


def run_sieve(
    source: Any,
    config: SieveConfig | None = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SieveResult:
    """Run inline or in a worker process depending on ``config.execution``."""

    config = (config or SieveConfig()).validate()
    if config.execution == "process":
        return run_in_worker(source, config, on_progress)
    return SievePipeline(source, config).run(on_progress)

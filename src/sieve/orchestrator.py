"""Pipeline orchestration: extraction, analysis, pruning and finalization."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Generator, Iterator, List, Optional, TypeVar, Union

from .analyzer import FrameAnalyzer
from .config import ConfigError, SieveConfig
from .extractor import ExtractionError, FrameExtractor, frames_from_images
from .inputs import BufferInput, FileInput, FramesInput, InputError, SieveInput, resolve_input, validate_input
from .normalizer import normalize_scores
from .pruner import prune, rank_frames
from .types import PipelineStatus, ProcessContext, ProgressEvent, SieveResult
from .workspace import Workspace, default_output_dir, encode_buffers, finalize_output

T = TypeVar("T")

ProgressCallback = Callable[[ProgressEvent], None]


class PipelineError(RuntimeError):
    """A phase failed; ``phase`` names the :class:`PipelineStatus` that was running."""

    def __init__(self, phase: PipelineStatus, message: str) -> None:
        super().__init__(message)
        self.phase = phase


def _relay(context: ProcessContext, steps: Generator[float, None, T]) -> Generator[None, None, T]:
    while True:
        try:
            percent = next(steps)
        except StopIteration as stop:
            return stop.value
        context.emit_progress(percent)
        yield


class SievePipeline:
    """One run of the scene sieve over a single source.

    ``events()`` is the primary contract: a generator of progress events that
    leaves the final :class:`SieveResult` on ``result`` once exhausted.
    ``run()`` adapts it to a callback.
    """

    def __init__(
        self,
        source: Union[SieveInput, str, Path, bytes, list],
        config: SieveConfig | None = None,
        logger: logging.Logger | None = None,
        workspace_base: Optional[Path] = None,
    ) -> None:
        self._source = source
        self._config = config or SieveConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._workspace_base = workspace_base
        self.context: Optional[ProcessContext] = None
        self.result: Optional[SieveResult] = None
        self._output_files: List[str] = []
        self._output_buffers: Optional[List[bytes]] = None

    def run(self, on_progress: Optional[ProgressCallback] = None) -> SieveResult:
        for event in self.events():
            if on_progress:
                on_progress(event)
        assert self.result is not None
        return self.result

    def events(self) -> Iterator[ProgressEvent]:
        config = self._config.validate()
        source = validate_input(resolve_input(self._source))
        context = ProcessContext(config=config, source=source)
        self.context = context
        started = time.perf_counter()

        phases = (
            (PipelineStatus.EXTRACTING, self._extract),
            (PipelineStatus.ANALYZING, self._analyze),
            (PipelineStatus.PRUNING, self._prune),
            (PipelineStatus.FINALIZING, self._finalize),
        )
        context.workspace = Workspace.create(self._workspace_base)
        try:
            for phase, step in phases:
                context.enter(phase)
                self._logger.debug("Entering phase %s", phase.value)
                try:
                    for _ in step(context):
                        yield from context.drain_events()
                except (ConfigError, InputError):
                    raise
                except Exception as error:
                    raise PipelineError(phase, f"{phase.value} failed: {error}") from error
                context.emit_progress(100.0)
                yield from context.drain_events()

            context.status = PipelineStatus.SUCCESS
            self.result = self._build_result(context, started)
            self._logger.info(
                "Sieve finished: %d frames -> %d scenes in %d ms",
                self.result.original_frames_count,
                self.result.pruned_frames_count,
                self.result.execution_time_ms,
            )
        except Exception as error:
            context.status = PipelineStatus.FAILED
            context.error = error
            self._logger.error("Sieve failed: %s", error)
            raise
        finally:
            if config.debug:
                self._logger.debug("Keeping workspace %s (debug)", context.workspace.root)
            else:
                context.workspace.cleanup()

    # ------------------------------------------------------------------
    def _extract(self, context: ProcessContext) -> Iterator[None]:
        workspace = context.workspace
        source = context.source
        if isinstance(source, FramesInput):
            context.frames = frames_from_images(source.images, workspace.frames_dir)
        else:
            if isinstance(source, FileInput):
                path = source.path
            else:
                path = workspace.write_input(source.data, source.suffix)
            extractor = FrameExtractor(context.config.extractor, self._logger)
            context.frames = extractor.extract(path, workspace.frames_dir, on_progress=context.emit_progress)
        yield
        if not context.frames:
            raise ExtractionError("No frames were extracted")
        self._logger.debug("Extracted %d frame(s)", len(context.frames))

    def _analyze(self, context: ProcessContext) -> Iterator[None]:
        analyzer = FrameAnalyzer(context.config, self._logger)
        context.analysis = yield from _relay(context, analyzer.steps(context.frames))

    def _prune(self, context: ProcessContext) -> Iterator[None]:
        edges = context.edges
        context.normalized_scores = normalize_scores([edge.score for edge in edges])
        context.emit_progress(50.0)
        yield
        context.retained_ids = prune(
            edges,
            context.normalized_scores,
            context.animations,
            threshold=context.config.threshold,
            cap=context.config.count,
            animation_threshold=context.config.tracker.animation_threshold,
        )
        self._logger.debug("Retained frame ids: %s", context.retained_ids)

    def _finalize(self, context: ProcessContext) -> Iterator[None]:
        retained = set(context.retained_ids)
        frames = [frame for frame in context.frames if frame.id in retained]
        config = context.config

        output_dir = config.output_path
        if output_dir is None and isinstance(context.source, FileInput):
            output_dir = default_output_dir(context.source.path)
        if output_dir is not None:
            self._output_files = finalize_output(
                frames,
                Path(output_dir),
                config.quality,
                staging_dir=context.workspace.output_dir,
                logger=self._logger,
            )
            context.emit_progress(80.0)
            yield
        if isinstance(context.source, (BufferInput, FramesInput)):
            self._output_buffers = encode_buffers(frames, config.quality)
            yield

    def _build_result(self, context: ProcessContext, started: float) -> SieveResult:
        return SieveResult(
            success=True,
            original_frames_count=len(context.frames),
            pruned_frames_count=len(context.retained_ids),
            retained_ids=list(context.retained_ids),
            scene_ranks=rank_frames(context.retained_ids),
            output_files=list(self._output_files),
            output_buffers=self._output_buffers,
            animations=list(context.animations),
            edges=list(context.edges),
            normalized_scores=list(context.normalized_scores),
            execution_time_ms=int((time.perf_counter() - started) * 1000),
        )


def run_pipeline(
    source: Union[SieveInput, str, Path, bytes, list],
    config: SieveConfig | None = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SieveResult:
    return SievePipeline(source, config).run(on_progress)

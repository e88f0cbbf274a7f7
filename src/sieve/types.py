"""Typed primitives for the scene sieve pipeline."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, NamedTuple, Optional

import numpy as np

if TYPE_CHECKING:
    from .config import SieveConfig
    from .workspace import Workspace


class Point2D(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class Frame:
    """A decoded frame of the source sequence; ``id`` is its 0-based position."""

    id: int
    timestamp: float
    path: Optional[Path] = None
    data: Optional[np.ndarray] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ScoreEdge:
    """Information gain between two adjacent frames (``target_id == source_id + 1``)."""

    source_id: int
    target_id: int
    score: float


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_points(cls, points: Iterable[Point2D]) -> "BoundingBox":
        coords = np.asarray([(p[0], p[1]) for p in points], dtype=np.float64)
        if coords.size == 0:
            raise ValueError("Cannot build a bounding box from zero points")
        min_x, min_y = coords.min(axis=0)
        max_x, max_y = coords.max(axis=0)
        return cls(x=float(min_x), y=float(min_y), width=float(max_x - min_x), height=float(max_y - min_y))

    def union(self, other: "BoundingBox") -> "BoundingBox":
        min_x = min(self.x, other.x)
        min_y = min(self.y, other.y)
        max_x = max(self.x + self.width, other.x + other.width)
        max_y = max(self.y + self.height, other.y + other.height)
        return BoundingBox(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)


@dataclass
class ClusterResult:
    """Per-point labels (``-1`` = noise) plus one box per cluster id."""

    labels: List[int]
    boxes: List[BoundingBox]

    @property
    def cluster_count(self) -> int:
        return len(self.boxes)


@dataclass(frozen=True)
class AnimationRun:
    start_frame_id: int
    end_frame_id: int
    region: BoundingBox
    edge_count: int

    def overlaps(self, first_frame_id: int, last_frame_id: int) -> bool:
        return self.start_frame_id <= last_frame_id and first_frame_id <= self.end_frame_id


@dataclass
class PairScore:
    """Scorer output for one adjacent frame pair."""

    source_id: int
    target_id: int
    score: float
    change_points: List[Point2D] = field(default_factory=list)
    width: float = 0.0
    height: float = 0.0
    novelty: float = 0.0
    changed_ratio: float = 0.0
    failed: bool = False

    def to_edge(self) -> ScoreEdge:
        return ScoreEdge(source_id=self.source_id, target_id=self.target_id, score=self.score)


class PipelineStatus(str, Enum):
    """Lifecycle states of a single pipeline run."""

    INIT = "INIT"
    EXTRACTING = "EXTRACTING"
    ANALYZING = "ANALYZING"
    PRUNING = "PRUNING"
    FINALIZING = "FINALIZING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


PROGRESS_PHASES = (
    PipelineStatus.EXTRACTING,
    PipelineStatus.ANALYZING,
    PipelineStatus.PRUNING,
    PipelineStatus.FINALIZING,
)


@dataclass(frozen=True)
class ProgressEvent:
    phase: PipelineStatus
    percent: float


@dataclass
class AnalysisResult:
    """Everything the analysis phase hands to pruning."""

    pairs: List[PairScore]
    clusters: List[ClusterResult]
    animations: List[AnimationRun]

    @property
    def edges(self) -> List[ScoreEdge]:
        return [pair.to_edge() for pair in self.pairs]

    @property
    def change_points(self) -> List[List[Point2D]]:
        return [pair.change_points for pair in self.pairs]


@dataclass
class SieveResult:
    """Final payload of a pipeline run."""

    success: bool
    original_frames_count: int
    pruned_frames_count: int
    retained_ids: List[int]
    scene_ranks: Dict[int, int]
    output_files: List[str] = field(default_factory=list)
    output_buffers: Optional[List[bytes]] = None
    animations: List[AnimationRun] = field(default_factory=list)
    edges: List[ScoreEdge] = field(default_factory=list)
    normalized_scores: List[float] = field(default_factory=list)
    execution_time_ms: int = 0


@dataclass
class ProcessContext:
    """Mutable state of one pipeline run; never shared between runs."""

    config: "SieveConfig"
    source: Any
    workspace: Optional["Workspace"] = None
    frames: List[Frame] = field(default_factory=list)
    analysis: Optional[AnalysisResult] = None
    normalized_scores: List[float] = field(default_factory=list)
    retained_ids: List[int] = field(default_factory=list)
    status: PipelineStatus = PipelineStatus.INIT
    error: Optional[BaseException] = None
    events: Deque[ProgressEvent] = field(default_factory=deque)
    _last_percent: Dict[PipelineStatus, float] = field(default_factory=dict, repr=False)

    @property
    def edges(self) -> List[ScoreEdge]:
        return self.analysis.edges if self.analysis else []

    @property
    def animations(self) -> List[AnimationRun]:
        return self.analysis.animations if self.analysis else []

    def enter(self, status: PipelineStatus) -> None:
        self.status = status
        self.emit_progress(0.0)

    def emit_progress(self, percent: float) -> None:
        if self.status not in PROGRESS_PHASES:
            return
        value = min(100.0, max(0.0, float(percent)))
        last = self._last_percent.get(self.status)
        if last is not None and value <= last:
            return
        self._last_percent[self.status] = value
        self.events.append(ProgressEvent(phase=self.status, percent=value))

    def drain_events(self) -> List[ProgressEvent]:
        drained = list(self.events)
        self.events.clear()
        return drained

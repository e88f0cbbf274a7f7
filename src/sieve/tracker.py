"""Frame-to-frame tracking of change regions to detect sustained animation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .types import AnimationRun, BoundingBox

IOU_THRESHOLD = 0.9
ANIMATION_FRAME_THRESHOLD = 5


@dataclass
class TrackerConfig:
    iou_threshold: float = IOU_THRESHOLD
    animation_threshold: int = ANIMATION_FRAME_THRESHOLD


@dataclass
class _Track:
    start_edge: int
    last_edge: int
    box: BoundingBox
    region: BoundingBox
    run_length: int = 1


def compute_iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection-over-union of two axis-aligned boxes; 0 for degenerate boxes."""

    if a.area <= 0 or b.area <= 0:
        return 0.0
    left = max(a.x, b.x)
    top = max(a.y, b.y)
    right = min(a.x + a.width, b.x + b.width)
    bottom = min(a.y + a.height, b.y + b.height)
    if right <= left or bottom <= top:
        return 0.0
    intersection = (right - left) * (bottom - top)
    union = a.area + b.area - intersection
    return intersection / union if union > 0 else 0.0


class MotionTracker:
    """Links per-edge cluster boxes by IoU and reports long-lived tracks.

    Feed boxes with :meth:`update` in edge order, then call :meth:`finish`.
    Edge ``i`` spans frames ``i`` and ``i + 1``, so a track covering edges
    ``s..e`` becomes an :class:`AnimationRun` over frames ``s..e + 1``.
    """

    def __init__(self, config: TrackerConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or TrackerConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._active: List[_Track] = []
        self._finished: List[_Track] = []

    def update(self, edge_index: int, boxes: Sequence[BoundingBox]) -> None:
        claimed = [False] * len(boxes)
        survivors: List[_Track] = []

        # older tracks pick first
        for track in self._active:
            best_index = -1
            best_iou = -1.0
            for index, box in enumerate(boxes):
                if claimed[index]:
                    continue
                iou = compute_iou(track.box, box)
                if iou > best_iou:
                    best_iou = iou
                    best_index = index
            if best_index >= 0 and best_iou >= self._config.iou_threshold:
                claimed[best_index] = True
                track.box = boxes[best_index]
                track.region = track.region.union(boxes[best_index])
                track.last_edge = edge_index
                track.run_length += 1
                survivors.append(track)
            else:
                self._finished.append(track)

        for index, box in enumerate(boxes):
            if not claimed[index]:
                survivors.append(_Track(start_edge=edge_index, last_edge=edge_index, box=box, region=box))
        self._active = survivors

    def finish(self) -> List[AnimationRun]:
        tracks = self._finished + self._active
        self._finished = []
        self._active = []
        runs = [
            AnimationRun(
                start_frame_id=track.start_edge,
                end_frame_id=track.last_edge + 1,
                region=track.region,
                edge_count=track.run_length,
            )
            for track in tracks
            if track.run_length >= self._config.animation_threshold
        ]
        runs.sort(key=lambda run: (run.start_frame_id, run.end_frame_id))
        if runs:
            self._logger.debug("Detected %d animation run(s)", len(runs))
        return runs


def detect_animations(
    boxes_per_edge: Sequence[Sequence[BoundingBox]],
    config: TrackerConfig | None = None,
) -> List[AnimationRun]:
    tracker = MotionTracker(config)
    for edge_index, boxes in enumerate(boxes_per_edge):
        tracker.update(edge_index, boxes)
    return tracker.finish()

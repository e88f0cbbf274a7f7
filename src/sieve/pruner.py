"""Turn normalized edge scores into the retained frame set."""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from .topk import BoundedTopK
from .tracker import ANIMATION_FRAME_THRESHOLD
from .types import AnimationRun, ScoreEdge

# Runs shorter than this are never collapsed, even inside a detected animation
MIN_COLLAPSE_RUN = 3

logger = logging.getLogger(__name__)


def _candidate_runs(edges: Sequence[ScoreEdge], normalized: Sequence[float], threshold: float) -> List[List[int]]:
    """Group indices of above-threshold edges into maximal adjacent runs."""

    runs: List[List[int]] = []
    current: List[int] = []
    for index, value in enumerate(normalized):
        if value >= threshold:
            if current and edges[current[-1]].target_id != edges[index].source_id:
                runs.append(current)
                current = []
            current.append(index)
        elif current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)
    return runs


def _should_collapse(
    run: List[int],
    edges: Sequence[ScoreEdge],
    animation_runs: Sequence[AnimationRun],
    animation_threshold: int,
) -> bool:
    if len(run) >= animation_threshold:
        return True
    if len(run) < MIN_COLLAPSE_RUN:
        return False
    first_frame = edges[run[0]].source_id
    last_frame = edges[run[-1]].target_id
    return any(animation.overlaps(first_frame, last_frame) for animation in animation_runs)


def prune(
    edges: Sequence[ScoreEdge],
    normalized_scores: Sequence[float],
    animation_runs: Sequence[AnimationRun],
    threshold: float,
    cap: int,
    animation_threshold: int = ANIMATION_FRAME_THRESHOLD,
) -> List[int]:
    """Return retained frame ids in ascending order.

    Frame 0 is always retained and occupies one slot of ``cap``. An edge at or
    above ``threshold`` nominates its target frame. A collapsed burst of
    adjacent candidates keeps only the first and last frame it spans. Remaining candidates
    compete for ``cap - 1`` slots by score; ties go to the earlier frame.
    """

    if cap < 1:
        raise ValueError(f"cap must be >= 1, received: {cap}")
    if len(edges) != len(normalized_scores):
        raise ValueError(
            f"Expected one normalized score per edge, received {len(normalized_scores)} scores for {len(edges)} edges"
        )

    candidates: Dict[int, float] = {}

    def nominate(frame_id: int, score: float) -> None:
        candidates[frame_id] = max(candidates.get(frame_id, 0.0), score)

    for run in _candidate_runs(edges, normalized_scores, threshold):
        if _should_collapse(run, edges, animation_runs, animation_threshold):
            first, last = edges[run[0]], edges[run[-1]]
            # a burst over edges s..e spans frames source(s)..target(e)
            nominate(first.source_id, float(normalized_scores[run[0]]))
            nominate(last.target_id, float(normalized_scores[run[-1]]))
            logger.debug("Collapsed burst of %d edges (%d -> %d)", len(run), first.source_id, last.target_id)
            continue
        for index in run:
            nominate(edges[index].target_id, float(normalized_scores[index]))

    candidates.pop(0, None)
    selector: BoundedTopK[int] = BoundedTopK(cap - 1)
    for frame_id in sorted(candidates):
        selector.push(candidates[frame_id], frame_id, order=frame_id)

    return sorted([0] + selector.items())


def rank_frames(retained_ids: Sequence[int]) -> Dict[int, int]:
    """Map each retained frame id to its 1-based output rank."""

    return {frame_id: rank for rank, frame_id in enumerate(sorted(retained_ids), start=1)}


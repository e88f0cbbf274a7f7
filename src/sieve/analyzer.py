"""Analysis phase: scoring, per-edge clustering and motion tracking."""
from __future__ import annotations

import logging
from typing import Callable, Generator, List, Optional, Sequence

from .clusterer import RegionClusterer
from .config import SieveConfig
from .scorer import SimilarityScorer
from .tracker import MotionTracker
from .types import AnalysisResult, ClusterResult, Frame, PairScore


class FrameAnalyzer:
    """Coordinates the scorer, clusterer and tracker over one frame sequence."""

    def __init__(self, config: SieveConfig | None = None, logger: logging.Logger | None = None) -> None:
        self._config = config or SieveConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._scorer = SimilarityScorer(self._config.scorer, self._logger)
        self._clusterer = RegionClusterer(self._config.cluster)

    def steps(self, frames: Sequence[Frame]) -> Generator[float, None, AnalysisResult]:
        """Run the analysis, yielding percent complete after each frame pair."""

        pairs: List[PairScore] = []
        clusters: List[ClusterResult] = []
        tracker = MotionTracker(self._config.tracker, self._logger)
        total_pairs = max(len(frames) - 1, 0)

        for pair in self._scorer.iter_pairs(frames):
            result = self._clusterer.cluster(pair.change_points, pair.width, pair.height)
            tracker.update(len(pairs), result.boxes)
            pairs.append(pair)
            clusters.append(result)
            yield 100.0 * len(pairs) / total_pairs

        failed = sum(1 for pair in pairs if pair.failed)
        if failed:
            self._logger.warning("%d of %d frame pair(s) could not be scored", failed, len(pairs))

        animations = tracker.finish()
        self._logger.debug(
            "Analyzed %d frame(s): %d edge(s), %d animation run(s)",
            len(frames),
            len(pairs),
            len(animations),
        )
        return AnalysisResult(pairs=pairs, clusters=clusters, animations=animations)

    def analyze(
        self,
        frames: Sequence[Frame],
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> AnalysisResult:
        steps = self.steps(frames)
        while True:
            try:
                percent = next(steps)
            except StopIteration as stop:
                return stop.value
            if on_progress:
                on_progress(percent)

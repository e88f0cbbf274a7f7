"""Pairwise information-gain scoring between consecutive frames."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .types import Frame, PairScore, Point2D, ScoreEdge

# Hamming distances of 256-bit ORB descriptors lie in [0, 256]
DESCRIPTOR_BITS = 256.0


class ScoringError(RuntimeError):
    """Raised when a frame pair cannot be scored."""


@dataclass
class ScorerConfig:
    max_features: int = 500
    ratio_test: float = 0.75
    pixel_delta: int = 24
    blur_kernel: int = 3
    # changed-pixel grid cell side, as a fraction of the frame diagonal
    grid_fraction: float = 0.01


@dataclass
class _FrameFeatures:
    image: np.ndarray
    keypoints: Sequence[cv2.KeyPoint]
    descriptors: Optional[np.ndarray]

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


class SimilarityScorer:
    """Scores each adjacent frame pair by how much new content the second frame adds.

    The score sums two terms. The feature term is the share of ORB keypoints
    in the later frame without a ratio-test match in the earlier one, scaled
    by the spread of accepted match distances. The photometric term is the
    share of pixels that changed by more than ``pixel_delta``; it keeps flat,
    feature-free cuts visible.

    Change points come from the same pixel mask: unmatched keypoints that sit
    on changed pixels, plus the centre of every grid cell that is mostly
    changed. The grid keeps weakly textured regions visible to the clusterer,
    and the mask filter drops matcher noise on static background.
    """

    def __init__(self, config: ScorerConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or ScorerConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._orb = cv2.ORB_create(nfeatures=self._config.max_features)
        self._matcher = cv2.BFMatcher(cv2.NORM_HAMMING)

    def score(self, frames: Sequence[Frame]) -> Tuple[List[ScoreEdge], List[List[Point2D]]]:
        pairs = list(self.iter_pairs(frames))
        return [pair.to_edge() for pair in pairs], [pair.change_points for pair in pairs]

    def iter_pairs(self, frames: Iterable[Frame]) -> Iterator[PairScore]:
        """Yield one :class:`PairScore` per adjacent pair, loading each frame once."""

        previous: Optional[Frame] = None
        previous_features: Optional[_FrameFeatures] = None
        for frame in frames:
            try:
                features: Optional[_FrameFeatures] = self._features(frame)
            except (ScoringError, cv2.error) as error:
                self._logger.warning("Feature detection failed for frame %s: %s", frame.id, error)
                features = None

            if previous is not None:
                yield self._score_pair(previous, frame, previous_features, features)
            previous = frame
            previous_features = features

    # ------------------------------------------------------------------
    def _score_pair(
        self,
        source: Frame,
        target: Frame,
        source_features: Optional[_FrameFeatures],
        target_features: Optional[_FrameFeatures],
    ) -> PairScore:
        if source_features is None or target_features is None:
            return PairScore(source_id=source.id, target_id=target.id, score=0.0, failed=True)
        try:
            return self._compare(source.id, target.id, source_features, target_features)
        except (ScoringError, cv2.error) as error:
            self._logger.warning("Scoring failed for pair %s -> %s: %s", source.id, target.id, error)
            return PairScore(
                source_id=source.id,
                target_id=target.id,
                score=0.0,
                width=target_features.width,
                height=target_features.height,
                failed=True,
            )

    def _compare(self, source_id: int, target_id: int, a: _FrameFeatures, b: _FrameFeatures) -> PairScore:
        if a.image.shape == b.image.shape and np.array_equal(a.image, b.image):
            # duplicate descriptors can leave keypoints unmatched even between identical images
            return PairScore(source_id=source_id, target_id=target_id, score=0.0, width=b.width, height=b.height)

        mask = self._changed_mask(a.image, b.image)
        changed_ratio = float(np.count_nonzero(mask)) / float(mask.size)
        novelty = 0.0
        feature_gain = 0.0
        change_points: List[Point2D] = []

        if a.keypoints and b.keypoints and a.descriptors is not None and b.descriptors is not None:
            matched_targets, distances = self._match(a.descriptors, b.descriptors)
            unmatched = [kp for index, kp in enumerate(b.keypoints) if index not in matched_targets]
            novelty = len(unmatched) / float(len(b.keypoints))
            dispersion = float(np.std(distances)) / DESCRIPTOR_BITS if distances else 1.0
            feature_gain = novelty * (1.0 + dispersion)
            change_points = [
                Point2D(float(kp.pt[0]), float(kp.pt[1])) for kp in unmatched if _on_mask(mask, kp.pt)
            ]
        change_points.extend(self._changed_cells(mask))

        score = max(0.0, feature_gain + changed_ratio)
        return PairScore(
            source_id=source_id,
            target_id=target_id,
            score=score if np.isfinite(score) else 0.0,
            change_points=change_points,
            width=b.width,
            height=b.height,
            novelty=novelty,
            changed_ratio=changed_ratio,
        )

    def _match(self, source_desc: np.ndarray, target_desc: np.ndarray) -> Tuple[set, List[float]]:
        matched_targets = set()
        distances: List[float] = []
        for candidates in self._matcher.knnMatch(source_desc, target_desc, k=2):
            if not candidates:
                continue
            best = candidates[0]
            if len(candidates) > 1:
                second = candidates[1]
                if best.distance > 0 and best.distance >= self._config.ratio_test * second.distance:
                    continue
            if best.trainIdx in matched_targets:
                continue
            matched_targets.add(best.trainIdx)
            distances.append(float(best.distance))
        return matched_targets, distances

    def _changed_mask(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Boolean mask, in the later frame's coordinates, of pixels that moved past ``pixel_delta``."""

        if a.shape[:2] != b.shape[:2]:
            a = cv2.resize(a, (b.shape[1], b.shape[0]), interpolation=cv2.INTER_AREA)
        return cv2.absdiff(a, b).max(axis=2) > self._config.pixel_delta

    def _changed_cells(self, mask: np.ndarray) -> List[Point2D]:
        height, width = mask.shape
        step = max(1, int(round(self._config.grid_fraction * float(np.hypot(width, height)))))
        rows, cols = height // step, width // step
        if rows == 0 or cols == 0:
            return []
        cells = mask[: rows * step, : cols * step].reshape(rows, step, cols, step).mean(axis=(1, 3))
        ys, xs = np.nonzero(cells >= 0.5)
        return [Point2D((float(x) + 0.5) * step, (float(y) + 0.5) * step) for y, x in zip(ys, xs)]

    def _features(self, frame: Frame) -> _FrameFeatures:
        image = load_image(frame)
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        kernel = max(1, self._config.blur_kernel) | 1
        gray = cv2.GaussianBlur(gray, (kernel, kernel), 0)
        keypoints, descriptors = self._orb.detectAndCompute(gray, None)
        return _FrameFeatures(image=image, keypoints=list(keypoints or []), descriptors=descriptors)


def _on_mask(mask: np.ndarray, pt: Tuple[float, float]) -> bool:
    x = min(max(int(pt[0]), 0), mask.shape[1] - 1)
    y = min(max(int(pt[1]), 0), mask.shape[0] - 1)
    return bool(mask[y, x])


def load_image(frame: Frame) -> np.ndarray:
    """Return the frame's BGR pixels, decoding from ``frame.path`` when needed."""

    if frame.data is not None:
        image = frame.data
    elif frame.path is not None:
        image = cv2.imread(str(frame.path), cv2.IMREAD_COLOR)
        if image is None:
            raise ScoringError(f"Unable to decode frame image: {frame.path}")
    else:
        raise ScoringError(f"Frame {frame.id} carries neither pixel data nor a path")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    raise ScoringError(f"Unsupported image shape {image.shape} for frame {frame.id}")

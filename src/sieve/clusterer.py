"""Spatial clustering of change points using DBSCAN."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from sklearn.cluster import DBSCAN

from .types import BoundingBox, ClusterResult, Point2D

DBSCAN_ALPHA = 0.03
DBSCAN_MIN_PTS = 2
NOISE_LABEL = -1


@dataclass
class ClustererConfig:
    alpha: float = DBSCAN_ALPHA
    min_pts: int = DBSCAN_MIN_PTS


def neighborhood_radius(image_width: float, image_height: float, alpha: float = DBSCAN_ALPHA) -> float:
    """Return ``eps`` as a fraction of the image diagonal."""

    return alpha * math.sqrt(image_width ** 2 + image_height ** 2)


class RegionClusterer:
    """Groups change points into regions; eps scales with the image diagonal."""

    def __init__(self, config: ClustererConfig | None = None) -> None:
        self._config = config or ClustererConfig()

    def cluster(
        self,
        points: Sequence[Point2D],
        image_width: float,
        image_height: float,
    ) -> ClusterResult:
        if not points:
            return ClusterResult(labels=[], boxes=[])

        coords = np.asarray([(p[0], p[1]) for p in points], dtype=np.float64)
        eps = neighborhood_radius(image_width, image_height, self._config.alpha)
        # sklearn rejects eps == 0; a zero-sized image still clusters coincident points
        eps = max(eps, float(np.finfo(np.float64).eps))

        # min_samples counts the point itself, as in the textbook definition
        model = DBSCAN(eps=eps, min_samples=max(1, self._config.min_pts))
        labels = [int(label) for label in model.fit_predict(coords)]
        return ClusterResult(labels=labels, boxes=self._bounding_boxes(coords, labels))

    def _bounding_boxes(self, coords: np.ndarray, labels: List[int]) -> List[BoundingBox]:
        label_array = np.asarray(labels)
        cluster_count = int(label_array.max()) + 1 if label_array.size else 0
        boxes: List[BoundingBox] = []
        for cluster_id in range(cluster_count):
            members = coords[label_array == cluster_id]
            min_x, min_y = members.min(axis=0)
            max_x, max_y = members.max(axis=0)
            boxes.append(
                BoundingBox(
                    x=float(min_x),
                    y=float(min_y),
                    width=float(max_x - min_x),
                    height=float(max_y - min_y),
                )
            )
        return boxes


def cluster_points(
    points: Sequence[Point2D],
    image_width: float,
    image_height: float,
    alpha: float = DBSCAN_ALPHA,
    min_pts: int = DBSCAN_MIN_PTS,
) -> ClusterResult:
    return RegionClusterer(ClustererConfig(alpha=alpha, min_pts=min_pts)).cluster(points, image_width, image_height)

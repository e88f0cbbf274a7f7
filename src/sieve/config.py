"""Run configuration for the scene sieve."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .clusterer import ClustererConfig
from .extractor import ExtractorConfig
from .scorer import ScorerConfig
from .tracker import TrackerConfig

DEFAULT_COUNT = 20
DEFAULT_THRESHOLD = 0.5
DEFAULT_QUALITY = 80
EXECUTION_MODES = ("inline", "process")


class ConfigError(ValueError):
    """Raised when a configuration value is outside its documented range."""


@dataclass
class SieveConfig:
    count: int = DEFAULT_COUNT
    threshold: float = DEFAULT_THRESHOLD
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    scorer: ScorerConfig = field(default_factory=ScorerConfig)
    cluster: ClustererConfig = field(default_factory=ClustererConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    quality: int = DEFAULT_QUALITY
    execution: str = "inline"
    debug: bool = False
    output_path: Optional[Path] = None

    def validate(self) -> "SieveConfig":
        """Check every field and raise :class:`ConfigError` on the first violation."""

        _check_int("count", self.count, minimum=1)
        if not _is_number(self.threshold) or not 0 < self.threshold <= 1:
            raise ConfigError(f"threshold must be in range (0, 1], received: {self.threshold}")

        _check_positive("extractor.fps", self.extractor.fps)
        _check_int("extractor.scale", self.extractor.scale, minimum=16)
        _check_int("extractor.max_frames", self.extractor.max_frames, minimum=2)

        _check_int("scorer.max_features", self.scorer.max_features, minimum=8)
        if not _is_number(self.scorer.ratio_test) or not 0 < self.scorer.ratio_test < 1:
            raise ConfigError(f"scorer.ratio_test must be in range (0, 1), received: {self.scorer.ratio_test}")
        _check_int("scorer.pixel_delta", self.scorer.pixel_delta, minimum=0, maximum=254)
        grid = self.scorer.grid_fraction
        if not _is_number(grid) or not 0 < grid <= 0.1:
            raise ConfigError(f"scorer.grid_fraction must be in range (0, 0.1], received: {grid}")

        _check_positive("cluster.alpha", self.cluster.alpha)
        _check_int("cluster.min_pts", self.cluster.min_pts, minimum=1)

        iou = self.tracker.iou_threshold
        if not _is_number(iou) or not 0 <= iou <= 1:
            raise ConfigError(f"tracker.iou_threshold must be in range [0, 1], received: {iou}")
        _check_int("tracker.animation_threshold", self.tracker.animation_threshold, minimum=1)

        _check_int("quality", self.quality, minimum=1, maximum=100)
        if self.execution not in EXECUTION_MODES:
            raise ConfigError(f"execution must be one of {', '.join(EXECUTION_MODES)}, received: {self.execution}")
        return self


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value == value and value not in (float("inf"), float("-inf"))


def _check_positive(name: str, value: object) -> None:
    if not _is_number(value) or value <= 0:  # type: ignore[operator]
        raise ConfigError(f"{name} must be > 0, received: {value}")


def _check_int(name: str, value: object, minimum: int, maximum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, received: {value}")
    if maximum is None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, received: {value}")
    if maximum is not None and not minimum <= value <= maximum:
        raise ConfigError(f"{name} must be in range [{minimum}, {maximum}], received: {value}")

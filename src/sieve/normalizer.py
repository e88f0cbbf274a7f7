"""Robust normalization of raw information-gain scores into [0, 1]."""
from __future__ import annotations

from typing import List, Sequence

import numpy as np

# At or below this many positive scores the robust statistics are unreliable
MIN_ROBUST_SAMPLES = 5
# Scales MAD to a standard deviation estimate under normality
MAD_SCALE = 1.4826
LOGISTIC_STEEPNESS = 1.5
PERCENTILE_WEIGHT = 0.3


def sanitize_scores(raw_scores: Sequence[float]) -> np.ndarray:
    """Replace non-finite and non-positive scores with 0."""

    values = np.asarray(list(raw_scores), dtype=np.float64)
    if values.size == 0:
        return values
    return np.where(np.isfinite(values) & (values > 0), values, 0.0)


def normalize_scores(raw_scores: Sequence[float]) -> List[float]:
    """Map raw scores onto [0, 1] using a sample-size-aware robust hybrid.

    Small samples use min-max scaling over the positive scores. Larger ones
    blend a logistic of the robust z-score (median/MAD) with the percentile
    rank, so a single extreme scene cut cannot flatten every other score.
    Non-positive and non-finite inputs map to 0.
    """

    values = sanitize_scores(raw_scores)
    if values.size == 0:
        return []

    positive_mask = values > 0
    positive = values[positive_mask]
    normalized = np.zeros_like(values)
    if positive.size == 0:
        return normalized.tolist()

    low = float(positive.min())
    high = float(positive.max())
    if high == low:
        normalized[positive_mask] = 1.0
        return normalized.tolist()

    if positive.size <= MIN_ROBUST_SAMPLES:
        normalized[positive_mask] = (positive - low) / (high - low)
        return np.clip(normalized, 0.0, 1.0).tolist()

    median = float(np.median(positive))
    mad = float(np.median(np.abs(positive - median)))
    scale = mad * MAD_SCALE if mad > 0 else median
    z_scores = (positive - median) / scale
    logistic = 1.0 / (1.0 + np.exp(-LOGISTIC_STEEPNESS * np.clip(z_scores, -50.0, 50.0)))

    ordered = np.sort(positive)
    percentile = np.searchsorted(ordered, positive, side="right") / float(ordered.size)

    blended = logistic * (1.0 - PERCENTILE_WEIGHT) + percentile * PERCENTILE_WEIGHT
    normalized[positive_mask] = blended
    return np.clip(normalized, 0.0, 1.0).tolist()

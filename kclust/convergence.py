"""Stopping criteria evaluated after every completed Lloyd iteration."""

from __future__ import annotations

import enum
from typing import Optional

import numpy as np

__all__ = ["StopReason", "delta_below_limit", "check"]


class StopReason(enum.Enum):
    MAX_ITERATIONS = "max_iterations"
    UNCHANGED = "unchanged"          # identical to the previous iteration
    OSCILLATING = "oscillating"      # identical to the iteration before previous
    MIN_DELTA = "min_delta"          # every centroid moved at most min_delta


def delta_below_limit(dim: int, a: np.ndarray, b: np.ndarray, min_delta: float) -> bool:
    """True when every centroid moved a Euclidean distance of at most
    ``min_delta`` between ``a`` and ``b``. Always False for ``min_delta <= 0``."""
    if min_delta <= 0:
        return False
    a = np.asarray(a, dtype=np.float64).reshape(-1, dim)
    b = np.asarray(b, dtype=np.float64).reshape(-1, dim)
    moved_sq = ((a - b) ** 2).sum(axis=1)
    return bool(np.all(moved_sq <= min_delta * min_delta))


def check(
    iteration: int,
    max_iterations: int,
    centroids: np.ndarray,
    previous: np.ndarray,
    previous2: np.ndarray,
    dim: int,
    min_delta: float = 0.0,
) -> Optional[StopReason]:
    """Return the first criterion that says stop, or None to keep iterating."""
    if iteration >= max_iterations:
        return StopReason.MAX_ITERATIONS
    if np.array_equal(centroids, previous):
        return StopReason.UNCHANGED
    if np.array_equal(centroids, previous2):
        return StopReason.OSCILLATING
    if delta_below_limit(dim, previous, centroids, min_delta):
        return StopReason.MIN_DELTA
    return None

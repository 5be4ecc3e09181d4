"""Lloyd iteration stages: nearest-centroid assignment and mean update.

Buffers are flat, matching the engine boundary: points hold
``data_size * dim`` scalars, centroids ``k * dim`` and assignments
``data_size`` integers.  The ``*_view`` helpers validate a buffer and
return the 2-D (or 1-D) numpy view the stages work on.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .config import ASSIGN_TASK_SIZE, InvalidConfiguration
from .distance import DistanceKernel, default_kernel
from .system import parallel_for

__all__ = [
    "point_view",
    "centroid_view",
    "assignment_view",
    "assign",
    "update",
    "total_squared_distance",
]

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Buffer validation
# ---------------------------------------------------------------------------

def point_view(points, dim: int, name: str = "points") -> np.ndarray:
    """Read-only ``(n, dim)`` view of a flat point buffer.

    Float input is viewed without copying, anything else is converted to
    ``float32``.
    """
    if dim < 1:
        raise InvalidConfiguration(f"kclust: dimensionality has to be >= 1, was {dim}")
    flat = np.asarray(points)
    if not np.issubdtype(flat.dtype, np.floating):
        flat = flat.astype(np.float32)
    flat = flat.reshape(-1)
    if flat.size % dim != 0:
        raise InvalidConfiguration(f"kclust: {name} length must be multiple of dim={dim}, was {flat.size}")
    view = flat.reshape(-1, dim).view()
    view.flags.writeable = False
    return view


def centroid_view(centroids, dim: int) -> np.ndarray:
    """Writeable ``(k, dim)`` view sharing memory with ``centroids``."""
    if dim < 1:
        raise InvalidConfiguration(f"kclust: dimensionality has to be >= 1, was {dim}")
    if not isinstance(centroids, np.ndarray) or not np.issubdtype(centroids.dtype, np.floating):
        raise InvalidConfiguration("kclust: centroids must be a numpy array of floats")
    if not (centroids.flags.writeable and centroids.flags.c_contiguous):
        raise InvalidConfiguration("kclust: centroids must be writeable and C-contiguous")
    if centroids.size % dim != 0:
        raise InvalidConfiguration(f"kclust: centroids length must be multiple of dim={dim}, was {centroids.size}")
    return centroids.reshape(-1, dim)


def assignment_view(assignments, data_size: int, k: Optional[int] = None) -> np.ndarray:
    """Writeable flat view sharing memory with ``assignments``.

    When ``k`` is given the integer type must be able to hold ``k - 1``.
    """
    if not isinstance(assignments, np.ndarray) or not np.issubdtype(assignments.dtype, np.integer):
        raise InvalidConfiguration("kclust: assignments must be a numpy array of integers")
    if not (assignments.flags.writeable and assignments.flags.c_contiguous):
        raise InvalidConfiguration("kclust: assignments must be writeable and C-contiguous")
    if assignments.size != data_size:
        raise InvalidConfiguration(f"kclust: assignments length must be {data_size}, was {assignments.size}")
    if (k is not None) and (np.iinfo(assignments.dtype).max < k - 1):
        raise InvalidConfiguration(
            f"kclust: assignments of type {assignments.dtype} cannot hold cluster index {k - 1}"
        )
    return assignments.reshape(-1)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def assign(
    dim: int,
    points,
    centroids,
    assignments: np.ndarray,
    *,
    start: int = 0,
    stop: Optional[int] = None,
    distances: Optional[np.ndarray] = None,
    pool=None,
    kernel: Optional[DistanceKernel] = None,
    task_size: int = ASSIGN_TASK_SIZE,
) -> None:
    """Assign every point in ``[start, stop)`` to its nearest centroid.

    Ties go to the lowest centroid index.  The range is split into
    ``task_size`` partitions run on ``pool``; each task writes only its own
    slice of ``assignments`` (and ``distances`` when given, which receives
    the squared distance to the chosen centroid).
    """
    data = point_view(points, dim)
    means = point_view(centroids, dim, name="centroids")
    labels = assignment_view(assignments, data.shape[0], means.shape[0])
    if stop is None:
        stop = data.shape[0]
    if not (0 <= start <= stop <= data.shape[0]):
        raise InvalidConfiguration(f"kclust: assignment range [{start}, {stop}) outside of {data.shape[0]} points")
    if (distances is not None) and (distances.shape[0] < data.shape[0]):
        raise InvalidConfiguration(f"kclust: distances length must be at least {data.shape[0]}, was {distances.shape[0]}")
    kernel = kernel or default_kernel()
    k = means.shape[0]

    def task(a: int, b: int) -> None:
        rows = b - a
        work = np.empty((rows, dim), dtype=np.float64)
        dist = np.empty(rows, dtype=np.float64)
        best = np.full(rows, np.inf, dtype=np.float64)
        best_index = np.zeros(rows, dtype=np.intp)
        closer = np.empty(rows, dtype=bool)
        for c in range(k):
            kernel.block_distance_squared(data, a, b, means, c, dist, work)
            np.less(dist, best, out=closer)
            np.copyto(best, dist, where=closer)
            np.copyto(best_index, c, where=closer)
        labels[a:b] = best_index
        if distances is not None:
            distances[a:b] = best

    parallel_for(stop - start, task_size, task, pool=pool, start=start)


def update(dim: int, points, previous_centroids, assignments, centroids: np.ndarray) -> np.ndarray:
    """Recompute each centroid as the mean of its assigned points.

    Accumulation is a single pass in point index order.  A centroid with no
    assigned points keeps its value from ``previous_centroids``.  Returns the
    number of points per cluster.
    """
    data = point_view(points, dim)
    means = centroid_view(centroids, dim)
    previous = point_view(previous_centroids, dim, name="previous centroids")
    labels = np.asarray(assignments).reshape(-1)
    k = means.shape[0]
    if previous.shape != means.shape:
        raise InvalidConfiguration(f"kclust: previous centroids shape {previous.shape} does not match {means.shape}")
    if labels.size != data.shape[0]:
        raise InvalidConfiguration(f"kclust: assignments length must be {data.shape[0]}, was {labels.size}")
    if labels.size and (labels.min() < 0 or labels.max() >= k):
        raise InvalidConfiguration(f"kclust: assignments must lie in [0, {k})")

    counts = np.bincount(labels, minlength=k)
    sums = np.empty((k, dim), dtype=np.float64)
    for j in range(dim):
        sums[:, j] = np.bincount(labels, weights=data[:, j], minlength=k)

    filled = counts > 0
    means[filled] = sums[filled] / counts[filled, None]
    if not filled.all():
        empty = np.flatnonzero(~filled)
        _log.debug("keeping previous centroid for %d empty clusters: %s", empty.size, empty[:16].tolist())
        means[empty] = previous[empty]
    return counts


def total_squared_distance(dim: int, points, centroids, assignments, chunk_size: int = ASSIGN_TASK_SIZE) -> float:
    """Sum over points of the squared distance to their assigned centroid."""
    data = point_view(points, dim)
    means = point_view(centroids, dim, name="centroids")
    labels = np.asarray(assignments).reshape(-1)
    total = 0.0
    for a in range(0, data.shape[0], chunk_size):
        diff = data[a: a + chunk_size].astype(np.float64) - means[labels[a: a + chunk_size]]
        total += float(np.einsum("ij,ij->", diff, diff))
    return total

"""k-means++ initial centroid selection.

Centroids are chosen one at a time with probability proportional to the
squared distance of a point to its nearest already chosen centroid.  The
weighted draw uses a running accumulation over untaken points compared
against a random threshold, so no cumulative distribution array over all
points is built.  All randomness comes from :mod:`kclust.random`, which
makes the selection a pure function of the inputs and ``rng_seed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .bitset import BitSet
from .config import ClusterConfig, InvalidConfiguration
from .distance import DistanceKernel, default_kernel, select_kernel
from .progress import ClusterObserver, as_token, stage
from .random import hash_float, pcg_hash
from .stages import centroid_view, point_view
from .system import parallel_for, thread_pool

__all__ = ["SeedResult", "seed", "subsample"]

_log = logging.getLogger(__name__)


@dataclass
class SeedResult:
    """Outcome of a seeding call.

    * ``centroids`` - ``(k, dim)`` view of the centroid buffer.
    * ``indices`` - chosen indices into the (subsampled) working set, in
      selection order.
    * ``stride`` - subsample stride, ``indices[i] * stride`` is the index
      in the original point buffer.
    * ``cancelled`` - when True the centroids must not be used.
    """

    centroids: np.ndarray
    indices: List[int] = field(default_factory=list)
    stride: int = 1
    cancelled: bool = False

    @property
    def point_indices(self) -> List[int]:
        return [i * self.stride for i in self.indices]


def subsample(data: np.ndarray, stride: int) -> np.ndarray:
    """Every ``stride``-th row of ``data`` (a copy when ``stride > 1``)."""
    if stride < 1:
        raise InvalidConfiguration(f"kclust: subsample stride has to be >= 1, was {stride}")
    if stride == 1:
        return data
    return np.ascontiguousarray(data[::stride])


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _task_size(config: ClusterConfig) -> int:
    # Distance tasks cover whole partial-sum batches so that batch
    # boundaries are the same for every task layout.
    batches = -(-config.distance_batch_size // config.sum_batch_size)
    return batches * config.sum_batch_size


def _pick_point(
    threshold: float,
    prefix: np.ndarray,
    cache: np.ndarray,
    taken: BitSet,
    batch_size: int,
) -> Tuple[int, bool]:
    """Return ``(index, fell_back)`` for the first untaken point whose running
    weight reaches ``threshold``; batches whose cumulative partial sum stays
    below the threshold are skipped without scanning."""
    n = cache.shape[0]
    first_batch = int(np.searchsorted(prefix, threshold, side="left"))
    acc = float(prefix[first_batch - 1]) if first_batch > 0 else 0.0
    for start in range(first_batch * batch_size, n, batch_size):
        stop = min(start + batch_size, n)
        free = ~taken.mask(start, stop)
        weights = np.empty(stop - start + 1, dtype=np.float64)
        weights[0] = acc
        np.copyto(weights[1:], 0.0)
        np.copyto(weights[1:], cache[start:stop], where=free)
        running = np.cumsum(weights)[1:]
        hits = np.flatnonzero(free & (running >= threshold))
        if hits.size:
            return start + int(hits[0]), False
        acc = float(running[-1])
    # Rounding left the threshold unreached, take the last untaken point.
    return taken.last_clear(), True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def seed(
    dim: int,
    subsample_stride: int,
    k: int,
    points,
    centroids: Optional[np.ndarray] = None,
    *,
    rng_seed: int = 0,
    progress=None,
    pool=None,
    kernel: Optional[DistanceKernel] = None,
    observer: Optional[ClusterObserver] = None,
    config: Optional[ClusterConfig] = None,
) -> SeedResult:
    """Select ``k`` initial centroids with k-means++.

    Parameters
    ----------
    dim:
        Number of scalars per point.
    subsample_stride:
        Only every ``subsample_stride``-th point takes part in seeding
        (``1`` disables subsampling).
    k:
        Number of centroids to choose.
    points:
        Flat buffer of ``data_size * dim`` scalars.
    centroids:
        Optional float buffer of ``k * dim`` scalars that receives the
        result; a new ``(k, dim)`` array is allocated when omitted.
    rng_seed:
        Seed of the hash based generator. The first centroid is
        ``pcg_hash(rng_seed) % data_size``, the draw for centroid ``c`` uses
        ``hash_float(rng_seed + c, total)``.
    progress:
        Optional predicate (or :class:`~kclust.progress.CancellationToken`)
        polled with ``count / k * 0.5`` before every selection. A false
        return cancels seeding.

    Returns
    -------
    SeedResult
        ``cancelled`` is set when the progress predicate stopped the run.
    """
    config = config or ClusterConfig()
    observer = observer or ClusterObserver()
    token = as_token(progress)
    if k < 1:
        raise InvalidConfiguration(f"kclust: cluster count has to be at least 1, was {k}")
    data = subsample(point_view(points, dim), subsample_stride)
    n = data.shape[0]
    if n < k:
        raise InvalidConfiguration(f"kclust: seeding needs at least k={k} points, has {n}")
    if centroids is None:
        centroids = np.empty((k, dim), dtype=data.dtype)
    means = centroid_view(centroids, dim)
    if means.shape[0] != k:
        raise InvalidConfiguration(f"kclust: centroids hold {means.shape[0]} means, expected k={k}")
    if kernel is None:
        kernel = select_kernel(config.kernel) if config.kernel else default_kernel()

    result = SeedResult(centroids=means, stride=subsample_stride)
    sum_batch = config.sum_batch_size
    task_size = _task_size(config)

    with thread_pool(pool, config.threads) as pool, stage(observer, "seed"):
        taken = BitSet(n)
        cache = np.zeros(n, dtype=np.float64)

        # First centroid, uniformly at random.
        index = pcg_hash(rng_seed) % n
        taken.set(index)
        means[0] = data[index]
        result.indices.append(index)
        observer.centroid_selected(1, index, means)

        def initial_distances(a: int, b: int) -> None:
            work = np.empty((b - a, dim), dtype=np.float64)
            kernel.block_distance_squared(data, a, b, means, 0, cache[a:b], work)

        parallel_for(n, task_size, initial_distances, pool=pool)
        cache[index] = 0.0

        def partial_sums(a: int, b: int) -> np.ndarray:
            weights = np.where(taken.mask(a, b), 0.0, cache[a:b])
            return np.add.reduceat(weights, np.arange(0, b - a, sum_batch))

        count = 1
        while count < k:
            if not token.checkpoint(count / k * 0.5):
                result.cancelled = True
                break

            # Total weight of untaken points: parallel partial sums, serial prefix.
            with stage(observer, "seed.distance_sum"):
                partial = np.concatenate(parallel_for(n, task_size, partial_sums, pool=pool))
                prefix = np.cumsum(partial)
                total = float(prefix[-1])

            with stage(observer, "seed.pick_point"):
                threshold = hash_float(rng_seed + count, total)
                index, fell_back = _pick_point(threshold, prefix, cache, taken, sum_batch)
            if fell_back:
                _log.debug("threshold %.6g of %.6g unreached, fell back to point %d", threshold, total, index)

            taken.set(index)
            means[count] = data[index]
            result.indices.append(index)
            count += 1
            observer.centroid_selected(count, index, means)

            if count < k:
                # Keep the squared distance to the nearest chosen centroid.
                def update_distances(a: int, b: int, mean_index: int = count - 1) -> None:
                    work = np.empty((b - a, dim), dtype=np.float64)
                    dist = np.empty(b - a, dtype=np.float64)
                    kernel.block_distance_squared(data, a, b, means, mean_index, dist, work)
                    np.minimum(cache[a:b], dist, out=cache[a:b], where=~taken.mask(a, b))

                with stage(observer, "seed.distance_update"):
                    parallel_for(n, task_size, update_distances, pool=pool)

    _log.debug("seeded %d of %d centroids from %d points (stride %d)", len(result.indices), k, n, subsample_stride)
    return result

"""Mini-batch k-means ("Web-Scale K-Means Clustering", Sculley 2010).

Instead of full Lloyd passes, centroids follow running means over random
batches of points.  Initialisation runs several k-means++ seedings on a
small random batch and keeps the one with the lowest squared distance
total on an independent validation batch.  A final full assignment pass
labels every point.  Random batches come from the hash based
:class:`~kclust.random.PcgRandom` stream, so runs are reproducible.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .config import (
    MINIBATCH_INIT_ATTEMPTS,
    MINIBATCH_INIT_FACTOR,
    UINT32_MASK,
    ClusterConfig,
    InvalidConfiguration,
)
from .distance import DistanceKernel, default_kernel, select_kernel
from .kmeans import ClusterResult, Status, validate
from .progress import CancellationToken, ClusterObserver, as_token, stage
from .random import PcgRandom, pcg_hash_array
from .seed import seed
from .stages import assign
from .system import Timer, thread_pool

__all__ = ["make_random_batch", "initialize", "minibatch_cluster"]

_log = logging.getLogger(__name__)


def make_random_batch(data: np.ndarray, rng: PcgRandom, out: np.ndarray) -> np.ndarray:
    """Fill the rows of ``out`` with distinct random rows of ``data``.

    Candidate indices are ``pcg_hash(s) % n`` for consecutive seeds ``s``
    starting at ``rng()``; repeats are skipped.  Returns the chosen indices.
    """
    n = data.shape[0]
    size = out.shape[0]
    if size > n:
        raise InvalidConfiguration(f"kclust: batch of {size} points exceeds {n} available points")
    chosen = np.empty(size, dtype=np.int64)
    seen = set()
    filled = 0
    seed_value = rng()
    while filled < size:
        chunk = max(size - filled, 64)
        seeds = (seed_value + np.arange(chunk, dtype=np.uint64)) & UINT32_MASK
        seed_value = (seed_value + chunk) & UINT32_MASK
        for index in (pcg_hash_array(seeds) % np.uint32(n)).tolist():
            if index in seen:
                continue
            seen.add(index)
            chosen[filled] = index
            filled += 1
            if filled == size:
                break
    out[...] = data[chosen]
    return chosen


def initialize(
    dim: int,
    data: np.ndarray,
    means: np.ndarray,
    rng: PcgRandom,
    attempts: int = MINIBATCH_INIT_ATTEMPTS,
    token: Optional[CancellationToken] = None,
    *,
    pool=None,
    kernel: Optional[DistanceKernel] = None,
    observer: Optional[ClusterObserver] = None,
    config: Optional[ClusterConfig] = None,
) -> bool:
    """Pick the best of ``attempts`` k-means++ seedings into ``means``.

    Returns False when ``token`` cancelled the initialisation.
    """
    token = token or CancellationToken()
    observer = observer or ClusterObserver()
    k = means.shape[0]
    size = min(MINIBATCH_INIT_FACTOR * k, data.shape[0])
    centroid_batch = np.empty((size, dim), dtype=data.dtype)
    validation_batch = np.empty((size, dim), dtype=data.dtype)
    make_random_batch(data, rng, centroid_batch)
    make_random_batch(data, rng, validation_batch)

    candidate = np.empty_like(means)
    labels = np.empty(size, dtype=np.int32)
    distances = np.empty(size, dtype=np.float64)
    best = np.inf
    for attempt in range(attempts):
        if not token.checkpoint(attempt / attempts * 0.3):
            return False
        seed(
            dim, 1, k, centroid_batch, candidate,
            rng_seed=rng(), pool=pool, kernel=kernel, observer=observer, config=config,
        )
        with stage(observer, "assign"):
            assign(dim, validation_batch, candidate, labels, distances=distances, pool=pool, kernel=kernel)
        total = float(distances.sum())
        _log.debug("initialisation attempt %d: validation distance total %.6g", attempt, total)
        if total < best:
            best = total
            means[...] = candidate
    return True


def _update_running_means(means: np.ndarray, counts: np.ndarray, points: np.ndarray, labels: np.ndarray) -> None:
    # Each batch point pulls its centroid toward itself with rate 1/count,
    # grouped per cluster: the result is the running mean over all points
    # the cluster has seen so far.
    k, dim = means.shape
    batch_counts = np.bincount(labels, minlength=k)
    touched = np.flatnonzero(batch_counts)
    sums = np.empty((k, dim), dtype=np.float64)
    for j in range(dim):
        sums[:, j] = np.bincount(labels, weights=points[:, j], minlength=k)
    new_counts = counts[touched] + batch_counts[touched]
    current = means[touched].astype(np.float64)
    means[touched] = current + (sums[touched] - batch_counts[touched, None] * current) / new_counts[:, None]
    counts[touched] = new_counts


def minibatch_cluster(
    dim: int,
    points,
    centroids: np.ndarray,
    assignments: np.ndarray,
    batch_size: int = 1024,
    passes_over_data: float = 1.0,
    progress=None,
    *,
    init_attempts: int = MINIBATCH_INIT_ATTEMPTS,
    rng_seed: int = 1,
    observer: Optional[ClusterObserver] = None,
    config: Optional[ClusterConfig] = None,
    pool=None,
) -> ClusterResult:
    """Mini-batch k-means over the same buffers as :func:`kclust.kmeans.cluster`.

    ``batch_size`` points are drawn per step until ``passes_over_data``
    times the data size has been drawn.  Progress fractions: ``[0, 0.3)``
    initialisation, ``[0.3, 0.7)`` batches, ``[0.7, 1]`` final assignment.
    The result counts mini-batch steps in ``iterations``.
    """
    config = config or ClusterConfig()
    config.validate()
    if batch_size < 1:
        raise InvalidConfiguration(f"kclust: batch size has to be >= 1, was {batch_size}")
    if passes_over_data < 0.0001:
        raise InvalidConfiguration(f"kclust: passes over data must be positive, was {passes_over_data}")
    if init_attempts < 1:
        raise InvalidConfiguration(f"kclust: initialisation attempts has to be >= 1, was {init_attempts}")
    data, means, labels = validate(dim, points, centroids, assignments)
    observer = observer or ClusterObserver()
    token = as_token(progress)
    kernel = select_kernel(config.kernel) if config.kernel else default_kernel()
    n, k = data.shape[0], means.shape[0]
    batch_size = min(n, batch_size)
    rng = PcgRandom(rng_seed)
    timer = Timer()
    _log.info("mini-batch clustering %d points of dim %d into %d clusters, batch %d", n, dim, k, batch_size)

    steps = 0
    with thread_pool(pool, config.threads) as pool:
        with stage(observer, "initialize"):
            ok = initialize(
                dim, data, means, rng, init_attempts, token,
                pool=pool, kernel=kernel, observer=observer, config=config,
            )
        if ok:
            counts = np.zeros(k, dtype=np.float64)
            batch_points = np.empty((batch_size, dim), dtype=data.dtype)
            batch_labels = np.empty(batch_size, dtype=np.int32)
            done, limit = 0.0, n * passes_over_data
            while done < limit:
                if not token.checkpoint(0.3 + done / limit * 0.4):
                    break
                make_random_batch(data, rng, batch_points)
                with stage(observer, "assign"):
                    assign(dim, batch_points, means, batch_labels, pool=pool, kernel=kernel)
                with stage(observer, "update"):
                    previous = means.copy()
                    _update_running_means(means, counts, batch_points, batch_labels)
                done += batch_size
                steps += 1
                observer.iteration_end(steps, means, previous)

            # Label every point against the final centroids.
            with stage(observer, "assign"):
                for start in range(0, n, config.assign_batch_size):
                    if not token.checkpoint(0.7 + start / n * 0.3):
                        break
                    assign(
                        dim, data, means, labels,
                        start=start, stop=min(start + config.assign_batch_size, n),
                        pool=pool, kernel=kernel, task_size=config.assign_task_size,
                    )

    status = Status.CANCELLED if token.cancelled else Status.COMPLETED
    result = ClusterResult(status, steps, seconds=timer.stop())
    _log.info("mini-batch clustering %s after %d steps in %.3fs", status.value, steps, result.seconds)
    observer.finished(result)
    return result

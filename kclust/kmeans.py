"""Parallel k-means clustering (k-means++ seeding, Lloyd iterations).

:func:`cluster` is the engine entry point.  It works on caller owned flat
buffers: a read-only point buffer, a centroid buffer whose size implies
``k`` and an assignment buffer with one integer per point.  The loop
alternates the assignment and update stages of :mod:`kclust.stages` until
a criterion of :mod:`kclust.convergence` stops it or the progress
predicate cancels the run.

:class:`KMeans` wraps the engine for ``(n, dim)`` arrays.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import DEFAULT_MAX_ITERATIONS, ClusterConfig, InvalidConfiguration
from .convergence import StopReason, check
from .distance import default_kernel, select_kernel
from .progress import ClusterObserver, as_token, stage
from .seed import seed
from .stages import assign, assignment_view, centroid_view, point_view, update
from .system import Timer, thread_pool

__all__ = ["Status", "ClusterResult", "cluster", "validate", "KMeans"]

_log = logging.getLogger(__name__)


class Status(enum.Enum):
    COMPLETED = "completed"  # ran the maximum number of iterations
    CONVERGED = "converged"  # a convergence criterion stopped the loop
    CANCELLED = "cancelled"  # the progress predicate abandoned the run


@dataclass
class ClusterResult:
    """Outcome of a clustering call.

    ``iterations`` counts completed iterations. ``int(result)`` gives the
    plain iteration count with 0 meaning "cancelled".
    """

    status: Status
    iterations: int = 0
    stop_reason: Optional[StopReason] = None
    seconds: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.status is Status.CANCELLED

    @property
    def converged(self) -> bool:
        return self.status is Status.CONVERGED

    def __int__(self) -> int:
        return 0 if self.cancelled else self.iterations

    def __bool__(self) -> bool:
        return not self.cancelled


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate(dim: int, points, centroids, assignments, subsample_stride: int = 1):
    """Check every precondition of :func:`cluster` without mutating anything.

    Returns the ``(points, centroids, assignments)`` views.
    """
    data = point_view(points, dim)
    means = centroid_view(centroids, dim)
    n, k = data.shape[0], means.shape[0]
    if k < 1:
        raise InvalidConfiguration(f"kclust: cluster count has to be at least 1, was {k}")
    if n < k:
        raise InvalidConfiguration(
            f"kclust: points length ({data.size}) must be at least as long as centroids ({means.size})"
        )
    labels = assignment_view(assignments, n, k)
    if subsample_stride < 1:
        raise InvalidConfiguration(f"kclust: subsample stride has to be >= 1, was {subsample_stride}")
    if -(-n // subsample_stride) < k:
        raise InvalidConfiguration(
            f"kclust: subsample stride {subsample_stride} leaves {-(-n // subsample_stride)} points for k={k}"
        )
    return data, means, labels


def cluster(
    dim: int,
    subsample_stride: int,
    points,
    centroids: np.ndarray,
    assignments: np.ndarray,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    min_delta: float = 0.0,
    progress=None,
    *,
    rng_seed: int = 0,
    observer: Optional[ClusterObserver] = None,
    config: Optional[ClusterConfig] = None,
    pool=None,
) -> ClusterResult:
    """Cluster ``points`` into ``len(centroids) // dim`` clusters.

    Parameters
    ----------
    dim:
        Number of scalars per point (``>= 1``).
    subsample_stride:
        Decimation applied to the points considered while seeding.
    points:
        Flat read-only buffer of ``data_size * dim`` scalars.
    centroids:
        Writeable float buffer of ``k * dim`` scalars, receives the final
        cluster centres.
    assignments:
        Writeable integer buffer of ``data_size`` entries, receives the
        cluster index of every point.
    max_iterations:
        Upper bound on Lloyd iterations (``>= 1``).
    min_delta:
        Stop once no centroid moved more than this distance; ``<= 0``
        disables the check.
    progress:
        Optional ``progress(fraction) -> bool`` predicate polled before each
        seeding selection and each assignment batch. Returning a false value
        abandons the run.
    rng_seed:
        Seed of the k-means++ draws.

    Returns
    -------
    ClusterResult
        ``CANCELLED`` when the predicate stopped the run (the assignment
        buffer is untouched if that happened while seeding), ``CONVERGED``
        when a convergence criterion held, ``COMPLETED`` when
        ``max_iterations`` were run.

    Raises
    ------
    InvalidConfiguration
        Before any work starts, when the buffers or parameters are
        inconsistent.
    """
    config = config or ClusterConfig()
    config.validate()
    if max_iterations < 1:
        raise InvalidConfiguration(f"kclust: max iterations has to be >= 1, was {max_iterations}")
    data, means, labels = validate(dim, points, centroids, assignments, subsample_stride)
    observer = observer or ClusterObserver()
    token = as_token(progress)
    kernel = select_kernel(config.kernel) if config.kernel else default_kernel()
    n, k = data.shape[0], means.shape[0]
    batch = config.assign_batch_size
    timer = Timer()
    _log.info("clustering %d points of dim %d into %d clusters (kernel %s)", n, dim, k, kernel.name)

    with thread_pool(pool, config.threads) as pool:
        seeded = seed(
            dim, subsample_stride, k, data, means,
            rng_seed=rng_seed, progress=token, pool=pool,
            kernel=kernel, observer=observer, config=config,
        )
        if seeded.cancelled:
            result = ClusterResult(Status.CANCELLED, 0, seconds=timer.stop())
            observer.finished(result)
            return result

        previous = means.copy()
        previous2 = means.copy()
        iteration = 0
        reason = None
        while True:
            with stage(observer, "assign"):
                for start in range(0, n, batch):
                    if not token.checkpoint(0.5 + (iteration + start / n) / max_iterations * 0.5):
                        break
                    assign(
                        dim, data, means, labels,
                        start=start, stop=min(start + batch, n),
                        pool=pool, kernel=kernel, task_size=config.assign_task_size,
                    )
            if token.cancelled:
                break

            previous2[...] = previous
            previous[...] = means
            with stage(observer, "update"):
                update(dim, data, previous, labels, means)
            iteration += 1
            observer.iteration_end(iteration, means, previous)

            with stage(observer, "check_delta"):
                reason = check(iteration, max_iterations, means, previous, previous2, dim, min_delta)
            if reason is not None:
                break

    if token.cancelled:
        status = Status.CANCELLED
    elif reason is StopReason.MAX_ITERATIONS:
        status = Status.COMPLETED
    else:
        status = Status.CONVERGED
    result = ClusterResult(status, iteration, reason, seconds=timer.stop())
    _log.info("clustering %s after %d iterations in %.3fs", status.value, iteration, result.seconds)
    observer.finished(result)
    return result


class KMeans:
    """Estimator style wrapper around :func:`cluster` for ``(n, dim)`` data.

    After :meth:`fit`, ``centroids`` holds the ``(k, dim)`` cluster centres,
    ``labels`` the cluster of every training point and ``result`` the
    :class:`ClusterResult`.  A cancelled fit leaves ``centroids`` and
    ``labels`` as None.
    """

    def __init__(
        self,
        k: int = 8,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        min_delta: float = 0.0,
        subsample_stride: int = 1,
        rng_seed: int = 0,
        config: Optional[ClusterConfig] = None,
        observer: Optional[ClusterObserver] = None,
    ) -> None:
        self.k = k
        self.max_iterations = max_iterations
        self.min_delta = min_delta
        self.subsample_stride = subsample_stride
        self.rng_seed = rng_seed
        self.config = config
        self.observer = observer
        self.centroids = None
        self.labels = None
        self.result = None

    def __repr__(self) -> str:
        return f"KMeans(k={self.k}, max_iterations={self.max_iterations}, min_delta={self.min_delta})"

    @staticmethod
    def _as_matrix(x) -> np.ndarray:
        x = np.asarray(x)
        if not np.issubdtype(x.dtype, np.floating):
            x = x.astype(np.float32)
        if x.ndim == 1:
            x = x[:, None]
        if x.ndim != 2:
            raise InvalidConfiguration(f"kclust: data must be 2-D (n, dim), was {x.ndim}-D")
        return np.ascontiguousarray(x)

    def fit(self, x, progress=None) -> "KMeans":
        x = self._as_matrix(x)
        centroids = np.empty((self.k, x.shape[1]), dtype=x.dtype)
        labels = np.empty(x.shape[0], dtype=np.int32)
        self.result = cluster(
            x.shape[1], self.subsample_stride, x, centroids, labels,
            self.max_iterations, self.min_delta, progress,
            rng_seed=self.rng_seed, observer=self.observer, config=self.config,
        )
        if self.result.cancelled:
            self.centroids, self.labels = None, None
        else:
            self.centroids, self.labels = centroids, labels
        return self

    def predict(self, x) -> np.ndarray:
        if self.centroids is None:
            raise RuntimeError("KMeans.predict called before a completed fit")
        x = self._as_matrix(x)
        labels = np.empty(x.shape[0], dtype=np.int32)
        assign(x.shape[1], x, self.centroids, labels)
        return labels

    def fit_predict(self, x, progress=None) -> Optional[np.ndarray]:
        return self.fit(x, progress=progress).labels

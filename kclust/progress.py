"""Cooperative cancellation and run observers.

A run polls its :class:`CancellationToken` only at defined checkpoints
(assignment batch boundaries and seeding selection boundaries).  Once the
caller's predicate returns a false value the token stays cancelled and all
further work of that call is abandoned.

Observers replace global profiling hooks: the engine calls an injected
:class:`ClusterObserver` at stage boundaries.  The base class does nothing.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

import numpy as np

__all__ = [
    "CancellationToken",
    "as_token",
    "stage",
    "ClusterObserver",
    "LoggingObserver",
    "MultiObserver",
]

_log = logging.getLogger(__name__)


class CancellationToken:
    """Wraps an optional ``progress(fraction) -> bool`` predicate."""

    def __init__(self, progress: Optional[Callable[[float], bool]] = None) -> None:
        self.progress = progress
        self._cancelled = False
        self.last_fraction = 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def checkpoint(self, fraction: float) -> bool:
        """Report ``fraction`` (clamped to ``[0, 1]``), return ``True`` to continue."""
        if self._cancelled:
            return False
        self.last_fraction = min(1.0, max(0.0, float(fraction)))
        if (self.progress is not None) and (not self.progress(self.last_fraction)):
            self._cancelled = True
            _log.info("run cancelled by progress callback at %.3f", self.last_fraction)
        return not self._cancelled


def as_token(progress) -> CancellationToken:
    """Return ``progress`` if it already is a token, else wrap the predicate."""
    if isinstance(progress, CancellationToken):
        return progress
    return CancellationToken(progress)


class ClusterObserver:
    """No-op observer, subclass and override the hooks of interest."""

    def stage_begin(self, name: str) -> None:
        pass

    def stage_end(self, name: str) -> None:
        pass

    def centroid_selected(self, count: int, point_index: int, centroids: np.ndarray) -> None:
        pass

    def iteration_end(self, iteration: int, centroids: np.ndarray, previous: np.ndarray) -> None:
        pass

    def finished(self, result) -> None:
        pass


class LoggingObserver(ClusterObserver):
    """Logs seeding picks and per-iteration centroid movement at DEBUG."""

    def __init__(self, logger: Optional[logging.Logger] = None, precision: int = 3) -> None:
        self.logger = logger or _log
        self.precision = precision

    def _format(self, centroids: np.ndarray) -> str:
        return " ".join(
            "(" + ", ".join(f"{v:.{self.precision}f}" for v in row) + ")"
            for row in np.asarray(centroids)
        )

    def centroid_selected(self, count, point_index, centroids):
        self.logger.debug("means x%d seed: point %d %s", centroids.shape[1], point_index, self._format(centroids[:count]))

    def iteration_end(self, iteration, centroids, previous):
        moved = np.sqrt(((np.asarray(centroids, dtype=np.float64) - previous) ** 2).sum(axis=1))
        self.logger.debug("iteration %d: max centroid move %.6g", iteration, float(moved.max()))

    def finished(self, result):
        self.logger.debug("finished: %s", result)


class MultiObserver(ClusterObserver):
    """Forwards every hook to each of ``observers`` in order."""

    def __init__(self, observers: Iterable[ClusterObserver]) -> None:
        self.observers = list(observers)

    def stage_begin(self, name):
        for o in self.observers: o.stage_begin(name)

    def stage_end(self, name):
        for o in self.observers: o.stage_end(name)

    def centroid_selected(self, count, point_index, centroids):
        for o in self.observers: o.centroid_selected(count, point_index, centroids)

    def iteration_end(self, iteration, centroids, previous):
        for o in self.observers: o.iteration_end(iteration, centroids, previous)

    def finished(self, result):
        for o in self.observers: o.finished(result)


class _Stage:
    # Context manager bracketing a named stage on an observer.
    __slots__ = ("observer", "name")

    def __init__(self, observer: ClusterObserver, name: str) -> None:
        self.observer = observer
        self.name = name

    def __enter__(self):
        self.observer.stage_begin(self.name)
        return self

    def __exit__(self, *exc):
        self.observer.stage_end(self.name)
        return False


def stage(observer: ClusterObserver, name: str) -> _Stage:
    """``with stage(observer, "assign"): ...`` brackets a stage."""
    return _Stage(observer, name)

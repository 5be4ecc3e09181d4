"""Squared Euclidean distance kernels.

Every stage of the clustering engine measures distances through a
:class:`DistanceKernel`.  Two interchangeable implementations exist:

* :class:`VectorKernel` walks the coordinates ``lanes`` (8 or 4) scalars at
  a time with a horizontal sum per step and a scalar remainder, and
  evaluates whole blocks of points with numpy ufuncs writing into caller
  owned scratch buffers.
* :class:`ScalarKernel` is a plain per-coordinate loop for hosts where numpy
  reports no vector unit.

The implementation is chosen once per process by :func:`default_kernel`
(or explicitly with :func:`select_kernel`), never per call.  All kernels
accumulate in ``float64`` and agree within floating point rounding.
"""

from __future__ import annotations

import functools
import importlib
import logging
import os
from typing import Dict, Optional

import numpy as np

from .config import KERNEL_NAMES, InvalidConfiguration

__all__ = [
    "DistanceKernel",
    "ScalarKernel",
    "VectorKernel",
    "cpu_features",
    "select_kernel",
    "default_kernel",
]

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------

class DistanceKernel:
    """Interface of a squared distance kernel."""

    name = "abstract"
    lanes = 1

    def distance_squared(self, points_a, index_a: int, points_b, index_b: int, dim: int) -> float:
        """Return the squared distance between point ``index_a`` of the flat
        buffer ``points_a`` and point ``index_b`` of ``points_b``.

        Indices are point indices; element offsets are ``index * dim``.
        """
        raise NotImplementedError

    def block_distance_squared(
        self,
        points: np.ndarray,
        start: int,
        stop: int,
        centroids: np.ndarray,
        index: int,
        out: np.ndarray,
        work: np.ndarray,
    ) -> np.ndarray:
        """Write squared distances of rows ``[start, stop)`` of the 2-D
        ``points`` to row ``index`` of the 2-D ``centroids`` into
        ``out[:stop-start]`` and return that slice.

        ``work`` is a ``float64`` scratch array of at least
        ``(stop-start, dim)`` owned by the calling task.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(lanes={self.lanes})"


class ScalarKernel(DistanceKernel):
    name = "scalar"
    lanes = 1

    def distance_squared(self, points_a, index_a, points_b, index_b, dim):
        a = index_a * dim
        b = index_b * dim
        d = 0.0
        for i in range(dim):
            delta = float(points_a[a + i]) - float(points_b[b + i])
            d += delta * delta
        return d

    def block_distance_squared(self, points, start, stop, centroids, index, out, work):
        dim = points.shape[1]
        flat_points = points.reshape(-1)
        flat_centroids = centroids.reshape(-1)
        for row, i in enumerate(range(start, stop)):
            out[row] = self.distance_squared(flat_points, i, flat_centroids, index, dim)
        return out[: stop - start]


class VectorKernel(DistanceKernel):
    """Lane-wise kernel.

    ``lanes`` sets the step width of :meth:`distance_squared` only.  The
    block form is lane-agnostic: it subtracts and reduces whole rows with
    numpy, which vectorises over the coordinates on its own, so
    ``vector4`` and ``vector8`` produce identical blocks.
    """

    def __init__(self, lanes: int = 8) -> None:
        if lanes not in (4, 8):
            raise InvalidConfiguration(f"kclust: vector kernel lanes must be 4 or 8, was {lanes}")
        self.lanes = lanes
        self.name = f"vector{lanes}"

    def distance_squared(self, points_a, index_a, points_b, index_b, dim):
        a = np.asarray(points_a)[index_a * dim: (index_a + 1) * dim]
        b = np.asarray(points_b)[index_b * dim: (index_b + 1) * dim]
        head = dim - (dim % self.lanes)
        d = 0.0
        if head:
            delta = a[:head].astype(np.float64) - b[:head]
            # One horizontal sum per step of "lanes" scalars.
            d = float((delta * delta).reshape(-1, self.lanes).sum(axis=1).sum())
        for i in range(head, dim):
            delta = float(a[i]) - float(b[i])
            d += delta * delta
        return d

    def block_distance_squared(self, points, start, stop, centroids, index, out, work):
        rows = stop - start
        diff = work[:rows]
        np.subtract(points[start:stop], centroids[index], out=diff, dtype=np.float64)
        return np.einsum("ij,ij->i", diff, diff, out=out[:rows])


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def cpu_features() -> Dict[str, bool]:
    """Return the CPU feature flags numpy detected at import time."""
    for module_name in ("numpy._core._multiarray_umath", "numpy.core._multiarray_umath"):
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            continue
        features = getattr(module, "__cpu_features__", None)
        if features is not None:
            return dict(features)
    return {}


def _kernel_for_features(features: Dict[str, bool]) -> DistanceKernel:
    if features.get("AVX") or features.get("AVX2") or features.get("AVX512F"):
        return VectorKernel(8)
    if features.get("ASIMD") or features.get("NEON") or features.get("SSE2") or features.get("SSE"):
        return VectorKernel(4)
    return ScalarKernel()


def select_kernel(name: Optional[str] = None) -> DistanceKernel:
    """Return a kernel by ``name`` (``"scalar"``, ``"vector4"``,
    ``"vector8"``), from ``KCLUST_KERNEL`` when ``name`` is None, or from the
    detected CPU features when neither is given."""
    if name is None:
        name = os.environ.get("KCLUST_KERNEL") or None
    if name is None:
        kernel = _kernel_for_features(cpu_features())
        _log.debug("selected distance kernel %s from CPU features", kernel.name)
        return kernel
    name = name.strip().lower()
    if name not in KERNEL_NAMES:
        raise InvalidConfiguration(f"kclust: unknown kernel {name!r}, expected one of {KERNEL_NAMES}")
    if name == "scalar":
        return ScalarKernel()
    return VectorKernel(int(name[len("vector"):]))


@functools.lru_cache(maxsize=None)
def default_kernel() -> DistanceKernel:
    """Process wide kernel, selected on first use."""
    return select_kernel()

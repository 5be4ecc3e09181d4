"""Shared constants, run configuration and the configuration error type."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .system import default_threads

__all__ = [
    "ASSIGN_BATCH_SIZE",
    "SUM_BATCH_SIZE",
    "DISTANCE_BATCH_SIZE",
    "DEFAULT_MAX_ITERATIONS",
    "MINIBATCH_INIT_ATTEMPTS",
    "KERNEL_NAMES",
    "ClusterConfig",
    "InvalidConfiguration",
]

# ---------------------------------------------------------------------------
# Configuration constants
ASSIGN_BATCH_SIZE = 256 * 1024     # points per assignment batch (progress checkpoint)
ASSIGN_TASK_SIZE = 16 * 1024       # points per parallel task inside a batch
SUM_BATCH_SIZE = 1024              # points per partial sum while seeding
DISTANCE_BATCH_SIZE = 8 * 1024     # points per task for seeding distance updates
DEFAULT_MAX_ITERATIONS = 1024
MINIBATCH_INIT_ATTEMPTS = 3
MINIBATCH_INIT_FACTOR = 10         # initial batch holds this many points per cluster

# PCG constants (https://www.reedbeta.com/blog/hash-functions-for-gpu-rendering/)
PCG_MULTIPLIER = 747796405
PCG_INCREMENT = 2891336453
PCG_WORD_MULTIPLIER = 277803737
UINT32_MASK = 0xFFFFFFFF

KERNEL_NAMES = ("scalar", "vector4", "vector8")


class InvalidConfiguration(ValueError):
    """Raised before any work starts when inputs or settings are inconsistent."""


# ---------------------------------------------------------------------------
# Data structures
@dataclass
class ClusterConfig:
    """Execution policy for a clustering run.

    * ``assign_batch_size`` - points assigned between two progress checkpoints.
    * ``assign_task_size`` - points handled by one parallel assignment task.
    * ``sum_batch_size`` - points per partial sum while seeding.
    * ``distance_batch_size`` - points per task while seeding.
    * ``num_threads`` - worker threads, ``None`` means ``os.cpu_count()``.
    * ``kernel`` - distance kernel name, ``None`` picks one from the CPU.
    """

    assign_batch_size: int = ASSIGN_BATCH_SIZE
    assign_task_size: int = ASSIGN_TASK_SIZE
    sum_batch_size: int = SUM_BATCH_SIZE
    distance_batch_size: int = DISTANCE_BATCH_SIZE
    num_threads: Optional[int] = None
    kernel: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "ClusterConfig":
        """Build a config from ``KCLUST_*`` environment variables.

        Keyword arguments that are not None take precedence over the
        environment.
        """
        values = {}
        threads = os.environ.get("KCLUST_NUM_THREADS")
        if threads:
            values["num_threads"] = _parse_int("KCLUST_NUM_THREADS", threads)
        batch = os.environ.get("KCLUST_ASSIGN_BATCH_SIZE")
        if batch:
            values["assign_batch_size"] = _parse_int("KCLUST_ASSIGN_BATCH_SIZE", batch)
        kernel = os.environ.get("KCLUST_KERNEL")
        if kernel:
            values["kernel"] = kernel.strip().lower()
        values.update({key: value for (key, value) in overrides.items() if value is not None})
        config = cls(**values)
        config.validate()
        return config

    @property
    def threads(self) -> int:
        if self.num_threads is None:
            return default_threads()
        return self.num_threads

    def validate(self) -> None:
        for name in ("assign_batch_size", "assign_task_size", "sum_batch_size", "distance_batch_size"):
            value = getattr(self, name)
            if value < 1:
                raise InvalidConfiguration(f"kclust: {name} has to be >= 1, was {value}")
        if (self.num_threads is not None) and (self.num_threads < 1):
            raise InvalidConfiguration(f"kclust: num_threads has to be >= 1, was {self.num_threads}")
        if (self.kernel is not None) and (self.kernel not in KERNEL_NAMES):
            raise InvalidConfiguration(f"kclust: unknown kernel {self.kernel!r}, expected one of {KERNEL_NAMES}")


def _parse_int(name: str, text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise InvalidConfiguration(f"kclust: {name} must be an integer, was {text!r}") from None

import logging

import numpy as np

from kclust import LoggingObserver, cluster
from kclust.profiling import ProfilingObserver, mem_use
from kclust.progress import MultiObserver
from kclust.random import box


def test_mem_use():
    assert mem_use() > 0
    assert mem_use(unit="KB") > mem_use(unit="MB")


def test_profiling_observer_counts_stages():
    profiler = ProfilingObserver()
    assert profiler.summary() == "No stages have been observed."
    points = box(3000, 2, seed=50)
    centroids = np.zeros(10, dtype=np.float32)
    labels = np.zeros(3000, dtype=np.int32)
    result = cluster(2, 1, points, centroids, labels, observer=profiler)
    assert profiler.executions("seed") == 1
    assert profiler.executions("seed.distance_sum") == 4
    assert profiler.executions("update") == result.iterations
    assert profiler.executions("assign") == result.iterations
    assert profiler.executions("never") == 0
    assert profiler.seconds("assign") >= 0.0
    summary = profiler.summary()
    assert summary.splitlines()[0].split() == ["Stage", "Time", "MDelta", "Peak", "Execs"]
    assert "assign" in summary and "check_delta" in summary


def test_logging_observer(caplog):
    points = np.array([0, 0, 0, 1, 10, 0, 10, 1], dtype=np.float32)
    centroids = np.zeros(4, dtype=np.float32)
    labels = np.zeros(4, dtype=np.int32)
    profiler = ProfilingObserver()
    observer = MultiObserver([LoggingObserver(), profiler])
    with caplog.at_level(logging.DEBUG, logger="kclust"):
        cluster(2, 1, points, centroids, labels, observer=observer)
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("means x2 seed: point 2 (10.000, 0.000)") for m in messages)
    assert any(m.startswith("iteration 2: max centroid move 0") for m in messages)
    assert any("clustering converged after 2 iterations" in m for m in messages)
    assert profiler.executions("update") == 2


if __name__ == "__main__":
    test_mem_use()
    test_profiling_observer_counts_stages()

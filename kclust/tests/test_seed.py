import numpy as np
import pytest

from kclust.bitset import BitSet
from kclust.config import ClusterConfig, InvalidConfiguration
from kclust.progress import ClusterObserver
from kclust.random import box, pcg_hash
from kclust.seed import _pick_point, seed, subsample


def test_chosen_points_are_distinct_copies():
    points = box(200, 3, seed=0)
    result = seed(3, 1, 50, points.reshape(-1))
    assert not result.cancelled
    assert len(result.indices) == 50
    assert len(set(result.indices)) == 50
    assert result.indices[0] == pcg_hash(0) % 200
    assert np.array_equal(result.centroids, points[result.indices])


def test_every_point_when_k_equals_data_size():
    points = box(25, 2, seed=1)
    result = seed(2, 1, 25, points)
    assert sorted(result.indices) == list(range(25))


def test_zero_weight_picks_first_untaken_point():
    # All points coincide, every draw has total weight zero.
    points = np.ones((10, 4), dtype=np.float32)
    result = seed(4, 1, 10, points)
    first = pcg_hash(0) % 10
    assert result.indices == [first] + [i for i in range(10) if i != first]


def test_weighted_selection_prefers_far_points():
    # Nine points at the origin and one far away: after any first pick at the
    # origin, all remaining weight sits on the far point.
    points = np.zeros((10, 2), dtype=np.float64)
    points[3] = (100.0, 100.0)
    result = seed(2, 1, 2, points, rng_seed=1)
    assert pcg_hash(1) % 10 != 3
    assert result.indices[1] == 3
    assert np.array_equal(result.centroids[1], [100.0, 100.0])


def test_subsample_stride():
    points = box(100, 2, seed=2)
    result = seed(2, 3, 5, points)
    working = points[::3]
    assert np.array_equal(result.centroids, working[result.indices])
    assert all(i % 3 == 0 for i in result.point_indices)
    assert np.array_equal(result.centroids, points[result.point_indices])
    assert subsample(points, 1) is points
    assert subsample(points, 4).shape == (25, 2)
    with pytest.raises(InvalidConfiguration):
        subsample(points, 0)


def test_deterministic_across_threads_and_batches():
    points = box(500, 3, seed=3)
    serial = seed(3, 1, 12, points, config=ClusterConfig(num_threads=1, sum_batch_size=16))
    parallel = seed(
        3, 1, 12, points,
        config=ClusterConfig(num_threads=4, sum_batch_size=16, distance_batch_size=40),
    )
    again = seed(3, 1, 12, points, config=ClusterConfig(num_threads=4, sum_batch_size=16))
    assert serial.indices == parallel.indices == again.indices
    assert np.array_equal(serial.centroids, parallel.centroids)


def test_writes_into_given_buffer():
    points = box(40, 2, seed=4)
    centroids = np.zeros(8, dtype=np.float32)
    result = seed(2, 1, 4, points, centroids)
    assert np.shares_memory(result.centroids, centroids)
    assert np.array_equal(centroids.reshape(4, 2), points[result.indices])
    with pytest.raises(InvalidConfiguration):
        seed(2, 1, 3, points, np.zeros(8, dtype=np.float32))


def test_progress_and_cancellation():
    points = box(60, 2, seed=5)
    fractions = []
    result = seed(2, 1, 4, points, progress=lambda f: fractions.append(f) or True)
    assert fractions == [0.125, 0.25, 0.375]
    assert not result.cancelled

    result = seed(2, 1, 4, points, progress=lambda f: False)
    assert result.cancelled
    assert len(result.indices) == 1

    calls = []
    def stop_second(f):
        calls.append(f)
        return len(calls) < 2
    result = seed(2, 1, 4, points, progress=stop_second)
    assert result.cancelled and len(result.indices) == 2


def test_observer_sees_every_selection():
    class Recorder(ClusterObserver):
        def __init__(self):
            self.counts, self.stages = [], []
        def centroid_selected(self, count, point_index, centroids):
            self.counts.append((count, point_index))
        def stage_begin(self, name):
            self.stages.append(name)
    recorder = Recorder()
    result = seed(2, 1, 3, box(30, 2, seed=6), observer=recorder)
    assert recorder.counts == [(i + 1, j) for (i, j) in enumerate(result.indices)]
    assert recorder.stages[0] == "seed"
    assert recorder.stages.count("seed.distance_sum") == 2
    assert recorder.stages.count("seed.distance_update") == 1


def test_invalid_inputs():
    points = box(5, 2, seed=7)
    with pytest.raises(InvalidConfiguration):
        seed(2, 1, 6, points)
    with pytest.raises(InvalidConfiguration):
        seed(2, 2, 4, points)
    with pytest.raises(InvalidConfiguration):
        seed(2, 1, 0, points)
    with pytest.raises(InvalidConfiguration):
        seed(0, 1, 1, points)
    with pytest.raises(InvalidConfiguration):
        seed(3, 1, 1, points)


def test_pick_point():
    cache = np.ones(10)
    taken = BitSet(10)
    taken.set(9)
    partial = np.array([4.0, 4.0, 1.0])
    prefix = np.cumsum(partial)
    # Threshold inside the second batch: skips the first batch entirely.
    assert _pick_point(5.0, prefix, cache, taken, 4) == (4, False)
    assert _pick_point(0.5, prefix, cache, taken, 4) == (0, False)
    # Unreachable threshold falls back to the highest untaken point.
    assert _pick_point(100.0, prefix, cache, taken, 4) == (8, True)
    assert _pick_point(9.0, prefix, cache, taken, 4) == (8, False)
    # A zero threshold never selects a taken point.
    taken.set(0)
    cache[0] = 0.0
    prefix = np.cumsum([3.0, 4.0, 1.0])
    assert _pick_point(0.0, prefix, cache, taken, 4) == (1, False)


if __name__ == "__main__":
    test_chosen_points_are_distinct_copies()
    test_every_point_when_k_equals_data_size()
    test_zero_weight_picks_first_untaken_point()
    test_weighted_selection_prefers_far_points()
    test_subsample_stride()
    test_deterministic_across_threads_and_batches()
    test_writes_into_given_buffer()
    test_progress_and_cancellation()
    test_observer_sees_every_selection()
    test_invalid_inputs()
    test_pick_point()

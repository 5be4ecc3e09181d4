import numpy as np

from kclust.random import pcg_hash, pcg_hash_array, hash_float, PcgRandom, box, ball, blobs


def test_pcg_hash_known_values():
    # Reference outputs of the 32-bit PCG hash.
    assert pcg_hash(0) == 129708002
    assert pcg_hash(1) == 2831084092
    assert pcg_hash(2) == 2055130248
    assert pcg_hash(5) == 2161170183
    # Inputs are taken modulo 2**32.
    assert pcg_hash(2**32 + 1) == pcg_hash(1)
    assert pcg_hash(-1) == pcg_hash(2**32 - 1)


def test_pcg_hash_array_matches_scalar():
    values = np.array([0, 1, 2, 5, 12345, 2**31, 2**32 - 1], dtype=np.uint64)
    hashed = pcg_hash_array(values)
    assert hashed.dtype == np.uint32
    assert hashed.tolist() == [pcg_hash(int(v)) for v in values]


def test_hash_float_range_and_mantissa():
    for s in range(2000):
        value = hash_float(s, 5.0)
        assert 0.0 <= value < 5.0
        # 23 mantissa bits of the hash, scaled into [0,1).
        assert hash_float(s) == (pcg_hash(s) >> 9) / 2**23
    assert hash_float(3, 0.0) == 0.0
    values = np.array([hash_float(s) for s in range(10000)])
    assert abs(values.mean() - 0.5) < 0.02


def test_pcg_random_stream():
    rng = PcgRandom(7)
    first = rng()
    # The second output permutes the advanced state, which is pcg_hash(7).
    assert rng() == pcg_hash(7)
    again = PcgRandom(7)
    assert again() == first
    assert repr(again).startswith("PcgRandom(")


def test_generators():
    points = box(100, 3, seed=1)
    assert points.shape == (100, 3) and points.dtype == np.float32
    assert points.min() >= 0.0 and points.max() < 1.0
    assert np.array_equal(points, box(100, 3, seed=1))

    inside = ball(500, 4, radius=2.0, seed=2)
    assert np.linalg.norm(inside.astype(np.float64), axis=1).max() <= 2.0 + 1e-5
    surface = ball(50, 3, inside=False, seed=3)
    assert np.allclose(np.linalg.norm(surface, axis=1), 1.0, atol=1e-5)

    centers = np.array([[0.0, 0.0], [50.0, 50.0]])
    points, labels = blobs(400, 2, centers=centers, spread=0.1, seed=4)
    assert points.shape == (400, 2) and labels.shape == (400,)
    assert set(np.unique(labels).tolist()) == {0, 1}
    assert np.abs(points - centers[labels]).max() < 1.0
    points, labels = blobs(10, 5, centers=3, seed=5)
    assert points.shape == (10, 5) and labels.max() < 3


if __name__ == "__main__":
    test_pcg_hash_known_values()
    test_pcg_hash_array_matches_scalar()
    test_hash_float_range_and_mantissa()
    test_pcg_random_stream()
    test_generators()

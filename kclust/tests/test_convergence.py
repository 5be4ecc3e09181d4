import numpy as np

from kclust.convergence import StopReason, check, delta_below_limit


def test_delta_below_limit():
    a = np.array([[0.0, 0.0], [1.0, 1.0]])
    b = np.array([[3.0, 4.0], [1.0, 1.0]])
    # The first centroid moved exactly 5.
    assert delta_below_limit(2, a, b, 5.0)
    assert not delta_below_limit(2, a, b, 4.999)
    assert delta_below_limit(2, a.ravel(), b.ravel(), 6.0)
    # Disabled for non-positive limits, even without movement.
    assert not delta_below_limit(2, a, a, 0.0)
    assert not delta_below_limit(2, a, a, -1.0)


def test_check_order():
    c = np.array([[1.0], [2.0]])
    other = np.array([[1.5], [2.0]])
    # The iteration limit wins over every other criterion.
    assert check(5, 5, c, c, c, 1, 10.0) is StopReason.MAX_ITERATIONS
    assert check(1, 5, c, c, other, 1) is StopReason.UNCHANGED
    assert check(2, 5, c, other, c, 1) is StopReason.OSCILLATING
    assert check(2, 5, c, other, other, 1, 0.5) is StopReason.MIN_DELTA
    assert check(2, 5, c, other, other, 1, 0.4) is None
    assert check(2, 5, c, other, other, 1) is None


if __name__ == "__main__":
    test_delta_below_limit()
    test_check_order()

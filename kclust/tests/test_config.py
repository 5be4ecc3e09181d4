import os

import pytest

from kclust.config import ASSIGN_BATCH_SIZE, ClusterConfig, InvalidConfiguration


def test_defaults():
    config = ClusterConfig()
    config.validate()
    assert config.assign_batch_size == ASSIGN_BATCH_SIZE == 256 * 1024
    assert config.sum_batch_size == 1024
    assert config.threads == (os.cpu_count() or 1)
    assert ClusterConfig(num_threads=3).threads == 3


def test_from_env(monkeypatch):
    monkeypatch.setenv("KCLUST_NUM_THREADS", "2")
    monkeypatch.setenv("KCLUST_ASSIGN_BATCH_SIZE", "4096")
    monkeypatch.setenv("KCLUST_KERNEL", " Scalar ")
    config = ClusterConfig.from_env()
    assert (config.num_threads, config.assign_batch_size, config.kernel) == (2, 4096, "scalar")
    # Explicit values win, None leaves the environment value.
    config = ClusterConfig.from_env(num_threads=5, kernel=None)
    assert config.num_threads == 5 and config.kernel == "scalar"

    monkeypatch.setenv("KCLUST_NUM_THREADS", "many")
    with pytest.raises(InvalidConfiguration):
        ClusterConfig.from_env()
    monkeypatch.delenv("KCLUST_NUM_THREADS")
    monkeypatch.setenv("KCLUST_KERNEL", "avx1024")
    with pytest.raises(InvalidConfiguration):
        ClusterConfig.from_env()


@pytest.mark.parametrize("field", ["assign_batch_size", "assign_task_size", "sum_batch_size", "distance_batch_size", "num_threads"])
def test_validate_rejects_non_positive(field):
    with pytest.raises(InvalidConfiguration):
        ClusterConfig(**{field: 0}).validate()


if __name__ == "__main__":
    test_defaults()

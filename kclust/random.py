import struct

import numpy as np

from kclust.config import PCG_MULTIPLIER, PCG_INCREMENT, PCG_WORD_MULTIPLIER, UINT32_MASK


# Mix a 32-bit state into a 32-bit output word (PCG "RXS M XS" permutation).
def _permute(state):
    word = (((state >> ((state >> 28) + 4)) ^ state) * PCG_WORD_MULTIPLIER) & UINT32_MASK
    return (word >> 22) ^ word


# Stateless hash of a 32-bit unsigned integer. Pure function of "value",
# so any seed sequence reproduces the same stream on every run.
def pcg_hash(value):
    state = (int(value) * PCG_MULTIPLIER + PCG_INCREMENT) & UINT32_MASK
    return _permute(state)


# Vectorized "pcg_hash" over an array of unsigned integers, returns uint32.
def pcg_hash_array(values):
    values = np.asarray(values).astype(np.uint32)
    state = values * np.uint32(PCG_MULTIPLIER) + np.uint32(PCG_INCREMENT)
    word = ((state >> ((state >> np.uint32(28)) + np.uint32(4))) ^ state) * np.uint32(PCG_WORD_MULTIPLIER)
    return (word >> np.uint32(22)) ^ word


# Uniform float in [0, upper_bound) derived from the hash of "seed". The top
# 23 bits of the hash become the mantissa of a float in [1,2), then 1 is
# subtracted to land in [0,1) before scaling.
def hash_float(seed, upper_bound=1.0):
    bits = 0x3F800000 | (pcg_hash(seed) >> 9)
    unit = struct.unpack("<f", struct.pack("<I", bits))[0] - 1.0
    return unit * upper_bound


# A stateful PCG stream. Each call returns the permuted current state and
# advances the state by one LCG step. Used wherever a sequence of seeds is
# needed (mini-batch sampling) while staying reproducible.
#
# Example:
#
#   rng = PcgRandom(1)
#   first, second = rng(), rng()
#
class PcgRandom:
    def __init__(self, state=1):
        self.state = int(state) & UINT32_MASK

    def __call__(self):
        state = self.state
        self.state = (state * PCG_MULTIPLIER + PCG_INCREMENT) & UINT32_MASK
        return _permute(state)

    def __repr__(self):
        return f"PcgRandom(state={self.state})"


# ------------------------------------------------------------------
#                     Seeded test data generators

# Random points within a [0,1] box, returned as (num_points, dimension).
def box(num_points, dimension, seed=None, dtype=np.float32):
    rng = np.random.default_rng(seed)
    return rng.uniform(size=(num_points, dimension)).astype(dtype)


# Generate "num_points" random points in "dimension" that have uniform
# probability density over the unit ball scaled by "radius". When
# "inside" is False the points lie on the sphere.
def ball(num_points, dimension, inside=True, radius=1.0, seed=None, dtype=np.float32):
    rng = np.random.default_rng(seed)
    # Random normal vectors distribute evenly over directions.
    directions = rng.normal(size=(num_points, dimension))
    lengths = np.linalg.norm(directions, axis=1, keepdims=True)
    lengths[lengths == 0] = 1.0
    directions /= lengths
    # Radius with probability proportional to the surface area at that radius.
    if (inside): directions *= rng.random((num_points, 1)) ** (1 / dimension)
    return (radius * directions).astype(dtype)


# Gaussian blobs around "centers" (an int count or an array of shape
# (num_centers, dimension)). Returns the points and the generating label of
# every point. Centers given as a count are spread over [-10, 10].
def blobs(num_points, dimension, centers=3, spread=1.0, seed=None, dtype=np.float32):
    rng = np.random.default_rng(seed)
    if np.isscalar(centers):
        centers = rng.uniform(-10.0, 10.0, size=(int(centers), dimension))
    centers = np.asarray(centers, dtype=np.float64)
    assert centers.ndim == 2 and centers.shape[1] == dimension, \
        f"blobs(..), centers must have shape (num_centers, {dimension}), received {centers.shape}"
    labels = rng.integers(0, len(centers), size=num_points)
    points = centers[labels] + spread * rng.normal(size=(num_points, dimension))
    return points.astype(dtype), labels

"""Fixed-size packed bitset used as the k-means++ "taken" set."""

from __future__ import annotations

import numpy as np

__all__ = ["BitSet"]


class BitSet:
    """A fixed-size bitset over ``size`` indices, packed 8 bits per byte.

    Bit ``i`` lives in byte ``i >> 3`` at position ``i & 7`` (little bit
    order), matching ``np.unpackbits(..., bitorder="little")``.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("size must be non-negative")
        self.size = size
        self.bits = np.zeros((size + 7) // 8, dtype=np.uint8)

    def __len__(self) -> int:
        return self.size

    def _check(self, idx: int) -> None:
        if not (0 <= idx < self.size):
            raise IndexError(f"bit index {idx} out of range for BitSet of size {self.size}")

    def set(self, idx: int) -> None:
        self._check(idx)
        self.bits[idx >> 3] |= np.uint8(1 << (idx & 7))

    def mask(self, start: int = 0, stop: int | None = None) -> np.ndarray:
        """Boolean array of the bits in ``[start, stop)``."""
        if stop is None:
            stop = self.size
        if not (0 <= start <= stop <= self.size):
            raise IndexError(f"range [{start}, {stop}) out of bounds for BitSet of size {self.size}")
        first, last = start >> 3, (stop + 7) >> 3
        unpacked = np.unpackbits(self.bits[first:last], bitorder="little")
        offset = start - (first << 3)
        return unpacked[offset: offset + (stop - start)].astype(bool)

    def last_clear(self) -> int:
        """Highest index whose bit is not set, ``-1`` when every bit is set."""
        free = np.flatnonzero(~self.mask())
        return int(free[-1]) if free.size else -1


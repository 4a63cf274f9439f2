# solver/shuffle.py
"""Seeded, reproducible permutations.

A 32-bit seed is pushed through a small xorshift avalanche and then drives a
mulberry32 generator.  The stream is consumed by exactly one Fisher–Yates pass
per solve, so the same seed and roster always yield the same ordering (and
therefore the same search trace).
"""
from __future__ import annotations

import time
from typing import Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

_MASK32 = 0xFFFFFFFF


def normalize_seed(seed: Optional[int]) -> int:
    """Reduce ``seed`` to 32 bits, deriving one from the clock when unset."""
    if seed is None:
        seed = int(time.time() * 1000)
    return int(seed) & _MASK32


def hash32(x: int) -> int:
    x = (int(x) ^ 0xDEADBEEF) & _MASK32
    x ^= (x << 13) & _MASK32
    x ^= x >> 17
    x ^= (x << 5) & _MASK32
    return x & _MASK32


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def mulberry32(state: int) -> Callable[[], float]:
    """Return a generator of floats in ``[0, 1)`` seeded with ``state``."""
    a = int(state) & _MASK32

    def _next() -> float:
        nonlocal a
        a = (a + 0x6D2B79F5) & _MASK32
        t = a
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296.0

    return _next


def make_rng(seed: int) -> Callable[[], float]:
    return mulberry32(hash32(seed))


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Return a shuffled copy of ``items``; ``items`` itself is left untouched."""
    rng = make_rng(seed)
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = int(rng() * (i + 1))
        out[i], out[j] = out[j], out[i]
    return out


__all__ = ["normalize_seed", "hash32", "mulberry32", "make_rng", "seeded_shuffle"]

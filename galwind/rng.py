"""Deterministic hash-based random numbers keyed by particle ids.

The value for a key depends only on the key and the seed, never on the
order of calls or on how work is split over ranks and threads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import torch

_MASK64 = (1 << 64) - 1

# any pure key -> [0, 1) mapping
RandomSource = Callable[[int], float]


def _splitmix64(x: int) -> int:
    x = (x + 0x9E3779B97F4A7C15) & _MASK64
    x = ((x ^ (x >> 30)) * 0xBF58476D1CE4E5B9) & _MASK64
    x = ((x ^ (x >> 27)) * 0x94D049BB133111EB) & _MASK64
    return x ^ (x >> 31)


@dataclass(frozen=True)
class HashRandom:
    """Map an integer key to a reproducible uniform value in [0, 1)."""

    seed: int = 0

    def __call__(self, key: int) -> float:
        h = _splitmix64((int(key) & _MASK64) ^ _splitmix64(int(self.seed) & _MASK64))
        return (h >> 11) * (1.0 / 9007199254740992.0)


def random_direction(rng: RandomSource, particle_id: int, *, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """Isotropic unit vector derived from a particle id."""
    theta = math.acos(2.0 * rng(particle_id + 3) - 1.0)
    phi = 2.0 * math.pi * rng(particle_id + 4)
    return torch.tensor(
        [
            math.sin(theta) * math.cos(phi),
            math.sin(theta) * math.sin(phi),
            math.cos(theta),
        ],
        dtype=dtype,
    )

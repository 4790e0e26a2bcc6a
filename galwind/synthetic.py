"""Synthetic periodic boxes for demos and tests."""

from __future__ import annotations

import torch

from .particles import DARK_MATTER, GAS, STAR, ParticleSet


def make_box(
    *,
    n_gas: int,
    n_dm: int,
    n_stars: int,
    box_size: float,
    seed: int = 0,
    gas_mass: float = 1.0,
    dm_mass: float = 5.0,
    star_mass: float = 1.0,
    gas_density: float = 1.0,
    dm_sigma: float = 100.0,
    star_hsml: float = 1.0,
) -> ParticleSet:
    """Uniform random positions; dark matter with isotropic Gaussian velocities.

    Ids are 1-based and laid out gas, dark matter, stars.
    """
    gen = torch.Generator().manual_seed(int(seed))
    n = n_gas + n_dm + n_stars
    types = torch.cat(
        [
            torch.full((n_gas,), GAS, dtype=torch.int64),
            torch.full((n_dm,), DARK_MATTER, dtype=torch.int64),
            torch.full((n_stars,), STAR, dtype=torch.int64),
        ]
    )
    positions = torch.rand((n, 3), generator=gen, dtype=torch.float64) * box_size
    velocities = torch.zeros((n, 3), dtype=torch.float64)
    is_dm = types == DARK_MATTER
    velocities[is_dm] = torch.randn((n_dm, 3), generator=gen, dtype=torch.float64) * dm_sigma

    masses = torch.where(
        types == GAS,
        torch.full((n,), gas_mass, dtype=torch.float64),
        torch.where(is_dm, torch.full((n,), dm_mass, dtype=torch.float64), torch.full((n,), star_mass, dtype=torch.float64)),
    )
    hsml = torch.where(types == STAR, torch.full((n,), star_hsml, dtype=torch.float64), torch.zeros(n, dtype=torch.float64))
    density = torch.where(types == GAS, torch.full((n,), gas_density, dtype=torch.float64), torch.zeros(n, dtype=torch.float64))

    return ParticleSet.from_state(
        {
            "ids": torch.arange(1, n + 1, dtype=torch.int64),
            "types": types,
            "positions": positions,
            "velocities": velocities,
            "masses": masses,
            "hsml": hsml,
            "density": density,
            "entropy": torch.ones(n, dtype=torch.float64),
        }
    )

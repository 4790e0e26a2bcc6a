"""Hydrodynamic decoupling of wind particles.

A kicked gas particle free-streams while its `delay_time` is positive. The
hydro solver asks `is_decoupled`, replaces its own force and entropy
accumulation with `decoupled_hydro`, and calls `evolve` once per step.

All methods take a single particle index or a tensor of indices.
"""

from __future__ import annotations

from typing import Union

import torch

from ..config import WindConstants, WindParams
from ..particles import GAS, ParticleSet
from ..timebins import TimeBinManager
from ..units import GAMMA_MINUS1

Index = Union[int, torch.Tensor]


def _as_index(i: Index) -> torch.Tensor:
    return torch.as_tensor(i, dtype=torch.int64).reshape(-1)


class WindDecoupling:
    def __init__(self, params: WindParams, constants: WindConstants, timebins: TimeBinManager) -> None:
        self.params = params
        self.constants = constants
        self.timebins = timebins

    def is_decoupled(self, particles: ParticleSet, i: Index) -> Union[bool, torch.Tensor]:
        idx = _as_index(i)
        if self.params.decouple_sph:
            out = (particles.types[idx] == GAS) & (particles.delay_time[idx] > 0.0)
        else:
            out = torch.zeros(idx.shape, dtype=torch.bool)
        return bool(out[0]) if isinstance(i, int) else out

    def decoupled_hydro(self, particles: ParticleSet, i: Index, atime: float) -> None:
        """Suppress hydro forces and floor the signal velocity of wind particles."""
        idx = _as_index(i)
        particles.hydro_accel[idx] = 0.0
        particles.dt_entropy[idx] = 0.0

        fac_mu = atime ** (3.0 * GAMMA_MINUS1 / 2.0) / atime
        windspeed = self.constants.wind_speed * atime * fac_mu
        hsml_c = (self.constants.free_travel_dens_thresh / particles.density[idx]) ** (1.0 / 3.0) * atime
        particles.max_signal_vel[idx] = hsml_c * particles.max_signal_vel[idx].clamp(min=2.0 * windspeed)

    def evolve(self, particles: ParticleSet, i: Index, *, a3inv: float, hubble: float, ti_current: int) -> None:
        """Advance the free-streaming timer by one step of each particle's time bin."""
        idx = _as_index(i)
        delay = particles.delay_time[idx]

        # recouple once the physical density has dropped far enough
        thin = (delay > 0.0) & (particles.density[idx] * a3inv < self.constants.free_travel_dens_thresh)
        delay = torch.where(thin, torch.zeros_like(delay), delay)

        active = delay > 0.0
        if bool(active.any()):
            # enforce the maximum in case of restarts
            delay = torch.where(active, delay.clamp(max=self.constants.max_free_travel_time), delay)
            dloga = torch.tensor(
                [self.timebins.get_dloga_for_bin(b, ti_current) for b in particles.time_bin[idx].tolist()],
                dtype=torch.float64,
            )
            # proper time duration of the step
            dtime = dloga / hubble
            delay = torch.where(active, (delay - dtime).clamp(min=0.0), delay)

        particles.delay_time[idx] = delay

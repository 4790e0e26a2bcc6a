"""Stochastic wind kicks: candidate generation and conflict resolution.

A gas particle may be picked by several new stars in the same event. Every
successful draw is stored as a candidate; after the walk the candidates are
sorted by (particle, distance, star id) and only the nearest star kicks.
The outcome is therefore independent of rank and thread scheduling.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Sequence

import torch

from ..config import WindConstants, WindParams
from ..errors import KickBufferOverflow, WindFeedbackError
from ..particles import GAS, ParticleSet
from ..rng import RandomSource, random_direction
from ..treewalk import LocalWalk, Neighbor, NeighborIterator, SearchParams
from ..units import GAMMA_MINUS1
from .event import WindEvent
from .weight import WindQuery


@dataclass(frozen=True)
class StarKickCandidate:
    part_index: int
    distance: float
    star_id: int
    velocity: float
    therm: float


class KickBuffer:
    """Fixed-capacity candidate store filled concurrently.

    Each append reserves a unique slot from a shared counter; appends never
    overwrite each other and the storage is never resized.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self.capacity = int(capacity)
        self.part_index = torch.full((self.capacity,), -1, dtype=torch.int64)
        self.distance = torch.zeros(self.capacity, dtype=torch.float64)
        self.star_id = torch.zeros(self.capacity, dtype=torch.int64)
        self.velocity = torch.zeros(self.capacity, dtype=torch.float64)
        self.therm = torch.zeros(self.capacity, dtype=torch.float64)
        self._next = 0
        self._lock = threading.Lock()

    def _reserve(self) -> int:
        with self._lock:
            slot = self._next
            self._next += 1
        return slot

    def append(self, kick: StarKickCandidate) -> int:
        slot = self._reserve()
        if slot >= self.capacity:
            raise KickBufferOverflow(
                slot, self.capacity, target=kick.part_index, star_id=kick.star_id, distance=kick.distance
            )
        self.part_index[slot] = kick.part_index
        self.distance[slot] = kick.distance
        self.star_id[slot] = kick.star_id
        self.velocity[slot] = kick.velocity
        self.therm[slot] = kick.therm
        return slot

    def __len__(self) -> int:
        return min(self._next, self.capacity)

    def candidates(self) -> list[StarKickCandidate]:
        return [
            StarKickCandidate(
                part_index=int(self.part_index[k]),
                distance=float(self.distance[k]),
                star_id=int(self.star_id[k]),
                velocity=float(self.velocity[k]),
                therm=float(self.therm[k]),
            )
            for k in range(len(self))
        ]

    def sorted_order(self) -> torch.Tensor:
        """Slots ordered by (part_index, distance, star_id)."""
        n = len(self)
        order = torch.argsort(self.star_id[:n], stable=True)
        order = order[torch.argsort(self.distance[:n][order], stable=True)]
        order = order[torch.argsort(self.part_index[:n][order], stable=True)]
        return order


@dataclass
class WindKickResult:
    nkicks: int = 0


class WindKickIterator(NeighborIterator[WindQuery, WindKickResult]):
    """Draw the wind lottery for every eligible gas particle around a star."""

    def __init__(self, event: WindEvent, params: WindParams, constants: WindConstants, rng: RandomSource) -> None:
        if event.kicks is None:
            raise WindFeedbackError("kick buffer must be allocated before the feedback walk")
        self.event = event
        self.kicks = event.kicks
        self.params = params
        self.constants = constants
        self.rng = rng

    def new_result(self) -> WindKickResult:
        return WindKickResult()

    def begin(self, query: WindQuery, result: WindKickResult) -> SearchParams:
        return SearchParams(radius=query.hsml, mask=frozenset({GAS}), symmetric=False)

    def visit(
        self,
        query: WindQuery,
        result: WindKickResult,
        ngb: Neighbor,
        params: SearchParams,
        lv: LocalWalk,
    ) -> None:
        particles = self.event.particles
        other = ngb.index

        if ngb.r > query.hsml:
            return
        if float(particles.delay_time[other]) > 0.0:
            return
        # no eligible gas particles not already in the wind
        if query.total_weight == 0.0 or query.vdisp <= 0.0:
            return
        if int(particles.types[other]) != GAS or bool(particles.is_garbage[other]) or bool(particles.swallowed[other]):
            return

        atime = self.event.time
        utherm = self.params.thermal_factor * 1.5 * query.vdisp * query.vdisp
        windeff, v = self.params.model.efficiency_and_speed(query.vdisp, atime, self.constants.wind_speed)
        # Minimum wind velocity, so particles do not stay in the wind forever.
        vmin = self.params.min_wind_velocity * atime
        if v < vmin:
            v = vmin

        p = windeff * query.mass / query.total_weight
        draw = self.rng(query.star_id + int(particles.ids[other]))
        if draw < p and v > 0.0:
            self.kicks.append(
                StarKickCandidate(
                    part_index=other,
                    distance=ngb.r,
                    star_id=query.star_id,
                    velocity=v,
                    therm=utherm,
                )
            )
            result.nkicks += 1

    def reduce(self, partials: Sequence[WindKickResult]) -> WindKickResult:
        return WindKickResult(nkicks=sum(p.nkicks for p in partials))


def apply_kick(
    particles: ParticleSet,
    other: int,
    kick: StarKickCandidate,
    *,
    time: float,
    constants: WindConstants,
    free_travel_length: float,
    rng: RandomSource,
) -> None:
    """Push `other` into the wind using the winning candidate."""
    v = kick.velocity
    if v > 0.0 and time > 0.0:
        direction = random_direction(rng, int(particles.ids[other]))
        particles.velocities[other] += v * direction
        if kick.therm != 0.0:
            density = float(particles.density[other])
            if not (density > 0.0):
                raise WindFeedbackError(f"Cannot heat wind particle {other} with density {density:g}")
            # therm is internal energy per unit mass
            enttou = (density / time**3) ** GAMMA_MINUS1 / GAMMA_MINUS1
            particles.entropy[other] += kick.therm / enttou
        if constants.ever_decouple:
            delay = free_travel_length / (v / time)
            particles.delay_time[other] = min(delay, constants.max_free_travel_time)

    delay_time = float(particles.delay_time[other])
    if (
        v <= 0.0
        or not math.isfinite(v)
        or not math.isfinite(delay_time)
        or not bool(torch.all(torch.isfinite(particles.velocities[other])))
    ):
        raise WindFeedbackError(
            f"Odd v: other = {other}, DT = {delay_time:g} v = {v:g}, "
            f"dist {kick.distance:g} id {kick.star_id}"
        )


@dataclass(frozen=True)
class KickSummary:
    nkicks: int
    applied: int

    @property
    def discarded(self) -> int:
        return self.nkicks - self.applied


def resolve_kicks(
    buffer: KickBuffer,
    particles: ParticleSet,
    *,
    time: float,
    params: WindParams,
    constants: WindConstants,
    rng: RandomSource,
) -> KickSummary:
    """Apply the nearest-star candidate for every targeted particle."""
    # Not parallel: the number of kicked particles is small.
    last_part = -1
    applied = 0
    for slot in buffer.sorted_order().tolist():
        other = int(buffer.part_index[slot])
        if other == last_part:
            continue
        last_part = other
        applied += 1
        kick = StarKickCandidate(
            part_index=other,
            distance=float(buffer.distance[slot]),
            star_id=int(buffer.star_id[slot]),
            velocity=float(buffer.velocity[slot]),
            therm=float(buffer.therm[slot]),
        )
        apply_kick(
            particles,
            other,
            kick,
            time=time,
            constants=constants,
            free_travel_length=params.free_travel_length,
            rng=rng,
        )
    return KickSummary(nkicks=len(buffer), applied=applied)

"""Gas weight and dark-matter velocity moments around new stars.

This walk sums the mass of the surrounding eligible gas (the normalisation
of the wind probability, as in VS08) and the first and second moments of
the dark-matter velocities inside each trial radius.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from ..particles import DARK_MATTER, GAS
from ..treewalk import LocalWalk, Neighbor, NeighborIterator, SearchParams
from .event import WindEvent
from .sample import NUMDMNGB, NWINDHSML


@dataclass(frozen=True)
class WindQuery:
    """Everything a remote rank needs to know about one new star."""

    slot: int
    star_id: int
    position: tuple[float, float, float]
    velocity: tuple[float, float, float]
    mass: float
    hsml: float
    total_weight: float
    vdisp: float
    dm_radius: tuple[float, ...]


@dataclass
class WindWeightResult:
    total_weight: float = 0.0
    ngb: list[float] = field(default_factory=lambda: [0.0] * NWINDHSML)
    v1sum: list[list[float]] = field(default_factory=lambda: [[0.0, 0.0, 0.0] for _ in range(NWINDHSML)])
    v2sum: list[float] = field(default_factory=lambda: [0.0] * NWINDHSML)
    maxcmpte: int = NWINDHSML


class WindWeightIterator(NeighborIterator[WindQuery, WindWeightResult]):
    def __init__(self, event: WindEvent) -> None:
        self.event = event

    def new_result(self) -> WindWeightResult:
        return WindWeightResult()

    def begin(self, query: WindQuery, result: WindWeightResult) -> SearchParams:
        result.maxcmpte = NWINDHSML
        return SearchParams(
            radius=max(query.hsml, query.dm_radius[NWINDHSML - 1]),
            mask=frozenset({GAS, DARK_MATTER}),
            symmetric=False,
        )

    def visit(
        self,
        query: WindQuery,
        result: WindWeightResult,
        ngb: Neighbor,
        params: SearchParams,
        lv: LocalWalk,
    ) -> None:
        particles = self.event.particles
        other = ngb.index
        ptype = int(particles.types[other])

        if ptype == GAS:
            if ngb.r > query.hsml:
                return
            # earlier wind particles receive no feedback energy
            if float(particles.delay_time[other]) > 0.0:
                return
            # unit kernel weight
            result.total_weight += float(particles.masses[other])
            lv.nvisited += 1

        if ptype == DARK_MATTER:
            atime = self.event.time
            hubble_fac = self.event.hubble * atime * atime
            vel_other = particles.velocities[other].tolist()
            for i in range(result.maxcmpte):
                if ngb.r < query.dm_radius[i]:
                    result.ngb[i] += 1.0
                    for d in range(3):
                        # relative velocity plus the Hubble flow across the separation
                        vel = vel_other[d] - query.velocity[d] + hubble_fac * ngb.dist[d]
                        result.v1sum[i][d] += vel
                        result.v2sum[i] += vel * vel

        for i in range(NWINDHSML):
            if result.ngb[i] > NUMDMNGB:
                result.maxcmpte = i + 1
                params.radius = max(query.hsml, query.dm_radius[i])
                break

    def reduce(self, partials: Sequence[WindWeightResult]) -> WindWeightResult:
        out = WindWeightResult(maxcmpte=min(p.maxcmpte for p in partials))
        for p in partials:
            out.total_weight += p.total_weight
            for i in range(NWINDHSML):
                out.ngb[i] += p.ngb[i]
                out.v2sum[i] += p.v2sum[i]
                for d in range(3):
                    out.v1sum[i][d] += p.v1sum[i][d]
        return out

"""Wind feedback driver for newly formed stars.

One call of `winds_and_feedback` is one feedback event:

1. `WIND_WEIGHT` rounds: sum the surrounding gas mass and converge each
   star's dark-matter search radius; stars that are not converged are walked
   again with a narrower bracket.
2. `WIND_KICK` round: draw the wind lottery for every eligible gas particle,
   storing winners in a kick buffer sized from the gas visits of step 1.
3. Resolve the buffer: the nearest star kicks each particle once.

The subgrid model skips all of this and kicks the star-forming particle in
`make_after_sf` instead.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import torch

from ..config import SubgridWind, WindConstants, WindParams
from ..console import console
from ..distributed import Transport
from ..errors import WindSearchError
from ..particles import ParticleSet
from ..rng import HashRandom, RandomSource, random_direction
from ..treewalk import LocalWalk, ParticleTree, TreeWalk
from .event import WindEvent
from .kicks import KickBuffer, WindKickIterator, resolve_kicks
from .sample import WindSamples, resolve_dispersion
from .weight import WindQuery, WindWeightIterator


@dataclass(frozen=True)
class FeedbackStats:
    """Totals over all ranks for one feedback event."""

    new_stars: int
    nkicks: int
    applied: int
    search_rounds: int

    @property
    def discarded(self) -> int:
        return self.nkicks - self.applied


class WindFeedback:
    def __init__(
        self,
        params: WindParams,
        constants: WindConstants,
        *,
        transport: Transport,
        rng: Optional[RandomSource] = None,
        nthreads: int = 1,
        kick_slack: int = 2,
        max_search_rounds: int = 1000,
    ) -> None:
        self.params = params
        self.constants = constants
        self.transport = transport
        self.rng: RandomSource = rng if rng is not None else HashRandom()
        self.nthreads = int(nthreads)
        self.kick_slack = int(kick_slack)
        self.max_search_rounds = int(max_search_rounds)

    def winds_and_feedback(
        self,
        new_stars: Union[Sequence[int], torch.Tensor],
        time: float,
        hubble: float,
        tree: ParticleTree,
    ) -> Optional[FeedbackStats]:
        """Run one feedback event for the stars formed this step (local indices).

        Collective: every rank must call this, even with no new stars.
        """
        if isinstance(self.params.model, SubgridWind):
            return None

        star_index = torch.as_tensor(new_stars, dtype=torch.int64).reshape(-1)
        if not self.transport.any_true(star_index.numel() > 0):
            return None

        particles = tree.particles
        event = WindEvent(
            time=time,
            hubble=hubble,
            particles=particles,
            box_size=tree.box_size,
            samples=WindSamples.allocate(star_index, particles.hsml[star_index], tree.box_size),
        )
        try:
            walk = TreeWalk(tree, self.transport, nthreads=self.nthreads, label="WIND_WEIGHT")
            rounds = self.converge(walk, event)

            # Over-counts: every round adds its visits again.
            event.kicks = KickBuffer(event.nvisited + self.kick_slack)

            walk.label = "WIND_KICK"
            queries = [self._query(event, slot) for slot in range(event.samples.size())]
            walk.run(WindKickIterator(event, self.params, self.constants, self.rng), queries)

            summary = resolve_kicks(
                event.kicks,
                particles,
                time=time,
                params=self.params,
                constants=self.constants,
                rng=self.rng,
            )

            tot_newstars = self.transport.sum_int(star_index.numel())
            tot_kicks = self.transport.sum_int(summary.nkicks)
            tot_applied = self.transport.sum_int(summary.applied)
            console.message(
                0,
                f"Made {tot_applied} gas wind, discarded {tot_kicks - tot_applied} kicks from {tot_newstars} stars",
            )
            return FeedbackStats(
                new_stars=tot_newstars,
                nkicks=tot_kicks,
                applied=tot_applied,
                search_rounds=rounds,
            )
        finally:
            event.release()

    def _query(self, event: WindEvent, slot: int) -> WindQuery:
        samples = event.samples
        i = int(samples.star_index[slot])
        p = event.particles
        return WindQuery(
            slot=slot,
            star_id=int(p.ids[i]),
            position=tuple(p.positions[i].tolist()),
            velocity=tuple(p.velocities[i].tolist()),
            mass=float(p.masses[i]),
            hsml=float(p.hsml[i]),
            total_weight=float(samples.total_weight[slot]),
            vdisp=float(samples.vdisp[slot]),
            dm_radius=tuple(samples.trial_radii(slot, event.box_size)),
        )

    def converge(self, walk: TreeWalk, event: WindEvent) -> int:
        """Repeat the weight walk on unconverged stars until no rank has any left."""
        samples = event.samples
        queue = list(range(samples.size()))
        rounds = 0
        while self.transport.any_true(len(queue) > 0):
            rounds += 1
            if rounds > self.max_search_rounds:
                raise WindSearchError(
                    f"dark-matter radius search failed to converge after {self.max_search_rounds} rounds "
                    f"({len(queue)} stars left on rank {self.transport.rank})"
                )
            queries = [self._query(event, slot) for slot in queue]
            results, walks = walk.run(WindWeightIterator(event), queries)
            event.nvisited += sum(lv.nvisited for lv in walks)

            stats = LocalWalk(thread_id=0)
            redo: list[int] = []
            for slot, result in zip(queue, results):
                samples.store_round(slot, result)
                if resolve_dispersion(samples, slot, event.particles, event.box_size, stats):
                    redo.append(slot)

            if queue:
                console.debug(
                    f"{walk.label} round {rounds}: {len(redo)} of {len(queue)} left",
                    detail=f"Max ngb={stats.maxnumngb:g}, min ngb={stats.minnumngb:g}",
                )
            queue = redo
        return rounds

    def make_after_sf(self, particles: ParticleSet, i: int, sm: float, atime: float) -> bool:
        """Subgrid wind: maybe kick gas particle `i` right after it formed mass `sm` of stars.

        `particles.masses[i]` is the gas mass left after forking the star.
        """
        if not isinstance(self.params.model, SubgridWind) or not self.constants.ever_decouple:
            return False
        # no dispersion is measured: the speed is the fixed wind speed
        windeff, v = self.params.model.efficiency_and_speed(0.0, atime, self.constants.wind_speed)
        pw = windeff * sm / float(particles.masses[i])
        prob = 1.0 - math.exp(-pw)
        pid = int(particles.ids[i])
        if self.rng(pid + 2) >= prob:
            return False
        direction = random_direction(self.rng, pid)
        particles.velocities[i] += v * direction
        particles.delay_time[i] = self.params.free_travel_length / self.constants.wind_speed
        return True

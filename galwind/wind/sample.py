"""Per-star search state for the dark-matter velocity dispersion.

Each new star keeps a bracket [left, right] on the radius enclosing
`NUMDMNGB` dark-matter particles and evaluates `NWINDHSML` trial radii
inside it per round. Trial radii split the bracket evenly in volume.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import torch

from ..errors import WindFeedbackError
from ..particles import ParticleSet, STAR
from ..treewalk import LocalWalk

if TYPE_CHECKING:
    from .weight import WindWeightResult

NWINDHSML = 5
NUMDMNGB = 40
MAXDMDEVIATION = 2
# bracket width below which an imperfect count is accepted
CONVERGED_WIDTH = 1e-2


def trial_radius(left: float, right: float, i: int, k: int = NWINDHSML) -> float:
    """Radius `i` of `k` splitting [left, right] evenly in volume."""
    lvol = left**3
    rvol = right**3
    return ((i + 1.0) / (k + 1.0) * (rvol - lvol) + lvol) ** (1.0 / 3.0)


def effective_bounds(left: float, right: float, dm_radius: float, box_size: float) -> tuple[float, float]:
    """Bracket actually sampled; an untightened bracket falls back to dm_radius."""
    # Extra radii below dm_radius are free, radii above it are not.
    if right > 0.99 * box_size:
        right = dm_radius
    if left == 0.0:
        left = 0.1 * dm_radius
    return left, right


@dataclass(frozen=True)
class NarrowedBracket:
    left: float
    right: float
    radius: float
    close: int


def narrow_down(
    left: float,
    right: float,
    radius: Sequence[float],
    numngb: Sequence[float],
    maxcmpt: int,
    desnumngb: int,
    box_size: float,
) -> NarrowedBracket:
    """Tighten the bracket from one round of counts and pick the next radius.

    `close` is the trial index whose count is nearest `desnumngb`.
    """
    close = 0
    ngbdist = abs(numngb[0] - desnumngb)
    for j in range(1, maxcmpt):
        newdist = abs(numngb[j] - desnumngb)
        if newdist < ngbdist:
            ngbdist = newdist
            close = j

    for j in range(maxcmpt):
        if numngb[j] < desnumngb:
            left = radius[j]
        if numngb[j] > desnumngb:
            right = radius[j]
            break

    hsml = radius[close]

    if right > 0.99 * box_size:
        # Grow at most 4x, less if the outer density predicts it.
        dngbdv = 0.0
        if maxcmpt > 1 and radius[maxcmpt - 1] > radius[maxcmpt - 2]:
            dngbdv = (numngb[maxcmpt - 1] - numngb[maxcmpt - 2]) / (radius[maxcmpt - 1] ** 3 - radius[maxcmpt - 2] ** 3)
        newhsml = 4.0 * hsml
        if dngbdv > 0.0:
            newvolume = hsml**3 + (desnumngb - numngb[maxcmpt - 1]) / dngbdv
            if newvolume > 0.0 and newvolume ** (1.0 / 3.0) < newhsml:
                newhsml = newvolume ** (1.0 / 3.0)
        hsml = newhsml
    if hsml > right:
        hsml = right

    if left == 0.0:
        # Extrapolate inwards at locally constant density.
        dngbdv = 0.0
        if maxcmpt > 1 and radius[1] > radius[0]:
            dngbdv = (numngb[1] - numngb[0]) / (radius[1] ** 3 - radius[0] ** 3)
        if maxcmpt == 1 and radius[0] > 0.0:
            dngbdv = numngb[0] / radius[0] ** 3
        if dngbdv > 0.0:
            newvolume = hsml**3 + (desnumngb - numngb[0]) / dngbdv
            if newvolume > 0.0:
                hsml = newvolume ** (1.0 / 3.0)
    if hsml < left:
        hsml = left

    return NarrowedBracket(left=left, right=right, radius=hsml, close=close)


@dataclass
class WindSamples:
    """Search state of every new star in one feedback event, indexed by slot."""

    star_index: torch.Tensor
    dm_radius: torch.Tensor
    left: torch.Tensor
    right: torch.Tensor
    total_weight: torch.Tensor
    vdisp: torch.Tensor
    ngb: torch.Tensor
    v1sum: torch.Tensor
    v2sum: torch.Tensor
    maxcmpte: torch.Tensor
    best: torch.Tensor

    @classmethod
    def allocate(cls, star_index: torch.Tensor, hsml: torch.Tensor, box_size: float) -> "WindSamples":
        n = int(star_index.shape[0])
        return cls(
            star_index=star_index.to(torch.int64).clone(),
            dm_radius=2.0 * hsml.to(torch.float64).clone(),
            left=torch.zeros(n, dtype=torch.float64),
            right=torch.full((n,), float(box_size), dtype=torch.float64),
            total_weight=torch.zeros(n, dtype=torch.float64),
            vdisp=torch.zeros(n, dtype=torch.float64),
            ngb=torch.zeros((n, NWINDHSML), dtype=torch.float64),
            v1sum=torch.zeros((n, NWINDHSML, 3), dtype=torch.float64),
            v2sum=torch.zeros((n, NWINDHSML), dtype=torch.float64),
            maxcmpte=torch.full((n,), NWINDHSML, dtype=torch.int64),
            best=torch.zeros(n, dtype=torch.int64),
        )

    def size(self) -> int:
        return int(self.star_index.shape[0])

    def trial_radii(self, slot: int, box_size: float) -> list[float]:
        left, right = effective_bounds(
            float(self.left[slot]), float(self.right[slot]), float(self.dm_radius[slot]), box_size
        )
        return [trial_radius(left, right, i) for i in range(NWINDHSML)]

    def store_round(self, slot: int, result: "WindWeightResult") -> None:
        """Replace the accumulators of `slot` with one round's reduced sums."""
        m = int(result.maxcmpte)
        self.total_weight[slot] = result.total_weight
        self.maxcmpte[slot] = m
        self.ngb[slot].zero_()
        self.v1sum[slot].zero_()
        self.v2sum[slot].zero_()
        self.ngb[slot, :m] = torch.tensor(result.ngb[:m], dtype=torch.float64)
        self.v2sum[slot, :m] = torch.tensor(result.v2sum[:m], dtype=torch.float64)
        self.v1sum[slot, :m] = torch.tensor(result.v1sum[:m], dtype=torch.float64).reshape(m, 3)

    def converged(self, slot: int) -> bool:
        numngb = float(self.ngb[slot, int(self.best[slot])])
        in_window = NUMDMNGB - MAXDMDEVIATION <= numngb <= NUMDMNGB + MAXDMDEVIATION
        return in_window or float(self.right[slot] - self.left[slot]) <= CONVERGED_WIDTH


def resolve_dispersion(
    samples: WindSamples,
    slot: int,
    particles: ParticleSet,
    box_size: float,
    lv: LocalWalk | None = None,
) -> bool:
    """Post-process one round for `slot`; return True if it needs another round."""
    i = int(samples.star_index[slot])
    if int(particles.types[i]) != STAR:
        raise WindFeedbackError(
            f"Wind called on something not a star particle: "
            f"(i={i}, t={int(particles.types[i])}, id = {int(particles.ids[i])})"
        )

    maxcmpt = int(samples.maxcmpte[slot])
    radii = samples.trial_radii(slot, box_size)[:maxcmpt]
    counts = samples.ngb[slot, :maxcmpt].tolist()
    narrowed = narrow_down(
        float(samples.left[slot]),
        float(samples.right[slot]),
        radii,
        counts,
        maxcmpt,
        NUMDMNGB,
        box_size,
    )
    samples.left[slot] = narrowed.left
    samples.right[slot] = narrowed.right
    samples.dm_radius[slot] = narrowed.radius
    samples.best[slot] = narrowed.close
    numngb = counts[narrowed.close]

    if lv is not None:
        lv.record_ngb(numngb)

    if not samples.converged(slot):
        return True

    if numngb > 0:
        v1 = samples.v1sum[slot, narrowed.close]
        vdisp = float(samples.v2sum[slot, narrowed.close]) / numngb
        vdisp -= float(torch.sum((v1 / numngb) ** 2))
        # cancellation can leave a non-positive variance: dispersion stays unset
        if vdisp > 0.0:
            samples.vdisp[slot] = math.sqrt(vdisp / 3.0)
    return False

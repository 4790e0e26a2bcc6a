from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..particles import ParticleSet
from .sample import WindSamples

if TYPE_CHECKING:
    from .kicks import KickBuffer


@dataclass
class WindEvent:
    """State owned by one call of `WindFeedback.winds_and_feedback`.

    Created when the event starts and released when it ends; nothing here is
    reused by the next event.
    """

    time: float
    hubble: float
    particles: ParticleSet
    box_size: float
    samples: Optional[WindSamples] = None
    kicks: Optional["KickBuffer"] = None
    nvisited: int = 0

    def release(self) -> None:
        self.samples = None
        self.kicks = None

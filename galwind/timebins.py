"""Integer timeline and logarithmic time bins.

Each integer time stores the index of the last sync point in its high bits
(above `TIMEBINS`); the low bits are a power-of-two subdivision of the
interval in log(a) between that sync point and the next. A particle in
time bin `b` advances by `2**b` ticks per step (bin 0 is inactive).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .console import console

TIMEBINS = 29
TIMEBASE = 1 << TIMEBINS


@dataclass
class SyncPoint:
    loga: float
    ti: int = 0
    write_snapshot: bool = False
    write_fof: bool = False


class TimeBinManager:
    """Sync points between `time_init` and `time_max`, inclusive."""

    def __init__(
        self,
        time_init: float,
        time_max: float,
        output_times: Iterable[float] = (),
        *,
        snapshot_with_fof: bool = False,
    ) -> None:
        if not (0.0 < time_init < time_max):
            raise ValueError(f"need 0 < time_init < time_max, got {time_init}, {time_max}")
        self.sync_points: list[SyncPoint] = []
        self._setup_sync_points(time_init, time_max, list(output_times), snapshot_with_fof)

    def _setup_sync_points(
        self,
        time_init: float,
        time_max: float,
        output_times: list[float],
        snapshot_with_fof: bool,
    ) -> None:
        points = [
            SyncPoint(loga=math.log(time_init), write_snapshot=False),
            SyncPoint(loga=math.log(time_max), write_snapshot=True),
        ]
        for a in output_times:
            loga = math.log(a)
            # outside [TimeInit, TimeMax]
            if loga < points[0].loga or loga > points[-1].loga:
                continue
            j = next(j for j, sp in enumerate(points) if loga <= sp.loga)
            if loga != points[j].loga:
                points.insert(j, SyncPoint(loga=loga))
            points[j].write_snapshot = True
            if snapshot_with_fof:
                points[j].write_fof = True

        for i, sp in enumerate(points):
            sp.ti = i << TIMEBINS
            console.debug(f"Out: {math.exp(sp.loga):g} {sp.ti}")
        self.sync_points = points

    def find_next_sync_point(self, ti: int) -> Optional[SyncPoint]:
        """Next sync point strictly after `ti`; None means the run is over."""
        for sp in self.sync_points:
            if sp.ti > ti:
                return sp
        return None

    def find_current_sync_point(self, ti: int) -> Optional[SyncPoint]:
        for sp in self.sync_points:
            if sp.ti == ti:
                return sp
        return None

    def get_pm_sync_point(self, ti: int) -> SyncPoint:
        return SyncPoint(loga=self.loga_from_ti(ti), ti=ti, write_snapshot=True, write_fof=False)

    def _dloga_interval_ti(self, ti: int) -> float:
        """dlog(a) per tick, valid until the next sync point."""
        n = len(self.sync_points)
        lastsnap = ti >> TIMEBINS
        if lastsnap >= n - 1:
            lastsnap = n - 2
        lastoutput = self.sync_points[lastsnap].loga
        return (self.sync_points[lastsnap + 1].loga - lastoutput) / TIMEBASE

    def loga_from_ti(self, ti: int) -> float:
        n = len(self.sync_points)
        lastsnap = ti >> TIMEBINS
        if lastsnap >= n:
            lastsnap = n - 1
        lastoutput = self.sync_points[lastsnap].loga
        return lastoutput + (ti & (TIMEBASE - 1)) * self._dloga_interval_ti(ti)

    def ti_from_loga(self, loga: float) -> int:
        points = self.sync_points
        i = 1
        while i < len(points) - 1 and not points[i].loga > loga:
            i += 1
        log_dtime = (points[i].loga - points[i - 1].loga) / TIMEBASE
        ti = (i - 1) << TIMEBINS
        # past the end of the timeline this still extrapolates sensibly
        return ti + int((loga - points[i - 1].loga) / log_dtime)

    def dloga_from_dti(self, dti: int, ti_current: int) -> float:
        return self.loga_from_ti(ti_current + dti) - self.loga_from_ti(ti_current)

    def dti_from_dloga(self, dloga: float, ti_current: int) -> int:
        loga = self.loga_from_ti(ti_current)
        return self.ti_from_loga(loga + dloga) - self.ti_from_loga(loga)

    def get_dloga_for_bin(self, timebin: int, ti_current: int) -> float:
        """log(a) spanned by one step of a particle in `timebin`."""
        ticks = (1 << int(timebin)) if timebin else 0
        return ticks * self._dloga_interval_ti(ti_current)


def round_down_power_of_two(dti: int) -> int:
    """Largest power-of-two subdivision of TIMEBASE not exceeding `dti`."""
    ti_min = TIMEBASE
    while ti_min > dti:
        ti_min >>= 1
    return ti_min

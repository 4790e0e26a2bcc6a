"""Exceptions raised by the wind feedback subsystem.

Everything here is fatal for the current feedback event: the caller is
expected to let it propagate and stop the run.
"""

from __future__ import annotations


class WindError(RuntimeError):
    """Base class for all galwind failures."""


class WindConfigError(WindError, ValueError):
    """Unrecognised wind model selector or invalid parameter value."""


class WindFeedbackError(WindError):
    """An invariant of the feedback event was violated."""


class KickBufferOverflow(WindFeedbackError):
    """More kick candidates than slots reserved for the feedback round."""

    def __init__(self, slot: int, capacity: int, *, target: int = -1, star_id: int = -1, distance: float = float("nan")) -> None:
        super().__init__(
            f"Not enough room in kick queue: {slot} >= {capacity} "
            f"for particle {target} starid {star_id} distance {distance:g}"
        )
        self.slot = slot
        self.capacity = capacity


class WindSearchError(WindFeedbackError):
    """The dark-matter radius search did not converge within the round cap."""

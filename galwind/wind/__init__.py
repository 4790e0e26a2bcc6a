from .decouple import WindDecoupling
from .event import WindEvent
from .feedback import FeedbackStats, WindFeedback
from .kicks import (
    KickBuffer,
    KickSummary,
    StarKickCandidate,
    WindKickIterator,
    apply_kick,
    resolve_kicks,
)
from .sample import (
    CONVERGED_WIDTH,
    MAXDMDEVIATION,
    NUMDMNGB,
    NWINDHSML,
    WindSamples,
    effective_bounds,
    narrow_down,
    resolve_dispersion,
    trial_radius,
)
from .weight import WindQuery, WindWeightIterator, WindWeightResult

__all__ = [
    "CONVERGED_WIDTH",
    "FeedbackStats",
    "KickBuffer",
    "KickSummary",
    "MAXDMDEVIATION",
    "NUMDMNGB",
    "NWINDHSML",
    "StarKickCandidate",
    "WindDecoupling",
    "WindEvent",
    "WindFeedback",
    "WindKickIterator",
    "WindQuery",
    "WindSamples",
    "WindWeightIterator",
    "WindWeightResult",
    "apply_kick",
    "effective_bounds",
    "narrow_down",
    "resolve_dispersion",
    "resolve_kicks",
    "trial_radius",
]

"""Galactic-wind feedback for cosmological particle simulations.

When gas forms stars, the new stars eject some of the surrounding gas into a
hot wind that is temporarily decoupled from the hydrodynamics:

- `galwind.wind.WindFeedback` runs one feedback event per star-formation step.
- `galwind.wind.WindDecoupling` is what the hydro solver calls for wind particles.
- `galwind.config` holds the wind model selection and its constants.
"""

from __future__ import annotations

from .config import (
    FixedEfficiencyWind,
    HaloScalingWind,
    SubgridWind,
    WindConstants,
    WindModel,
    WindParams,
    load_wind_params,
)
from .errors import (
    KickBufferOverflow,
    WindConfigError,
    WindError,
    WindFeedbackError,
    WindSearchError,
)
from .particles import DARK_MATTER, GAS, STAR, ParticleSet
from .rng import HashRandom
from .timebins import TimeBinManager
from .treewalk import ParticleTree, TreeWalk

__all__ = [
    "DARK_MATTER",
    "FixedEfficiencyWind",
    "GAS",
    "HaloScalingWind",
    "HashRandom",
    "KickBufferOverflow",
    "ParticleSet",
    "ParticleTree",
    "STAR",
    "SubgridWind",
    "TimeBinManager",
    "TreeWalk",
    "WindConfigError",
    "WindConstants",
    "WindError",
    "WindFeedbackError",
    "WindModel",
    "WindParams",
    "WindSearchError",
    "load_wind_params",
]

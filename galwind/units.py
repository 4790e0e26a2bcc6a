"""Cosmological unit system and physical constants (cgs).

This module defines:
- The cgs constants the wind model needs.
- An explicit base-unit mapping from internal simulation units to cgs.
- Conversions used when deriving the wind constants at startup.

Internal units follow the usual cosmological convention: lengths in kpc/h,
masses in 1e10 Msun/h, velocities in km/s. Internal time is then
length / velocity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# [FORMULA] adiabatic index of a monatomic ideal gas
GAMMA: float = 5.0 / 3.0
GAMMA_MINUS1: float = GAMMA - 1.0

BOLTZMANN: float = 1.38066e-16
PROTONMASS: float = 1.67262178e-24
HYDROGEN_MASSFRAC: float = 0.76

CM_PER_MPC: float = 3.085678e24
SOLAR_MASS: float = 1.989e33
SEC_PER_MEGAYEAR: float = 3.155e13


@dataclass(frozen=True)
class UnitSystem:
    """Mapping from internal units to cgs.

    Interpretation:
    - 1 internal length unit   = length_in_cm centimetres
    - 1 internal mass unit     = mass_in_g grams
    - 1 internal velocity unit = velocity_in_cm_per_s cm/s
    """

    length_in_cm: float
    mass_in_g: float
    velocity_in_cm_per_s: float

    name: str = "custom"

    @staticmethod
    def gadget(*, name: str = "gadget") -> "UnitSystem":
        """kpc/h, 1e10 Msun/h, km/s."""
        return UnitSystem(
            length_in_cm=CM_PER_MPC / 1000.0,
            mass_in_g=1.0e10 * SOLAR_MASS,
            velocity_in_cm_per_s=1.0e5,
            name=name,
        )

    @property
    def time_in_s(self) -> float:
        return self.length_in_cm / self.velocity_in_cm_per_s

    @property
    def energy_in_cgs(self) -> float:
        return self.mass_in_g * self.velocity_in_cm_per_s**2

    @property
    def density_in_cgs(self) -> float:
        return self.mass_in_g / self.length_in_cm**3

    def myr_to_internal(self, myr: float) -> float:
        """Convert a duration in Myr to internal time units."""
        return float(myr) * SEC_PER_MEGAYEAR / self.time_in_s

    def supernova_specific_energy(self, temp_supernova: float = 1.0e8) -> float:
        """Specific energy of supernova ejecta at `temp_supernova` (internal units).

        [FORMULA] u = k_B T / ((γ-1) μ m_p), fully ionised primordial gas
        """
        if not (temp_supernova > 0.0) or not math.isfinite(temp_supernova):
            raise ValueError(f"temp_supernova must be positive, got {temp_supernova}")
        meanweight = 4.0 / (8.0 - 5.0 * (1.0 - HYDROGEN_MASSFRAC))
        u_cgs = BOLTZMANN * temp_supernova / (GAMMA_MINUS1 * meanweight * PROTONMASS)
        return u_cgs * self.mass_in_g / self.energy_in_cgs

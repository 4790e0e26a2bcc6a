"""Wind model configuration.

Three model kinds are supported:
- `HaloScalingWind`: Okamoto, Frenk, Jenkins & Theuns 2010 (arXiv:0909.0265).
  Mass loading and speed scale with the local dark-matter velocity dispersion.
- `FixedEfficiencyWind`: Dalla Vecchia & Schaye 2008 (arXiv:0801.2770).
  Constant mass loading and speed.
- `SubgridWind`: Springel & Hernquist 2003 (arXiv:astro-ph/0206395).
  The star-forming particle itself is kicked at formation time; no
  neighbour search happens.

Parameters use the Gadget parameter-file names so existing
configurations can be loaded with `WindParams.from_mapping`.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

from .console import console
from .distributed import Transport
from .errors import WindConfigError
from .units import SEC_PER_MEGAYEAR


@dataclass(frozen=True)
class FixedEfficiencyWind:
    efficiency: float = 2.0

    def efficiency_and_speed(self, vdisp: float, atime: float, wind_speed: float) -> tuple[float, float]:
        del vdisp
        return self.efficiency, wind_speed * atime


@dataclass(frozen=True)
class HaloScalingWind:
    # [CHOICE] reference dispersion σ₀ (km/s) and speed factor
    # [FORMULA] η = (σ / σ₀)^-2, v = f_v σ
    sigma0: float = 353.0
    speed_factor: float = 3.7

    def efficiency_and_speed(self, vdisp: float, atime: float, wind_speed: float) -> tuple[float, float]:
        del wind_speed
        # vdisp is peculiar (a * km/s); the mass loading uses the physical value.
        ratio = vdisp / atime / self.sigma0
        return 1.0 / (ratio * ratio), self.speed_factor * vdisp


@dataclass(frozen=True)
class SubgridWind:
    """Only consulted by `WindFeedback.make_after_sf`; there is no neighbour search."""

    efficiency: float = 2.0

    def efficiency_and_speed(self, vdisp: float, atime: float, wind_speed: float) -> tuple[float, float]:
        del vdisp
        return self.efficiency, wind_speed * atime


WindModel = Union[FixedEfficiencyWind, HaloScalingWind, SubgridWind]

_SELECTOR_TOKENS: dict[str, frozenset[str]] = {
    "subgrid": frozenset({"subgrid"}),
    "decouple": frozenset({"decouple"}),
    "halo": frozenset({"halo"}),
    "fixedefficiency": frozenset({"fixedefficiency"}),
    "ofjt10": frozenset({"halo", "decouple"}),
    "vs08": frozenset({"fixedefficiency"}),
    "sh03": frozenset({"subgrid", "decouple", "fixedefficiency"}),
}


def parse_wind_selector(selector: str) -> tuple[frozenset[str], bool]:
    """Split a `WindModel` string into its flag set and the decouple flag."""
    flags: set[str] = set()
    for raw in str(selector).split(","):
        token = raw.strip().lower()
        if not token:
            continue
        if token not in _SELECTOR_TOKENS:
            raise WindConfigError(f"WindModel = {selector!r} is strange: unknown token {token!r}")
        flags |= _SELECTOR_TOKENS[token]
    return frozenset(flags - {"decouple"}), "decouple" in flags


@dataclass(frozen=True)
class WindParams:
    """Wind model selection and its numeric constants (as read from config)."""

    model: WindModel = field(default_factory=HaloScalingWind)
    decouple_sph: bool = True
    energy_fraction: float = 1.0
    thermal_factor: float = 0.0
    min_wind_velocity: float = 0.0
    max_free_travel_time_myr: float = 60.0
    free_travel_length: float = 20.0
    free_travel_dens_fac: float = 0.1

    def __post_init__(self) -> None:
        if not isinstance(self.model, (FixedEfficiencyWind, HaloScalingWind, SubgridWind)):
            raise WindConfigError(f"WindModel {self.model!r} is strange. This shall not happen.")
        for name in (
            "energy_fraction",
            "thermal_factor",
            "min_wind_velocity",
            "max_free_travel_time_myr",
            "free_travel_length",
            "free_travel_dens_fac",
        ):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0.0:
                raise WindConfigError(f"{name} must be finite and >= 0, got {value}")
        if isinstance(self.model, (FixedEfficiencyWind, SubgridWind)) and not (self.model.efficiency > 0.0):
            raise WindConfigError(f"WindEfficiency must be > 0, got {self.model.efficiency}")
        if isinstance(self.model, HaloScalingWind) and not (self.model.sigma0 > 0.0):
            raise WindConfigError(f"WindSigma0 must be > 0, got {self.model.sigma0}")

    @property
    def selector(self) -> str:
        kind = {
            FixedEfficiencyWind: "fixedefficiency",
            HaloScalingWind: "halo",
            SubgridWind: "subgrid,fixedefficiency",
        }[type(self.model)]
        return kind + (",decouple" if self.decouple_sph else "")

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "WindParams":
        """Build from a mapping keyed by Gadget parameter names (`WindModel`, `WindEfficiency`, ...)."""
        flags, decouple = parse_wind_selector(params.get("WindModel", "ofjt10,decouple"))
        efficiency = float(params.get("WindEfficiency", 2.0))

        model: WindModel
        if "subgrid" in flags:
            if "halo" in flags:
                raise WindConfigError("WindModel: the subgrid model cannot scale with the halo")
            model = SubgridWind(efficiency=efficiency)
        elif "halo" in flags and "fixedefficiency" in flags:
            raise WindConfigError("WindModel: halo and fixedefficiency are mutually exclusive")
        elif "halo" in flags:
            model = HaloScalingWind(
                sigma0=float(params.get("WindSigma0", 353.0)),
                speed_factor=float(params.get("WindSpeedFactor", 3.7)),
            )
        elif "fixedefficiency" in flags:
            model = FixedEfficiencyWind(efficiency=efficiency)
        else:
            raise WindConfigError(f"WindModel = {params.get('WindModel')!r} is strange. This shall not happen.")

        return cls(
            model=model,
            decouple_sph=decouple,
            energy_fraction=float(params.get("WindEnergyFraction", 1.0)),
            thermal_factor=float(params.get("WindThermalFactor", 0.0)),
            min_wind_velocity=float(params.get("MinWindVelocity", 0.0)),
            max_free_travel_time_myr=float(params.get("MaxWindFreeTravelTime", 60.0)),
            free_travel_length=float(params.get("WindFreeTravelLength", 20.0)),
            free_travel_dens_fac=float(params.get("WindFreeTravelDensFac", 0.1)),
        )


def load_wind_params(path: str | Path | None, transport: Transport) -> WindParams:
    """Read a JSON parameter file on the root rank and broadcast the result.

    Only the root rank touches the file; other ranks may pass any path.
    """
    params: WindParams | None = None
    if transport.rank == 0:
        if path is None:
            params = WindParams()
        else:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise WindConfigError(f"{path}: expected a JSON object of parameters")
            params = WindParams.from_mapping(raw)
    return transport.broadcast_object(params, src=0)


@dataclass(frozen=True)
class WindConstants:
    """Constants derived once at startup from `WindParams` and star formation."""

    wind_speed: float
    max_free_travel_time: float
    free_travel_dens_thresh: float

    @property
    def ever_decouple(self) -> bool:
        """Whether kicked particles ever enter the free-streaming phase."""
        return self.max_free_travel_time > 0.0

    @classmethod
    def derive(
        cls,
        params: WindParams,
        *,
        factor_sn: float,
        egy_spec_sn: float,
        phys_dens_thresh: float,
        unit_time_in_s: float,
    ) -> "WindConstants":
        if not (0.0 <= factor_sn < 1.0):
            raise WindConfigError(f"FactorSN must be in [0, 1), got {factor_sn}")
        if not (unit_time_in_s > 0.0):
            raise WindConfigError(f"UnitTime_in_s must be > 0, got {unit_time_in_s}")

        # [FORMULA] v_w = sqrt(2 f_E β u_SN / (1 - β))
        wind_speed = math.sqrt(2.0 * params.energy_fraction * factor_sn * egy_spec_sn / (1.0 - factor_sn))
        max_delay = params.max_free_travel_time_myr * SEC_PER_MEGAYEAR / unit_time_in_s
        dens_thresh = params.free_travel_dens_fac * phys_dens_thresh

        model = params.model
        if isinstance(model, (FixedEfficiencyWind, SubgridWind)):
            wind_speed /= math.sqrt(model.efficiency)
            console.message(0, f"Windspeed: {wind_speed:g} MaxDelay {max_delay:g}")
        elif isinstance(model, HaloScalingWind):
            console.message(
                0,
                f"Reference Windspeed: {model.sigma0 * model.speed_factor:g}, MaxDelay {max_delay:g}",
            )
        else:
            raise WindConfigError(f"WindModel {model!r} is strange. This shall not happen.")

        return cls(
            wind_speed=wind_speed,
            max_free_travel_time=max_delay,
            free_travel_dens_thresh=dens_thresh,
        )

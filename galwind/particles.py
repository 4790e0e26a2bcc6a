from __future__ import annotations

from dataclasses import dataclass

import torch

GAS = 0
DARK_MATTER = 1
STAR = 4

PARTICLE_FIELDS: tuple[str, ...] = (
    "ids",
    "types",
    "positions",
    "velocities",
    "masses",
    "hsml",
    "density",
    "entropy",
    "delay_time",
    "time_bin",
    "hydro_accel",
    "dt_entropy",
    "max_signal_vel",
    "is_garbage",
    "swallowed",
)


@dataclass
class ParticleSet:
    """Local particles of one rank, structure-of-arrays.

    Gas-only fields (density, entropy, delay_time and the hydro accumulators)
    exist for every particle and are ignored for non-gas types.
    """

    ids: torch.Tensor
    types: torch.Tensor
    positions: torch.Tensor
    velocities: torch.Tensor
    masses: torch.Tensor
    hsml: torch.Tensor
    density: torch.Tensor
    entropy: torch.Tensor
    delay_time: torch.Tensor
    time_bin: torch.Tensor
    hydro_accel: torch.Tensor
    dt_entropy: torch.Tensor
    max_signal_vel: torch.Tensor
    is_garbage: torch.Tensor
    swallowed: torch.Tensor

    @classmethod
    def from_state(cls, state: dict[str, torch.Tensor]) -> "ParticleSet":
        """Build from a dict of tensors; missing gas/hydro fields default to zero."""
        positions = state["positions"].to(dtype=torch.float64).contiguous()
        n = int(positions.shape[0])

        def scalar(name: str, fill: float = 0.0) -> torch.Tensor:
            if name in state:
                return state[name].to(dtype=torch.float64).contiguous()
            return torch.full((n,), fill, dtype=torch.float64)

        def flag(name: str) -> torch.Tensor:
            if name in state:
                return state[name].to(dtype=torch.bool).contiguous()
            return torch.zeros((n,), dtype=torch.bool)

        return cls(
            ids=state["ids"].to(dtype=torch.int64).contiguous(),
            types=state["types"].to(dtype=torch.int64).contiguous(),
            positions=positions,
            velocities=state.get("velocities", torch.zeros((n, 3))).to(dtype=torch.float64).contiguous(),
            masses=scalar("masses", 1.0),
            hsml=scalar("hsml"),
            density=scalar("density"),
            entropy=scalar("entropy"),
            delay_time=scalar("delay_time"),
            time_bin=state.get("time_bin", torch.zeros((n,), dtype=torch.int64)).to(dtype=torch.int64).contiguous(),
            hydro_accel=state.get("hydro_accel", torch.zeros((n, 3))).to(dtype=torch.float64).contiguous(),
            dt_entropy=scalar("dt_entropy"),
            max_signal_vel=scalar("max_signal_vel"),
            is_garbage=flag("is_garbage"),
            swallowed=flag("swallowed"),
        )

    def size(self) -> int:
        return int(self.positions.shape[0])

    def select(self, mask: torch.Tensor) -> "ParticleSet":
        return ParticleSet(**{name: getattr(self, name)[mask] for name in PARTICLE_FIELDS})

    def clone(self) -> "ParticleSet":
        return ParticleSet(**{name: getattr(self, name).clone() for name in PARTICLE_FIELDS})

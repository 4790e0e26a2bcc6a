#!/usr/bin/env python3
"""Galactic-wind feedback demo on a synthetic periodic box.

Forms the star particles of a random box, runs one feedback event, then
evolves the wind particles' free-streaming timers for a few steps.

Usage:
    python run.py                         # ofjt10 halo-scaling wind
    python run.py --model vs08            # fixed efficiency
    python run.py --model sh03            # subgrid wind at star formation
    python run.py --threads 4 --debug     # threaded walk, per-round output
    python run.py --params winds.json     # Gadget parameter names
"""

from __future__ import annotations

import argparse
import math

import torch

from galwind.config import SubgridWind, WindConstants, WindParams, load_wind_params
from galwind.console import console
from galwind.distributed import LoopbackTransport
from galwind.errors import WindError, WindFeedbackError
from galwind.particles import GAS, STAR
from galwind.rng import HashRandom
from galwind.synthetic import make_box
from galwind.timebins import TIMEBINS, TimeBinManager
from galwind.treewalk import ParticleTree
from galwind.units import UnitSystem
from galwind.wind import WindDecoupling, WindFeedback


def hubble_rate(atime: float, omega_m: float = 0.3) -> float:
    """H(a) in h km/s/kpc for flat ΛCDM."""
    return 0.1 * math.sqrt(omega_m / atime**3 + (1.0 - omega_m))


def main():
    parser = argparse.ArgumentParser(
        description="Galactic wind feedback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument("--model", type=str, default="ofjt10,decouple", help="WindModel selector")
    parser.add_argument("--params", type=str, default=None, help="JSON parameter file (overrides --model)")
    parser.add_argument("--gas", type=int, default=3000, help="Number of gas particles")
    parser.add_argument("--dm", type=int, default=3000, help="Number of dark-matter particles")
    parser.add_argument("--stars", type=int, default=20, help="Number of new star particles")
    parser.add_argument("--box", type=float, default=20.0, help="Box size (kpc/h)")
    parser.add_argument("--atime", type=float, default=0.5, help="Scale factor")
    parser.add_argument("--steps", type=int, default=10, help="Decoupling steps after the event")
    parser.add_argument("--timebin", type=int, default=20, help="Time bin of every particle")
    parser.add_argument("--threads", type=int, default=1, help="Walk threads")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for the box and the wind draws")
    parser.add_argument("--debug", action="store_true", help="Show per-round search output")

    args = parser.parse_args()
    console.set_debug(args.debug)

    transport = LoopbackTransport()
    console.set_rank(transport.rank)
    if args.params is not None:
        params = load_wind_params(args.params, transport)
    else:
        params = WindParams.from_mapping({"WindModel": args.model})

    units = UnitSystem.gadget()
    phys_dens_thresh = 0.1
    constants = WindConstants.derive(
        params,
        factor_sn=0.1,
        egy_spec_sn=units.supernova_specific_energy(1.0e8),
        phys_dens_thresh=phys_dens_thresh,
        unit_time_in_s=units.time_in_s,
    )

    atime = float(args.atime)
    hubble = hubble_rate(atime)
    particles = make_box(
        n_gas=args.gas,
        n_dm=args.dm,
        n_stars=args.stars,
        box_size=args.box,
        seed=args.seed,
        gas_density=10.0 * phys_dens_thresh * atime**3,
        star_hsml=2.0,
    )
    particles.time_bin.fill_(int(args.timebin))

    feedback = WindFeedback(
        params,
        constants,
        transport=transport,
        rng=HashRandom(seed=args.seed),
        nthreads=args.threads,
    )

    gas = torch.nonzero(particles.types == GAS).reshape(-1)
    stars = torch.nonzero(particles.types == STAR).reshape(-1)

    with console.spinner("Running feedback event..."):
        if isinstance(params.model, SubgridWind):
            kicked = sum(
                feedback.make_after_sf(particles, int(i), float(particles.masses[i]), atime)
                for i in gas[: args.stars]
            )
            summary = {"subgrid kicks": str(kicked)}
        else:
            stats = feedback.winds_and_feedback(stars, atime, hubble, ParticleTree(particles, args.box))
            if stats is None:
                raise WindFeedbackError(f"no feedback event ran for {stars.numel()} new stars")
            if stats.applied == 0:
                console.warn("No gas was kicked", detail="try more stars or a denser box")
            summary = {
                "search rounds": str(stats.search_rounds),
                "kicked": str(stats.applied),
                "discarded": str(stats.discarded),
            }

    timebins = TimeBinManager(0.01, 1.0, output_times=[0.25, atime])
    decoupling = WindDecoupling(params, constants, timebins)
    ti_current = timebins.ti_from_loga(math.log(atime))
    in_wind = [int(torch.as_tensor(decoupling.is_decoupled(particles, gas)).sum())]
    for _ in range(args.steps):
        wind = decoupling.is_decoupled(particles, gas)
        decoupling.decoupled_hydro(particles, gas[wind], atime)
        decoupling.evolve(particles, gas, a3inv=1.0 / atime**3, hubble=hubble, ti_current=ti_current)
        ti_current += 1 << int(args.timebin)
        if ti_current >> TIMEBINS >= len(timebins.sync_points) - 1:
            break
        in_wind.append(int(torch.as_tensor(decoupling.is_decoupled(particles, gas)).sum()))

    console.header(
        "Wind feedback",
        model=params.selector,
        windspeed=f"{constants.wind_speed:.4g}",
        max_delay=f"{constants.max_free_travel_time:.4g}",
        **summary,
        decoupled=" → ".join(str(n) for n in in_wind),
    )


if __name__ == "__main__":
    try:
        main()
    except WindError as exc:
        console.error(str(exc))
        raise SystemExit(1) from exc

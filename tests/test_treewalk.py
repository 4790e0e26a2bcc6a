"""Tests for the periodic neighbour index and the threaded walk driver."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import pytest
import torch

from galwind.distributed import LoopbackTransport
from galwind.particles import DARK_MATTER, GAS, ParticleSet
from galwind.synthetic import make_box
from galwind.treewalk import LocalWalk, Neighbor, NeighborIterator, ParticleTree, SearchParams, TreeWalk
from tests.ranks import run_on_ranks


@dataclass(frozen=True)
class _Query:
    position: tuple[float, float, float]
    radius: float
    stop_after: int = -1


@dataclass
class _Count:
    n: int = 0
    mass: float = 0.0
    order: list[float] | None = None


class _GasCounter(NeighborIterator[_Query, _Count]):
    def __init__(self, particles: ParticleSet, *, symmetric: bool = False) -> None:
        self.particles = particles
        self.symmetric = symmetric

    def new_result(self) -> _Count:
        return _Count(order=[])

    def begin(self, query: _Query, result: _Count) -> SearchParams:
        return SearchParams(radius=query.radius, mask=frozenset({GAS}), symmetric=self.symmetric)

    def visit(self, query: _Query, result: _Count, ngb: Neighbor, params: SearchParams, lv: LocalWalk) -> None:
        result.n += 1
        result.mass += float(self.particles.masses[ngb.index])
        result.order.append(ngb.r)
        lv.nvisited += 1
        if result.n == query.stop_after:
            params.radius = ngb.r

    def reduce(self, partials: Sequence[_Count]) -> _Count:
        return _Count(
            n=sum(p.n for p in partials),
            mass=sum(p.mass for p in partials),
            order=[r for p in partials for r in p.order],
        )


def _pair(box: float) -> ParticleSet:
    return ParticleSet.from_state(
        {
            "ids": torch.tensor([1, 2, 3]),
            "types": torch.tensor([GAS, GAS, DARK_MATTER]),
            "positions": torch.tensor([[0.1, 5.0, 5.0], [9.9, 5.0, 5.0], [0.2, 5.0, 5.0]], dtype=torch.float64),
        }
    )


def test_neighbors_use_nearest_periodic_image():
    tree = ParticleTree(_pair(10.0), 10.0)
    found = list(tree.neighbors((0.1, 5.0, 5.0), 0.5))

    assert [n.index for n in found] == [0, 2, 1]
    assert found[0].r == pytest.approx(0.0)
    assert found[2].r == pytest.approx(0.2)
    assert found[2].dist == pytest.approx((-0.2, 0.0, 0.0))


def test_walk_skips_masked_types():
    particles = _pair(10.0)
    walk = TreeWalk(ParticleTree(particles, 10.0), LoopbackTransport())
    results, walks = walk.run(_GasCounter(particles), [_Query((0.1, 5.0, 5.0), 0.5)])

    assert results[0].n == 2
    assert sum(lv.ninteractions for lv in walks) == 2


def test_shrinking_radius_stops_the_walk():
    particles = make_box(n_gas=400, n_dm=0, n_stars=0, box_size=5.0, seed=1)
    walk = TreeWalk(ParticleTree(particles, 5.0), LoopbackTransport())
    results, _ = walk.run(_GasCounter(particles), [_Query((2.5, 2.5, 2.5), 2.0, stop_after=10)])

    order = results[0].order
    assert order == sorted(order)
    assert results[0].n == 10


@pytest.mark.parametrize("nthreads", [2, 3, 8])
def test_thread_count_does_not_change_results(nthreads):
    particles = make_box(n_gas=800, n_dm=200, n_stars=0, box_size=6.0, seed=2)
    gen = torch.Generator().manual_seed(5)
    centers = (torch.rand((25, 3), generator=gen, dtype=torch.float64) * 6.0).tolist()
    queries = [_Query(tuple(c), 0.8) for c in centers]

    tree = ParticleTree(particles, 6.0)
    serial, _ = TreeWalk(tree, LoopbackTransport(), nthreads=1).run(_GasCounter(particles), queries)
    threaded, walks = TreeWalk(tree, LoopbackTransport(), nthreads=nthreads).run(_GasCounter(particles), queries)

    assert [r.n for r in threaded] == [r.n for r in serial]
    assert [r.order for r in threaded] == [r.order for r in serial]
    assert len(walks) == nthreads
    assert sum(lv.nvisited for lv in walks) == sum(r.n for r in serial)


def test_symmetric_walk_is_not_supported():
    particles = _pair(10.0)
    walk = TreeWalk(ParticleTree(particles, 10.0), LoopbackTransport())
    with pytest.raises(NotImplementedError):
        walk.run(_GasCounter(particles, symmetric=True), [_Query((0.1, 5.0, 5.0), 0.5)])


def test_invalid_construction():
    particles = _pair(10.0)
    with pytest.raises(ValueError):
        ParticleTree(particles, 0.0)
    with pytest.raises(ValueError):
        TreeWalk(ParticleTree(particles, 10.0), LoopbackTransport(), nthreads=0)


def test_results_return_to_owning_rank():
    particles = make_box(n_gas=800, n_dm=200, n_stars=0, box_size=6.0, seed=2)
    gen = torch.Generator().manual_seed(7)
    centers = (torch.rand((20, 3), generator=gen, dtype=torch.float64) * 6.0).tolist()
    queries = [_Query(tuple(c), 0.8) for c in centers]
    serial, _ = TreeWalk(ParticleTree(particles, 6.0), LoopbackTransport()).run(_GasCounter(particles), queries)

    left = particles.positions[:, 0] < 3.0
    parts = [particles.select(left), particles.select(~left)]
    # rank 0 owns the first 12 queries, rank 1 the other 8
    owned = [queries[:12], queries[12:]]

    def walk(transport):
        local = parts[transport.rank]
        tw = TreeWalk(ParticleTree(local, 6.0), transport, nthreads=2)
        return tw.run(_GasCounter(local), owned[transport.rank])[0]

    per_rank = run_on_ranks(2, walk)
    merged = per_rank[0] + per_rank[1]

    assert [r.n for r in merged] == [r.n for r in serial]
    assert [sorted(r.order) for r in merged] == [sorted(r.order) for r in serial]
    assert [r.mass for r in merged] == pytest.approx([r.mass for r in serial])

"""Neighbour traversal over a periodic spatial index.

A walk takes a list of queries from every rank, evaluates each of them
against the local particles and reduces the partial results back on the
rank that owns the query. The per-pair physics lives in a
`NeighborIterator`:

    begin(query, result) -> SearchParams   # radius, type mask, symmetry
    visit(query, result, ngb, params, lv)  # one candidate, nearest first

`visit` may shrink `params.radius`; candidates beyond the new radius are not
visited.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Generic, Iterator, Protocol, Sequence, TypeVar

import numpy as np
from scipy.spatial import cKDTree

from .distributed import Transport
from .particles import ParticleSet


class HasPosition(Protocol):
    position: tuple[float, float, float]


Q = TypeVar("Q", bound=HasPosition)
R = TypeVar("R")


@dataclass
class SearchParams:
    radius: float
    mask: frozenset[int]
    symmetric: bool = False


@dataclass(frozen=True)
class Neighbor:
    index: int
    r: float
    # other - query, nearest periodic image
    dist: tuple[float, float, float]


@dataclass
class LocalWalk:
    """Per-thread scratch state of one walk."""

    thread_id: int
    nvisited: int = 0
    ninteractions: int = 0
    maxnumngb: float = 0.0
    minnumngb: float = float("inf")

    def record_ngb(self, numngb: float) -> None:
        self.maxnumngb = max(self.maxnumngb, numngb)
        self.minnumngb = min(self.minnumngb, numngb)


class NeighborIterator(ABC, Generic[Q, R]):
    @abstractmethod
    def new_result(self) -> R:
        raise NotImplementedError

    @abstractmethod
    def begin(self, query: Q, result: R) -> SearchParams:
        raise NotImplementedError

    @abstractmethod
    def visit(self, query: Q, result: R, ngb: Neighbor, params: SearchParams, lv: LocalWalk) -> None:
        raise NotImplementedError

    @abstractmethod
    def reduce(self, partials: Sequence[R]) -> R:
        """Combine partial results from every rank, in rank order."""
        raise NotImplementedError


class ParticleTree:
    """Periodic spatial index over the local particles of one rank."""

    def __init__(self, particles: ParticleSet, box_size: float) -> None:
        if not (box_size > 0.0):
            raise ValueError(f"box_size must be > 0, got {box_size}")
        self.particles = particles
        self.box_size = float(box_size)
        self._pos = np.mod(particles.positions.detach().cpu().numpy(), self.box_size)
        self._types = particles.types.detach().cpu().numpy()
        self._kdtree = cKDTree(self._pos, boxsize=self.box_size) if len(self._pos) else None

    def neighbors(self, center: Sequence[float], radius: float) -> Iterator[Neighbor]:
        """Particles within `radius` of `center`, nearest first."""
        if self._kdtree is None or radius <= 0.0:
            return
        c = np.mod(np.asarray(center, dtype=np.float64), self.box_size)
        idx = np.asarray(self._kdtree.query_ball_point(c, radius), dtype=np.int64)
        if idx.size == 0:
            return
        d = self._pos[idx] - c
        d -= self.box_size * np.round(d / self.box_size)
        r = np.sqrt(np.sum(d * d, axis=1))
        order = np.argsort(r, kind="stable")
        for k in order:
            yield Neighbor(index=int(idx[k]), r=float(r[k]), dist=(float(d[k, 0]), float(d[k, 1]), float(d[k, 2])))

    def type_of(self, index: int) -> int:
        return int(self._types[index])


class TreeWalk:
    def __init__(
        self,
        tree: ParticleTree,
        transport: Transport,
        *,
        nthreads: int = 1,
        label: str = "",
    ) -> None:
        if nthreads < 1:
            raise ValueError(f"nthreads must be >= 1, got {nthreads}")
        self.tree = tree
        self.transport = transport
        self.nthreads = int(nthreads)
        self.label = label

    def run(self, iterator: NeighborIterator[Q, R], queries: Sequence[Q]) -> tuple[list[R], list[LocalWalk]]:
        """Evaluate `queries` (local to this rank) against all ranks' particles."""
        world = self.transport.world_size
        exported = self.transport.all_gather_object(list(queries))
        flat = [q for rank_queries in exported for q in rank_queries]

        local_results, walks = self._run_local(iterator, flat)

        per_owner: list[list[R]] = []
        start = 0
        for rank_queries in exported:
            per_owner.append(local_results[start : start + len(rank_queries)])
            start += len(rank_queries)
        returned = self.transport.all_gather_object(per_owner)

        me = self.transport.rank
        results = [
            iterator.reduce([returned[src][me][k] for src in range(world)])
            for k in range(len(queries))
        ]
        return results, walks

    def _run_local(self, iterator: NeighborIterator[Q, R], queries: list[Q]) -> tuple[list[R], list[LocalWalk]]:
        results: list[R | None] = [None] * len(queries)
        nchunks = max(1, min(self.nthreads, len(queries)))
        bounds = np.linspace(0, len(queries), nchunks + 1).astype(np.int64)
        walks = [LocalWalk(thread_id=t) for t in range(nchunks)]

        def work(t: int) -> None:
            lv = walks[t]
            for k in range(int(bounds[t]), int(bounds[t + 1])):
                results[k] = self._walk_one(iterator, queries[k], lv)

        if nchunks == 1:
            work(0)
        else:
            with ThreadPoolExecutor(max_workers=nchunks) as ex:
                # list() re-raises worker exceptions here
                list(ex.map(work, range(nchunks)))
        return results, walks  # type: ignore[return-value]

    def _walk_one(self, iterator: NeighborIterator[Q, R], query: Q, lv: LocalWalk) -> R:
        result = iterator.new_result()
        params = iterator.begin(query, result)
        if params.symmetric:
            raise NotImplementedError("the reference index only supports asymmetric walks")
        for ngb in self.tree.neighbors(query.position, params.radius):
            if ngb.r > params.radius:
                break
            if self.tree.type_of(ngb.index) not in params.mask:
                continue
            lv.ninteractions += 1
            iterator.visit(query, result, ngb, params, lv)
        return result

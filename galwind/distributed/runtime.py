from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TypeVar

import torch
import torch.distributed as dist

T = TypeVar("T")


class Transport(ABC):
    """Collective operations between ranks.

    Every method is collective: all ranks must call it in the same order.
    """

    @property
    @abstractmethod
    def rank(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def world_size(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def all_gather_object(self, obj: T) -> list[T]:
        """Return `obj` from every rank, ordered by rank."""
        raise NotImplementedError

    @abstractmethod
    def broadcast_object(self, obj: T | None, *, src: int = 0) -> T:
        raise NotImplementedError

    @abstractmethod
    def sum_int(self, value: int) -> int:
        raise NotImplementedError

    def any_true(self, flag: bool) -> bool:
        return self.sum_int(1 if flag else 0) > 0


class LoopbackTransport(Transport):
    @property
    def rank(self) -> int:
        return 0

    @property
    def world_size(self) -> int:
        return 1

    def all_gather_object(self, obj: T) -> list[T]:
        return [obj]

    def broadcast_object(self, obj: T | None, *, src: int = 0) -> T:
        if src != 0:
            raise ValueError(f"loopback transport has no rank {src}")
        if obj is None:
            raise ValueError("broadcast source object must not be None")
        return obj

    def sum_int(self, value: int) -> int:
        return int(value)


class TorchDistributedTransport(Transport):
    def __init__(
        self,
        process_group: dist.ProcessGroup | None = None,
    ) -> None:
        if not dist.is_available() or not dist.is_initialized():
            raise RuntimeError("torch.distributed must be initialized first")
        self._group = process_group
        self._backend = dist.get_backend(process_group)
        self._rank = dist.get_rank(process_group)
        self._world_size = dist.get_world_size(process_group)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._world_size

    def all_gather_object(self, obj: T) -> list[T]:
        gathered: list[Any] = [None for _ in range(self.world_size)]
        dist.all_gather_object(gathered, obj, group=self._group)
        return gathered

    def broadcast_object(self, obj: T | None, *, src: int = 0) -> T:
        holder: list[Any] = [obj if self.rank == src else None]
        dist.broadcast_object_list(holder, src=src, group=self._group)
        return holder[0]

    def sum_int(self, value: int) -> int:
        device = torch.device("cuda") if str(self._backend).lower() == "nccl" else torch.device("cpu")
        buf = torch.tensor([int(value)], dtype=torch.int64, device=device)
        dist.all_reduce(buf, op=dist.ReduceOp.SUM, group=self._group)
        return int(buf.item())

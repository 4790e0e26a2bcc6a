from .runtime import LoopbackTransport, TorchDistributedTransport, Transport

__all__ = [
    "LoopbackTransport",
    "TorchDistributedTransport",
    "Transport",
]

"""duplex - lazy module runtime and server/client messaging."""

from .core import ModuleLoader, ModuleState, ModuleStore, Timings, current_loader
from .network import ClientMessenger, EndpointKind, Peer, ServerMessenger, SharedStorage
from .runtime import Runtime

__version__ = "0.1.0"

__all__ = [
    "ModuleLoader",
    "ModuleState",
    "ModuleStore",
    "Timings",
    "current_loader",
    "ClientMessenger",
    "EndpointKind",
    "Peer",
    "ServerMessenger",
    "SharedStorage",
    "Runtime",
]

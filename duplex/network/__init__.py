"""Channel negotiation and messaging between server and clients."""

from .endpoints import (
    Connection,
    Endpoint,
    EndpointKind,
    Peer,
    RemoteEvent,
    RemoteFunction,
    SharedStorage,
    StorageReplica,
)
from .messenger import ClientMessenger, Messenger, ServerMessenger

__all__ = [
    "Connection",
    "Endpoint",
    "EndpointKind",
    "Peer",
    "RemoteEvent",
    "RemoteFunction",
    "SharedStorage",
    "StorageReplica",
    "Messenger",
    "ServerMessenger",
    "ClientMessenger",
]

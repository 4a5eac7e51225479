"""Messaging between the authoritative server and its clients.

Channels are created on the server the first time it references them.
A client that references a channel first waits until the server does, so
channels the server never touches at startup should be reserved::

    await server.reserve(
        ("ExampleFunction", EndpointKind.FUNCTION),
        ("ExampleEvent", EndpointKind.EVENT),
    )

On first use a client renames its view of the endpoint to a random
identifier. This makes tampering slightly harder; it is not a security
boundary.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from duplex import config
from duplex.core.timing import Timings, wait_with_warning

from .endpoints import (
    Connection,
    Endpoint,
    EndpointKind,
    Peer,
    SharedStorage,
    StorageReplica,
    create_endpoint,
    storage as default_storage,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "_NetworkingStorage"


class Messenger(ABC):
    """Operations shared by both peer roles.

    Role-specific operations raise RuntimeError unless the subclass for
    that role overrides them.
    """

    IS_SERVER = False

    def __init__(
        self,
        storage: Optional[SharedStorage] = None,
        timings: Optional[Timings] = None,
        namespace: Optional[str] = None,
    ):
        self.storage = storage if storage is not None else default_storage
        self.timings = timings or Timings.from_config()
        self.namespace = namespace or config.get("network.namespace", DEFAULT_NAMESPACE)

    @property
    def role(self) -> str:
        return "server" if self.IS_SERVER else "client"

    @staticmethod
    def _check_args(name: Any, kind: Any):
        if not isinstance(name, str):
            raise TypeError(f"[Network] (Arg 1) '{type(name).__name__}' passed, str expected!")
        if not isinstance(kind, EndpointKind):
            raise TypeError(f"[Network] (Arg 2) '{type(kind).__name__}' passed, EndpointKind expected!")

    @abstractmethod
    async def get_endpoint(self, name: str, kind: EndpointKind) -> Optional[Endpoint]:
        """
        Get the physical endpoint for a channel.

        Returns:
            The endpoint, or None if the channel exists with another kind
        """

    async def _require(self, name: str, kind: EndpointKind) -> Endpoint:
        endpoint = await self.get_endpoint(name, kind)
        if endpoint is None:
            raise TypeError(f"[Network] Another endpoint with name '{name}' exists of a different class")
        return endpoint

    def _wrong_role(self, operation: str):
        raise RuntimeError(f"[Network] {operation} cannot be run on the {self.role}")

    @abstractmethod
    def _connect(self, endpoint: Endpoint, handler: Callable) -> Connection:
        ...

    def observe_signal(self, name: str, handler: Callable) -> "asyncio.Task[Connection]":
        """
        Listen to an event channel.

        Returns:
            Task resolving to the Connection once the channel exists
        """
        return asyncio.ensure_future(self._observe(name, handler))

    async def _observe(self, name: str, handler: Callable) -> Connection:
        endpoint = await self._require(name, EndpointKind.EVENT)
        return self._connect(endpoint, handler)

    @abstractmethod
    async def signal(self, name: str, *args: Any):
        """Fire an event to the other side."""

    def signal_async(self, name: str, *args: Any) -> asyncio.Task:
        """Fire an event; the task resolves once the event is dispatched."""
        return asyncio.ensure_future(self.signal(name, *args))

    async def signal_all(self, name: str, *args: Any):
        self._wrong_role("signal_all")

    async def reserve(self, *entries: Tuple[str, EndpointKind]):
        self._wrong_role("reserve")

    async def on_invoke(self, name: str, handler: Callable):
        self._wrong_role("on_invoke")

    async def invoke(self, name: str, *args: Any) -> Any:
        self._wrong_role("invoke")

    def invoke_promise(self, name: str, *args: Any) -> asyncio.Task:
        self._wrong_role("invoke_promise")


class ServerMessenger(Messenger):
    """The authoritative side: creates channels and answers invocations."""

    IS_SERVER = True

    async def get_endpoint(self, name: str, kind: EndpointKind) -> Optional[Endpoint]:
        self._check_args(name, kind)

        folder = self.storage.namespace(self.namespace, create=True)
        endpoint = folder.find(name)
        if endpoint is not None:
            return endpoint if endpoint.kind is kind else None

        endpoint = create_endpoint(name, kind)
        folder.add(endpoint)
        logger.debug(f"[Network] Created {kind.value} '{name}'")
        return endpoint

    async def reserve(self, *entries: Tuple[str, EndpointKind]):
        """Create channels ahead of time so early clients do not wait on them."""
        for name, kind in entries:
            if await self.get_endpoint(name, kind) is None:
                logger.warning(f"[Network] Could not reserve '{name}', it exists of a different class")

    def _connect(self, endpoint: Endpoint, handler: Callable) -> Connection:
        return endpoint.connect_server(handler)

    async def signal(self, name: str, peer: Peer, *args: Any):
        """Fire an event to one client."""
        endpoint = await self._require(name, EndpointKind.EVENT)
        endpoint.fire_client(peer, *args)

    async def signal_all(self, name: str, *args: Any):
        """Fire an event to every client."""
        endpoint = await self._require(name, EndpointKind.EVENT)
        endpoint.fire_all_clients(*args)

    async def on_invoke(self, name: str, handler: Callable):
        """Set the handler answering invoke calls; it receives (peer, *args)."""
        endpoint = await self._require(name, EndpointKind.FUNCTION)
        endpoint.on_server_invoke = handler


class ClientMessenger(Messenger):
    """A client: resolves channels the server created and calls into it."""

    def __init__(
        self,
        peer: Peer,
        storage: Optional[SharedStorage] = None,
        timings: Optional[Timings] = None,
        namespace: Optional[str] = None,
    ):
        super().__init__(storage, timings, namespace)
        self.peer = peer
        self.replica = StorageReplica(self.storage)
        self._translation: Dict[str, Endpoint] = {}

    def _lookup(self, name: str) -> Optional[Endpoint]:
        endpoint = self._translation.get(name)
        if endpoint is not None:
            return endpoint

        folder = self.replica.namespace(self.namespace)
        if folder is None:
            return None
        return self.replica.find(folder, name)

    async def _wait_for_endpoint(self, name: str) -> Endpoint:
        start = time.monotonic()
        warned = False

        endpoint = self._lookup(name)
        while endpoint is None:
            if not warned and time.monotonic() - start > self.timings.endpoint_wait:
                logger.warning(
                    f"[Network::Danger] Endpoint '{name}' was not reserved on the server. Possible infinite yield!"
                )
                warned = True
            await asyncio.sleep(self.timings.poll_interval)
            endpoint = self._lookup(name)

        if warned:
            logger.warning(
                f"[Network::Resolved] Endpoint yield for '{name}' has resolved. Took {time.monotonic() - start:.2f}s!"
            )
        return endpoint

    async def get_endpoint(self, name: str, kind: EndpointKind) -> Optional[Endpoint]:
        """
        Resolve a channel created by the server.

        Waits (without limit) for the server to create it. The first
        successful resolution renames the endpoint in this client's view
        and caches it, so later calls skip shared storage.
        """
        self._check_args(name, kind)

        endpoint = self._lookup(name)
        if endpoint is None:
            endpoint = await self._wait_for_endpoint(name)

        if endpoint.kind is not kind:
            return None

        if name not in self._translation:
            self._translation[name] = endpoint
            self.replica.rename(endpoint, str(uuid.uuid4()))
        return endpoint

    def _connect(self, endpoint: Endpoint, handler: Callable) -> Connection:
        return endpoint.connect_client(self.peer, handler)

    async def signal(self, name: str, *args: Any):
        """Fire an event to the server."""
        endpoint = await self._require(name, EndpointKind.EVENT)
        endpoint.fire_server(self.peer, *args)

    async def invoke(self, name: str, *args: Any) -> Any:
        """
        Call the server and wait for its answer.

        Logs once if the answer takes longer than ``invoke_warning`` seconds
        but keeps waiting. Errors raised by the server handler propagate.
        """
        endpoint = await self._require(name, EndpointKind.FUNCTION)

        def on_slow():
            logger.warning(f"[Network::Danger] '{name}' is taking a long time to return. Args: {args}")

        def on_resolved(elapsed: float):
            logger.warning(f"[Network::Resolved] '{name}' has finished returning. Took {elapsed:.2f}s!")

        return await wait_with_warning(
            endpoint.invoke_server(self.peer, *args),
            self.timings.invoke_warning,
            on_slow,
            on_resolved,
        )

    def invoke_promise(self, name: str, *args: Any) -> asyncio.Task:
        """Call the server; the task resolves with the answer or rejects with its error."""
        return asyncio.ensure_future(self.invoke(name, *args))

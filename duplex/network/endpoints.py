"""Physical endpoints and the shared storage they are published in.

The server publishes endpoints in a :class:`SharedStorage` namespace. Each
client looks at that storage through its own :class:`StorageReplica`, so a
client renaming an endpoint only changes what that client sees.

Listeners and invoke handlers run in the context they were registered from,
so unit code always sees its own peer's loader.
"""

import asyncio
import contextvars
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

_background: Set[asyncio.Task] = set()


class EndpointKind(str, Enum):
    """What a channel carries."""
    EVENT = "RemoteEvent"
    FUNCTION = "RemoteFunction"


@dataclass(frozen=True)
class Peer:
    """A connected client."""
    name: str
    peer_id: str = field(default_factory=lambda: uuid.uuid4().hex)


async def _call(handler: Callable, *args: Any) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _spawn(context: contextvars.Context, coro: Awaitable) -> asyncio.Task:
    """Start a task that runs in the given context."""
    return context.run(asyncio.ensure_future, coro)


class Listener:
    """A connected handler and the context it was connected from."""

    def __init__(self, handler: Callable):
        self.handler = handler
        self.context = contextvars.copy_context()

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))

    def dispatch(self, *args: Any) -> asyncio.Task:
        """Run the handler on its own task; failures are logged, not raised."""

        async def run():
            try:
                await _call(self.handler, *args)
            except Exception as e:
                logger.error(f"[Network] Listener {self.name} failed: {e}")

        task = _spawn(self.context, run())
        _background.add(task)
        task.add_done_callback(_background.discard)
        return task


class Connection:
    """Subscription returned by connecting a listener."""

    def __init__(self, listeners: List[Listener], listener: Listener):
        self._listeners = listeners
        self._listener = listener
        self.connected = True

    def disconnect(self):
        """Stop delivering to the handler. Safe to call twice."""
        if self.connected:
            self._listeners.remove(self._listener)
            self.connected = False

    def __repr__(self):
        return f"<Connection: {self._listener.name} (connected={self.connected})>"


class Endpoint:
    """Base class for physical channel handles."""

    kind: EndpointKind

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"<{self.kind.value}: {self.name}>"


class RemoteEvent(Endpoint):
    """Fire-and-forget channel."""

    kind = EndpointKind.EVENT

    def __init__(self, name: str):
        super().__init__(name)
        self._server_listeners: List[Listener] = []
        self._client_listeners: Dict[Peer, List[Listener]] = {}

    @staticmethod
    def _connect(listeners: List[Listener], handler: Callable) -> Connection:
        listener = Listener(handler)
        listeners.append(listener)
        return Connection(listeners, listener)

    def connect_server(self, handler: Callable) -> Connection:
        """Listen on the server; handler receives (peer, *args)."""
        return self._connect(self._server_listeners, handler)

    def connect_client(self, peer: Peer, handler: Callable) -> Connection:
        """Listen on a client; handler receives (*args)."""
        return self._connect(self._client_listeners.setdefault(peer, []), handler)

    def fire_client(self, peer: Peer, *args: Any):
        """Deliver to one client's listeners."""
        if not isinstance(peer, Peer):
            raise TypeError(f"[Network] fire_client expects a Peer, got '{type(peer).__name__}'")

        listeners = self._client_listeners.get(peer, [])
        if not listeners:
            logger.debug(f"[Network] No listeners for '{self.name}' on {peer.name}, event dropped")
        for listener in list(listeners):
            listener.dispatch(*args)

    def fire_all_clients(self, *args: Any):
        """Deliver to every client listening on this channel."""
        for peer in list(self._client_listeners):
            self.fire_client(peer, *args)

    def fire_server(self, peer: Peer, *args: Any):
        """Deliver to the server's listeners, tagged with the sender."""
        for listener in list(self._server_listeners):
            listener.dispatch(peer, *args)


class RemoteFunction(Endpoint):
    """Request/response channel answered by a single server handler."""

    kind = EndpointKind.FUNCTION

    def __init__(self, name: str):
        super().__init__(name)
        self._handler: Optional[Listener] = None
        self._handler_set = asyncio.Event()

    @property
    def on_server_invoke(self) -> Optional[Callable]:
        return self._handler.handler if self._handler else None

    @on_server_invoke.setter
    def on_server_invoke(self, handler: Optional[Callable]):
        # Last writer wins
        if handler is None:
            self._handler = None
            self._handler_set.clear()
        else:
            self._handler = Listener(handler)
            self._handler_set.set()

    async def invoke_server(self, peer: Peer, *args: Any) -> Any:
        """Call the server handler, waiting until one is set."""
        while self._handler is None:
            await self._handler_set.wait()

        listener = self._handler
        return await _spawn(listener.context, _call(listener.handler, peer, *args))


def create_endpoint(name: str, kind: EndpointKind) -> Endpoint:
    """Create a physical endpoint of the given kind."""
    if kind is EndpointKind.EVENT:
        return RemoteEvent(name)
    if kind is EndpointKind.FUNCTION:
        return RemoteFunction(name)
    raise TypeError(f"[Network] Unknown endpoint kind '{kind}'")


class EndpointFolder:
    """A named namespace of endpoints inside shared storage."""

    def __init__(self, name: str):
        self.name = name
        self._children: Dict[str, Endpoint] = {}

    def find(self, name: str) -> Optional[Endpoint]:
        return self._children.get(name)

    def add(self, endpoint: Endpoint):
        if endpoint.name in self._children:
            raise ValueError(f"[Network] Endpoint '{endpoint.name}' already exists in '{self.name}'")
        self._children[endpoint.name] = endpoint

    def children(self) -> List[Endpoint]:
        return list(self._children.values())


class SharedStorage:
    """Storage shared by the server and every client."""

    def __init__(self):
        self._namespaces: Dict[str, EndpointFolder] = {}

    def namespace(self, name: str, create: bool = False) -> Optional[EndpointFolder]:
        """
        Get a namespace folder.

        Args:
            name: Folder name
            create: Create the folder if missing (server only)

        Returns:
            The folder, or None if it does not exist and create is False
        """
        folder = self._namespaces.get(name)
        if folder is None and create:
            folder = EndpointFolder(name)
            self._namespaces[name] = folder
            logger.debug(f"[Network] Created storage namespace '{name}'")
        return folder


class StorageReplica:
    """One client's view of shared storage.

    Renames made here are visible to this client only.
    """

    def __init__(self, storage: SharedStorage):
        self.storage = storage
        self._aliases: Dict[str, Endpoint] = {}
        self._local_names: Dict[Endpoint, str] = {}

    def namespace(self, name: str) -> Optional[EndpointFolder]:
        return self.storage.namespace(name)

    def find(self, folder: EndpointFolder, name: str) -> Optional[Endpoint]:
        """Find an endpoint by the name this client sees it under."""
        endpoint = self._aliases.get(name)
        if endpoint is not None:
            return endpoint

        endpoint = folder.find(name)
        if endpoint is not None and endpoint in self._local_names:
            # Renamed locally; the original name is gone for this client
            return None
        return endpoint

    def rename(self, endpoint: Endpoint, new_name: str):
        """Give an endpoint a new name in this client's view."""
        old_name = self._local_names.get(endpoint)
        if old_name is not None:
            self._aliases.pop(old_name, None)

        self._local_names[endpoint] = new_name
        self._aliases[new_name] = endpoint

    def name_of(self, endpoint: Endpoint) -> str:
        """The identifier this client currently sees for an endpoint."""
        return self._local_names.get(endpoint, endpoint.name)


# Global shared storage instance
storage = SharedStorage()

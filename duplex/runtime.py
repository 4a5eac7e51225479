"""A peer's runtime: its module loader, messenger and library resolver."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from duplex.core.module_loader import ModuleLoader
from duplex.core.module_system import ModuleStore
from duplex.core.timing import Timings
from duplex.network.endpoints import Peer, SharedStorage
from duplex.network.messenger import ClientMessenger, Messenger, ServerMessenger
from duplex.packages import PackageResolver

logger = logging.getLogger(__name__)


class Runtime:
    """Everything one peer needs, with the messenger provided as the 'Network' module."""

    NETWORK = "Network"

    def __init__(
        self,
        messenger: Messenger,
        loader: Optional[ModuleLoader] = None,
        packages: Optional[PackageResolver] = None,
    ):
        self.messenger = messenger
        self.loader = loader or ModuleLoader(store=ModuleStore(), timings=messenger.timings)
        self.packages = packages or PackageResolver.for_role(messenger.IS_SERVER, timings=messenger.timings)
        self.loader.store.provide(self.NETWORK, messenger)

    @classmethod
    def server(cls, storage: Optional[SharedStorage] = None, timings: Optional[Timings] = None) -> "Runtime":
        """Runtime for the authoritative peer."""
        return cls(ServerMessenger(storage=storage, timings=timings))

    @classmethod
    def client(
        cls,
        name: str,
        storage: Optional[SharedStorage] = None,
        timings: Optional[Timings] = None,
    ) -> "Runtime":
        """Runtime for a client peer."""
        return cls(ClientMessenger(Peer(name), storage=storage, timings=timings))

    @property
    def is_server(self) -> bool:
        return self.messenger.IS_SERVER

    def discover(self, *roots: Union[str, Path]) -> int:
        return self.loader.discover(*roots)

    async def get(self, name: str, skip_init: bool = False) -> Any:
        return await self.loader.get(name, skip_init)

    async def get_many(self, *names: str) -> Dict[str, Any]:
        return await self.loader.get_many(*names)

    async def library(self, name: str) -> Any:
        return await self.packages.library(name)

    def __repr__(self):
        return f"<Runtime: {self.messenger.role} ({self.loader.namespace})>"

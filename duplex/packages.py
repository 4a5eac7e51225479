"""Third-party library lookup by name from well-known locations."""

import asyncio
import itertools
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from duplex import config
from duplex.core.module_loader import ModuleLoader
from duplex.core.module_system import ModuleHandle, ModuleStore
from duplex.core.timing import Timings

logger = logging.getLogger(__name__)

_namespace_ids = itertools.count(1)


class PackageResolver:
    """Resolves libraries by name, searching each location in order."""

    def __init__(
        self,
        locations: Iterable[Union[str, Path]],
        timings: Optional[Timings] = None,
        namespace: Optional[str] = None,
    ):
        """
        Args:
            locations: Directories searched in order
            timings: Diagnostic thresholds for slow imports
            namespace: sys.modules prefix for imported libraries
        """
        self.locations: List[Path] = [Path(p) for p in locations]
        self._loader = ModuleLoader(
            store=ModuleStore(),
            timings=timings,
            namespace=namespace or f"duplex_packages_{next(_namespace_ids)}",
        )
        self._cache: Dict[str, Any] = {}
        self._searching: Dict[str, asyncio.Task] = {}

    @classmethod
    def for_role(cls, is_server: bool, timings: Optional[Timings] = None) -> "PackageResolver":
        """Resolver over the configured locations; the private server ones only on the server."""
        locations = list(config.get("packages.shared", []) or [])
        if is_server:
            locations.extend(config.get("packages.server", []) or [])
        return cls(locations, timings=timings)

    @staticmethod
    def _find(location: Path, name: str) -> Optional[Path]:
        package = location / name
        if (package / "__init__.py").is_file():
            return package

        module = location / f"{name}.py"
        if module.is_file():
            return module
        return None

    async def library(self, name: str) -> Any:
        """
        Get a library by name. Concurrent callers share one search.

        Returns:
            The imported library, or None if no location has it
        """
        if name in self._cache:
            return self._cache[name]

        task = self._searching.get(name)
        if task is None:
            task = asyncio.ensure_future(self._search(name))
            self._searching[name] = task
            task.add_done_callback(lambda _: self._searching.pop(name, None))

        return await asyncio.shield(task)

    async def _search(self, name: str) -> Any:
        for location in self.locations:
            path = self._find(location, name)
            if path is None:
                continue

            success, result = await self._loader.import_unit(ModuleHandle(name=name, path=path, root=location))
            if success:
                logger.info(f"[Packages] Successfully imported package '{name}'")
                self._cache[name] = result
                return result

            logger.warning(f"[Packages] Failed to import package '{name}' from {location}: {result}")

        logger.warning(f"[Packages] Package with name {name} not found!")
        return None

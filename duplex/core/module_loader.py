"""Module loader for discovering, importing and initializing units on demand."""

import asyncio
import importlib.util
import inspect
import itertools
import logging
import sys
import time
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple, Union

from .module_system import ModuleHandle, ModuleState, ModuleStore, is_initializable, store as default_store
from .timing import Timings, wait_with_warning

logger = logging.getLogger(__name__)

_active_loader: ContextVar[Optional["ModuleLoader"]] = ContextVar("duplex_active_loader", default=None)
# (namespace, name) pairs whose init hook is running in the current call chain
_init_chain: ContextVar[Tuple[Tuple[str, str], ...]] = ContextVar("duplex_init_chain", default=())
_namespace_ids = itertools.count(1)


def current_loader() -> "ModuleLoader":
    """
    Get the loader that is importing or initializing the calling unit.

    Raises:
        RuntimeError: If called outside a loader's import or init context
    """
    loader = _active_loader.get()
    if loader is None:
        raise RuntimeError("[Loader] No module loader is active in this context")
    return loader


class ModuleLoader:
    """Discovers units in root directories and resolves them by name."""

    def __init__(
        self,
        store: Optional[ModuleStore] = None,
        timings: Optional[Timings] = None,
        namespace: Optional[str] = None,
    ):
        """
        Initialize the module loader.

        Args:
            store: Module store to populate (defaults to the process-wide store)
            timings: Diagnostic thresholds (defaults to configured values)
            namespace: sys.modules prefix for imported units, unique per loader
        """
        self.store = store if store is not None else default_store
        self.timings = timings or Timings.from_config()
        self.namespace = namespace or f"duplex_units_{next(_namespace_ids)}"
        self._resolving: Dict[str, asyncio.Task] = {}
        self._initializing: Dict[str, asyncio.Task] = {}
        # init hook name -> names whose init tasks it is awaiting
        self._init_waits: Dict[str, Set[str]] = {}

    # Discovery

    @staticmethod
    def _is_unit(path: Path) -> bool:
        if path.is_file():
            return path.suffix == ".py"
        return path.is_dir() and (path / "__init__.py").is_file()

    def load(self, path: Union[str, Path], root: Optional[Path] = None) -> ModuleHandle:
        """
        Register a single unit under its declared name.

        Args:
            path: A .py file or a package directory
            root: Root collection the unit was found in

        Returns:
            The registered handle

        Raises:
            TypeError: If path is not a Python module or package
            ValueError: If the name is already registered
        """
        if not isinstance(path, (str, Path)):
            raise TypeError(f"[Loader] Attempted to load a '{type(path).__name__}', path expected!")

        path = Path(path)
        if not self._is_unit(path):
            raise TypeError(f"[Loader] Attempted to load '{path}', Python module or package expected!")

        name = path.stem if path.is_file() else path.name
        handle = ModuleHandle(name=name, path=path, root=root)
        self.store.register(handle)
        return handle

    def discover(self, *roots: Union[str, Path]) -> int:
        """
        Walk each root recursively and register every unit found.

        Files and directories starting with '_' or '.' are skipped. Stops at
        the first duplicate name; units registered before it stay registered.

        Args:
            roots: Directories to walk

        Returns:
            Number of units registered

        Raises:
            TypeError: If a root is not an existing directory
            ValueError: On a duplicate unit name
        """
        count = 0
        for root in roots:
            if not isinstance(root, (str, Path)) or not Path(root).is_dir():
                raise TypeError(f"[Loader] Attempted to bulk load '{root}', directory expected!")

            root = Path(root)
            logger.info(f"[Loader] Loading modules in directory '{root.name}'")
            count += self._walk(root, root)

        return count

    def _walk(self, directory: Path, root: Path) -> int:
        count = 0
        for item in sorted(directory.iterdir()):
            if item.name.startswith(("_", ".")):
                continue
            if self._is_unit(item):
                self.load(item, root)
                count += 1
            elif item.is_dir():
                count += self._walk(item, root)
        return count

    # Resolution

    @staticmethod
    def _check_name(name: Any):
        if not isinstance(name, str):
            raise TypeError(f"[Loader] Attempted to get module with type '{type(name).__name__}', str expected!")

    async def resolve(self, name: str) -> Any:
        """
        Import a registered unit, once.

        Waits up to ``module_wait`` seconds for an unregistered name to
        appear. Import failures are logged and cached; they never raise.

        Args:
            name: Declared module name

        Returns:
            The resolved value, or None if it could not be imported
        """
        self._check_name(name)

        if self.store.is_resolved(name):
            return self.store.get_resolved(name)

        failure = self.store.get_failure(name)
        if failure is not None:
            logger.debug(f"[Loader] '{name}' previously failed to import: {failure}")
            return None

        task = self._resolving.get(name)
        if task is None:
            task = asyncio.ensure_future(self._resolve(name))
            self._resolving[name] = task
            task.add_done_callback(lambda _: self._resolving.pop(name, None))

        return await asyncio.shield(task)

    async def _resolve(self, name: str) -> Any:
        _active_loader.set(self)

        handle = self.store.handle(name)
        if handle is None:
            logger.warning(f"[Loader] Yielding for unimported module '{name}'")
            handle = await self._wait_for_handle(name)

            if self.store.is_resolved(name):
                return self.store.get_resolved(name)
            if handle is None:
                logger.error(
                    f"[Loader] Module '{name}' was never loaded, "
                    f"gave up after {self.timings.module_wait:.2f}s"
                )
                return None

        start = time.monotonic()
        success, result = await self.import_unit(handle)
        duration = time.monotonic() - start

        if duration > self.timings.slow_import:
            logger.warning(f"[Loader] '{name}' has finished importing. Took {duration:.2f}s!")

        if not success:
            self.store.mark_failed(name, result)
            logger.warning(f"[Loader] Failed to import module '{name}' due to: {result}")
            return None

        self.store.mark_resolved(name, result)
        logger.info(f"[Loader] '{name}' successfully imported [{duration:.2f}s]")
        return result

    async def _wait_for_handle(self, name: str) -> Optional[ModuleHandle]:
        deadline = time.monotonic() + self.timings.module_wait
        while time.monotonic() < deadline:
            await asyncio.sleep(self.timings.poll_interval)
            if self.store.handle(name) is not None or self.store.is_resolved(name):
                break
        return self.store.handle(name)

    async def import_unit(self, handle: ModuleHandle) -> Tuple[bool, Any]:
        """Import a handle's source on a worker thread, returning (success, value or error)."""

        def on_slow():
            logger.warning(f"[Loader::Danger] '{handle.name}' is taking a long time to import!")

        def on_resolved(elapsed: float):
            logger.warning(f"[Loader::Resolved] '{handle.name}' has finished importing. Took {elapsed:.2f}s!")

        return await wait_with_warning(
            asyncio.to_thread(self._exec_unit, handle),
            self.timings.long_running,
            on_slow,
            on_resolved,
        )

    def _exec_unit(self, handle: ModuleHandle) -> Tuple[bool, Any]:
        """Execute a unit's source in this loader's namespace."""
        module_name = f"{self.namespace}.{handle.name}"
        kwargs = {}
        if handle.is_package:
            kwargs["submodule_search_locations"] = [str(handle.path)]

        spec = importlib.util.spec_from_file_location(module_name, handle.source_file, **kwargs)
        if spec is None or spec.loader is None:
            return False, ImportError(f"No loader for {handle.source_file}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            return False, e

        return True, module

    # Initialization

    async def initialize(self, name: str, value: Any):
        """
        Run the value's init hook once for this name.

        The hook runs on its own task. Errors are logged and the name is
        still recorded as initialized, so the hook never runs again.
        A hook asking for a module whose init is already waiting on that
        hook gets no wait, so two hooks needing each other both finish.
        """
        if self.store.is_initialized(name) or not is_initializable(value):
            return

        chain = [n for namespace, n in _init_chain.get() if namespace == self.namespace]
        if name in chain:
            # Asked for by its own init chain; waiting would never finish.
            logger.debug(f"[Loader] '{name}' requested while initialising, skipping wait")
            return

        task = self._initializing.get(name)
        if task is None:
            task = asyncio.ensure_future(self._initialize(name, value))
            self._initializing[name] = task
            task.add_done_callback(lambda _: self._initializing.pop(name, None))
        elif chain and self._waits_on(name, chain):
            logger.debug(f"[Loader] '{name}' is waiting on '{chain[-1]}' to initialise, skipping wait")
            return

        if not chain:
            await asyncio.shield(task)
            return

        waiter = chain[-1]
        self._init_waits.setdefault(waiter, set()).add(name)
        try:
            await asyncio.shield(task)
        finally:
            waiting = self._init_waits.get(waiter)
            if waiting is not None:
                waiting.discard(name)
                if not waiting:
                    del self._init_waits[waiter]

    def _waits_on(self, name: str, targets: Iterable[str]) -> bool:
        """Whether name's init task is, directly or transitively, awaiting any of targets."""
        targets = set(targets)
        seen = set()
        pending = [name]
        while pending:
            current = pending.pop()
            if current in targets:
                return True
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._init_waits.get(current, ()))
        return False

    async def _initialize(self, name: str, value: Any):
        _active_loader.set(self)
        _init_chain.set(_init_chain.get() + ((self.namespace, name),))

        def on_slow():
            logger.warning(f"[Loader::Danger] '{name}' is taking a long time to initialise!")

        def on_resolved(elapsed: float):
            logger.warning(f"[Loader::Resolved] '{name}' has finished initialising. Took {elapsed:.2f}s!")

        try:
            await wait_with_warning(self._run_hook(value), self.timings.long_running, on_slow, on_resolved)
        except Exception as e:
            logger.warning(f"[Loader] Failed to initialise '{name}' due to: {e}")
        finally:
            self.store.mark_initialized(name)

    @staticmethod
    async def _run_hook(value: Any) -> Any:
        result = value.init()
        if inspect.isawaitable(result):
            result = await result
        return result

    # Public API

    async def get(self, name: str, skip_init: bool = False) -> Any:
        """
        Resolve a module and, unless skipped, run its init hook once.

        Args:
            name: Declared module name
            skip_init: Return the value without initializing it

        Returns:
            The resolved value (whether or not init succeeded), or None
        """
        value = await self.resolve(name)
        if value is not None and not skip_init:
            await self.initialize(name, value)
        return value

    async def get_many(self, *names: str) -> Dict[str, Any]:
        """Get several modules in turn, warning about each slow one."""
        modules = {}
        for name in names:
            start = time.monotonic()
            modules[name] = await self.get(name)

            elapsed = time.monotonic() - start
            if elapsed > self.timings.slow_bulk:
                logger.warning(f"[Loader] '{name}' took {elapsed:.2f}s!")

        return modules

    def state(self, name: str) -> ModuleState:
        """Current lifecycle state of a name, transient states included."""
        if name in self._initializing:
            return ModuleState.INITIALIZING
        if name in self._resolving:
            return ModuleState.RESOLVING
        return self.store.state(name)

    def get_module_status(self) -> Dict:
        """
        Get status of all modules.

        Returns:
            Dict with module status information
        """
        modules = self.store.get_module_info()
        for info in modules:
            info["state"] = self.state(info["name"]).value

        return {
            "total_modules": len(modules),
            "resolved_modules": sum(
                1 for m in modules if m["state"] in (ModuleState.RESOLVED.value, ModuleState.INITIALIZED.value)
            ),
            "initialized_modules": sum(1 for m in modules if m["state"] == ModuleState.INITIALIZED.value),
            "modules": modules,
        }

    # Deprecated entry points

    def start(self):
        """Deprecated: units are initialized on first get()."""
        logger.warning("[Loader] start() is deprecated and does nothing; modules initialise on first get()")

    def on_ready(self, callback: Callable[[], Any]) -> Any:
        """Deprecated: the loader is always ready, so the callback runs now."""
        logger.warning("[Loader] on_ready() is deprecated; the callback is called immediately")
        return callback()

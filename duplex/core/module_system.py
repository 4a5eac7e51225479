"""Module store: handles, resolved values and lifecycle records."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleHandle:
    """An unresolved unit of code, registered under its declared name."""
    name: str
    path: Path
    root: Optional[Path] = None

    @property
    def is_package(self) -> bool:
        """Whether the unit is a package directory rather than a single file."""
        return self.path.is_dir()

    @property
    def source_file(self) -> Path:
        """File executed when the unit is imported."""
        if self.is_package:
            return self.path / "__init__.py"
        return self.path


class ModuleState(str, Enum):
    """Lifecycle of a module name."""
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


@runtime_checkable
class Initializable(Protocol):
    """Anything exposing a one-shot ``init`` lifecycle hook.

    A unit module satisfies this with a module-level ``init`` function,
    or an object with an ``init`` method. The hook may be sync or a coroutine.
    """

    def init(self) -> Any:
        ...


def is_initializable(value: Any) -> bool:
    """Capability query for the lifecycle hook."""
    return isinstance(value, Initializable) and callable(getattr(value, "init", None))


class ModuleStore:
    """Storage for module handles and resolved values.

    Holds no behaviour beyond bookkeeping; the loader owns every mutation.
    """

    def __init__(self):
        self._handles: Dict[str, ModuleHandle] = {}
        self._resolved: Dict[str, Any] = {}
        self._failures: Dict[str, BaseException] = {}
        self._initialized: Set[str] = set()
        self._builtin: Set[str] = set()

    def register(self, handle: ModuleHandle):
        """
        Register an unresolved module handle.

        Args:
            handle: Handle to register

        Raises:
            ValueError: If the name is already taken
        """
        if handle.name in self._handles or handle.name in self._builtin:
            raise ValueError(f"[Loader] Attempted to load duplicate named module '{handle.name}'")

        self._handles[handle.name] = handle
        logger.debug(f"Registered module: {handle.name} ({handle.path})")

    def provide(self, name: str, value: Any):
        """Register an already-resolved built-in value under a name."""
        if name in self._handles or name in self._builtin:
            raise ValueError(f"[Loader] Attempted to provide duplicate named module '{name}'")

        self._builtin.add(name)
        self._resolved[name] = value
        logger.debug(f"Provided built-in module: {name}")

    def handle(self, name: str) -> Optional[ModuleHandle]:
        """Get a registered handle by name."""
        return self._handles.get(name)

    def names(self) -> List[str]:
        """All known module names, built-ins included."""
        return sorted(set(self._handles) | self._builtin)

    def get_resolved(self, name: str) -> Any:
        """Get a resolved value by name, or None."""
        return self._resolved.get(name)

    def is_resolved(self, name: str) -> bool:
        """Check whether a name has a resolved value."""
        return name in self._resolved

    def mark_resolved(self, name: str, value: Any):
        """Record a successful import, clearing any earlier failure."""
        self._resolved[name] = value
        self._failures.pop(name, None)

    def get_failure(self, name: str) -> Optional[BaseException]:
        """Get the error a failed import raised, or None."""
        return self._failures.get(name)

    def mark_failed(self, name: str, error: BaseException):
        """Record a failed import so it is never retried."""
        self._failures[name] = error

    def is_initialized(self, name: str) -> bool:
        """Check whether a name's init hook has run."""
        return name in self._initialized

    def mark_initialized(self, name: str):
        """Record that a name's init hook has run."""
        self._initialized.add(name)

    def state(self, name: str) -> ModuleState:
        """Settled state of a name; transient states are tracked by the loader."""
        if name in self._initialized:
            return ModuleState.INITIALIZED
        if name in self._resolved:
            return ModuleState.RESOLVED
        if name in self._failures:
            return ModuleState.FAILED
        if name in self._handles:
            return ModuleState.REGISTERED
        return ModuleState.UNREGISTERED

    def get_module_info(self) -> List[Dict[str, Any]]:
        """Get information about all modules."""
        info = []
        for name in self.names():
            handle = self._handles.get(name)
            info.append({
                "name": name,
                "path": str(handle.path) if handle else None,
                "builtin": name in self._builtin,
                "state": self.state(name).value,
            })
        return info


# Global module store instance
store = ModuleStore()

"""Core system functionality."""

from .module_system import Initializable, ModuleHandle, ModuleState, ModuleStore
from .module_loader import ModuleLoader, current_loader
from .timing import Timings

__all__ = [
    "Initializable",
    "ModuleHandle",
    "ModuleState",
    "ModuleStore",
    "ModuleLoader",
    "current_loader",
    "Timings",
]

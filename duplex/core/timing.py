"""Timing thresholds and the diagnostic-only watchdog."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from duplex import config


@dataclass
class Timings:
    """Soft-timeout thresholds in seconds.

    None of these abort anything. Crossing one only logs a diagnostic.
    """
    module_wait: float = 5
    slow_import: float = 1
    slow_bulk: float = 2
    long_running: float = 15
    endpoint_wait: float = 10
    invoke_warning: float = 10
    poll_interval: float = 0.01

    @classmethod
    def from_config(cls) -> "Timings":
        """Build thresholds from the loaded configuration."""
        defaults = cls()
        values = {}
        for field_name in cls.__dataclass_fields__:
            values[field_name] = float(
                config.get(f"timeouts.{field_name}", getattr(defaults, field_name))
            )
        return cls(**values)


async def wait_with_warning(
    awaitable: Awaitable[Any],
    threshold: float,
    on_slow: Callable[[], None],
    on_resolved: Optional[Callable[[float], None]] = None,
) -> Any:
    """
    Await a task, logging once if it outlives the threshold.

    The task is never cancelled by the threshold. Once it finishes after a
    warning, on_resolved is called with the elapsed time before returning.

    Args:
        awaitable: Work to wait on (wrapped in a task if needed)
        threshold: Seconds before on_slow fires
        on_slow: Called once when the threshold passes
        on_resolved: Called with elapsed seconds if on_slow fired

    Returns:
        The task's result (exceptions propagate)
    """
    task = asyncio.ensure_future(awaitable)
    start = time.monotonic()

    done, _ = await asyncio.wait({task}, timeout=threshold)
    if not done:
        on_slow()
        await asyncio.wait({task})
        if on_resolved is not None:
            on_resolved(time.monotonic() - start)

    return task.result()

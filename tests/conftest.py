"""Shared test fixtures for the duplex test suite."""

import pytest
import os
import textwrap
from pathlib import Path

# Add parent directory to path so we can import duplex
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from duplex import config
from duplex.core import ModuleLoader, ModuleStore, Timings
from duplex.network import ClientMessenger, Peer, ServerMessenger, SharedStorage


@pytest.fixture(autouse=True)
def clean_config():
    """Each test starts from built-in defaults."""
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def timings():
    """Thresholds short enough to cross in a test, long enough not to by accident."""
    return Timings(
        module_wait=0.5,
        slow_import=5,
        slow_bulk=5,
        long_running=5,
        endpoint_wait=5,
        invoke_warning=5,
        poll_interval=0.005,
    )


@pytest.fixture
def store():
    return ModuleStore()


@pytest.fixture
def loader(store, timings):
    return ModuleLoader(store=store, timings=timings)


@pytest.fixture
def write_unit(tmp_path):
    """Write a unit source file under tmp_path and return its path."""

    def _write(relative_path: str, *sources: str) -> Path:
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(textwrap.dedent(s) for s in sources))
        return path

    return _write


@pytest.fixture
def counter(tmp_path):
    """A file units append a line to; len(counter.read()) counts side effects."""

    class Counter:
        path = tmp_path / "counter.log"

        def read(self):
            if not self.path.exists():
                return []
            return self.path.read_text().splitlines()

        def source(self, tag: str) -> str:
            return f"with open({str(self.path)!r}, 'a') as _counter:\n    _counter.write({tag!r} + '\\n')\n"

    return Counter()


@pytest.fixture
def storage():
    return SharedStorage()


@pytest.fixture
def server(storage, timings):
    return ServerMessenger(storage=storage, timings=timings)


@pytest.fixture
def client(storage, timings):
    return ClientMessenger(Peer("Player1"), storage=storage, timings=timings)


@pytest.fixture
def second_client(storage, timings):
    return ClientMessenger(Peer("Player2"), storage=storage, timings=timings)


@pytest.fixture
def log_messages(caplog):
    """Return captured log messages containing some text."""

    def _messages(text: str):
        return [r.getMessage() for r in caplog.records if text in r.getMessage()]

    return _messages

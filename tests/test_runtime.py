"""Tests for runtime wiring, library lookup, configuration and the example peers."""

import asyncio
import logging
import pytest
from pathlib import Path

import duplex
from duplex import Runtime, config
from duplex.app import main
from duplex.core.timing import Timings, wait_with_warning
from duplex.packages import PackageResolver

UNITS = Path(duplex.__file__).parent / "units"


class TestRuntime:
    """Test a peer's runtime wiring."""

    @pytest.mark.asyncio
    async def test_messenger_is_provided_as_network(self, storage, timings):
        server = Runtime.server(storage=storage, timings=timings)
        client = Runtime.client("Player1", storage=storage, timings=timings)

        assert server.is_server and not client.is_server
        assert await server.get("Network") is server.messenger
        assert await client.get("Network") is client.messenger
        assert client.messenger.peer.name == "Player1"

    @pytest.mark.asyncio
    async def test_example_peers_talk(self, storage, timings, caplog):
        caplog.set_level(logging.INFO)
        server = Runtime.server(storage=storage, timings=timings)
        client = Runtime.client("Player1", storage=storage, timings=timings)

        server.discover(UNITS / "server", UNITS / "shared")
        client.discover(UNITS / "client", UNITS / "shared")
        await server.get_many("example_service")
        modules = await client.get_many("example_client")

        example_client = modules["example_client"]
        for _ in range(100):
            if example_client.welcomes:
                break
            await asyncio.sleep(0.01)

        assert example_client.welcomes == ["Welcome, Player1!"]
        assert any(
            "Hello, Player1, you said 'Test Message'!" in r.getMessage() for r in caplog.records
        )
        # Each peer imported its own copy of the shared unit
        assert (await server.get("channels")) is not (await client.get("channels"))

    @pytest.mark.asyncio
    async def test_app_main_boots_both_peers(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        server, client = await main()

        assert server.loader.state("example_service").value == "initialized"
        assert client.loader.state("example_client").value == "initialized"


class TestPackages:
    """Test library lookup by name."""

    @pytest.fixture
    def locations(self, write_unit, tmp_path):
        write_unit("shared_packages/promise.py", "def resolve(value):\n    return value\n")
        write_unit("server_packages/secrets_store.py", "TOKEN = 'abc'\n")
        write_unit("server_packages/promise.py", "SHADOWED = True\n")
        return tmp_path / "shared_packages", tmp_path / "server_packages"

    @pytest.mark.asyncio
    async def test_library_is_found_and_cached(self, locations, timings, caplog):
        caplog.set_level(logging.INFO)
        resolver = PackageResolver(locations, timings=timings)

        promise = await resolver.library("promise")

        assert promise.resolve(3) == 3
        assert not hasattr(promise, "SHADOWED")
        assert await resolver.library("promise") is promise
        assert sum("Successfully imported package 'promise'" in r.getMessage() for r in caplog.records) == 1

    @pytest.mark.asyncio
    async def test_concurrent_library_imports_once(self, write_unit, counter, tmp_path, timings):
        write_unit("libs/promise.py", counter.source("promise"), "import time\ntime.sleep(0.1)\n")
        resolver = PackageResolver([tmp_path / "libs"], timings=timings)

        first, second = await asyncio.gather(resolver.library("promise"), resolver.library("promise"))

        assert first is not None and first is second
        assert counter.read() == ["promise"]

    @pytest.mark.asyncio
    async def test_missing_library_is_logged(self, locations, timings, log_messages):
        resolver = PackageResolver(locations, timings=timings)

        assert await resolver.library("nonexistent") is None
        assert log_messages("Package with name nonexistent not found!")

    @pytest.mark.asyncio
    async def test_broken_location_falls_through(self, write_unit, tmp_path, timings, log_messages):
        write_unit("first/util.py", "raise ImportError('bad build')\n")
        write_unit("second/util.py", "OK = True\n")
        resolver = PackageResolver([tmp_path / "first", tmp_path / "second"], timings=timings)

        util = await resolver.library("util")

        assert util.OK is True
        assert log_messages("Failed to import package 'util'")

    @pytest.mark.asyncio
    async def test_server_only_location(self, locations, tmp_path, timings):
        shared, private = locations
        config_file = tmp_path / "config" / "config.yaml"
        config_file.parent.mkdir()
        config_file.write_text(f"packages:\n  shared: ['{shared}']\n  server: ['{private}']\n")
        config.load_config(str(config_file))

        server = PackageResolver.for_role(is_server=True, timings=timings)
        client = PackageResolver.for_role(is_server=False, timings=timings)

        assert (await server.library("secrets_store")).TOKEN == "abc"
        assert await client.library("secrets_store") is None

    @pytest.mark.asyncio
    async def test_runtime_library(self, storage, timings):
        runtime = Runtime.server(storage=storage, timings=timings)

        assert await runtime.library("anything") is None


class TestConfig:
    """Test configuration loading and timing thresholds."""

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        config.load_config()

        assert config.get("timeouts.endpoint_wait") == 10
        assert config.get("network.namespace") == "_NetworkingStorage"
        assert config.get("missing.key", "fallback") == "fallback"

    def test_file_values_merge_over_defaults(self, tmp_path):
        config_file = tmp_path / "config" / "config.yaml"
        config_file.parent.mkdir()
        config_file.write_text("timeouts:\n  invoke_warning: 3\nunits:\n  server: my_units\n")

        config.load_config(str(config_file))
        timings = Timings.from_config()

        assert timings.invoke_warning == 3
        assert timings.module_wait == 5
        assert config.get("units.server") == str(tmp_path.resolve() / "my_units")

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            config.load_config(str(tmp_path / "nope.yaml"))

    @pytest.mark.asyncio
    async def test_watchdog_never_cancels(self):
        warnings = []
        resolved = []

        async def slow():
            await asyncio.sleep(0.1)
            return "finished"

        result = await wait_with_warning(slow(), 0.02, lambda: warnings.append(1), resolved.append)

        assert result == "finished"
        assert warnings == [1]
        assert len(resolved) == 1 and resolved[0] >= 0.05

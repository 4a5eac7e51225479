"""Bootstrap for the bundled server and client peers."""

import asyncio
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Tuple

from duplex import config
from duplex.core.timing import Timings
from duplex.network.endpoints import SharedStorage
from duplex.runtime import Runtime

logger = logging.getLogger(__name__)


def setup_logging():
    """Configure root logging from the loaded configuration."""
    log_file = config.get("logging.file")
    log_level = config.get("logging.level", "INFO")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        # Time-based rotating file handler (keep logs for 24 hours)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when="h",
            interval=1,
            backupCount=24,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


async def start_server(storage: SharedStorage, timings: Optional[Timings] = None) -> Runtime:
    """Discover the server and shared units and start the example service."""
    server = Runtime.server(storage=storage, timings=timings)
    server.discover(config.get("units.server"), config.get("units.shared"))
    await server.get_many("example_service")
    return server


async def start_client(name: str, storage: SharedStorage, timings: Optional[Timings] = None) -> Runtime:
    """Discover the client and shared units and start the example client."""
    client = Runtime.client(name, storage=storage, timings=timings)
    client.discover(config.get("units.client"), config.get("units.shared"))
    await client.get_many("example_client")
    return client


async def main(client_name: str = "Player1") -> Tuple[Runtime, Runtime]:
    """Boot a server and one client against the same shared storage."""
    storage = SharedStorage()
    timings = Timings.from_config()

    server = await start_server(storage, timings)
    client = await start_client(client_name, storage, timings)

    for runtime in (server, client):
        status = runtime.loader.get_module_status()
        logger.info(
            f"{runtime!r}: {status['initialized_modules']}/{status['total_modules']} modules initialised"
        )
        for info in status["modules"]:
            logger.debug(f"  {info['name']}: {info['state']}")

    return server, client


def run(config_path: str = None):
    """Load configuration, set up logging and run the example peers."""
    config.load_config(config_path)
    setup_logging()

    logger.info("Starting duplex runtime...")
    asyncio.run(main())

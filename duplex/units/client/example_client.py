"""Example client - greets the server and listens for its welcome."""

import logging

from duplex import current_loader

logger = logging.getLogger(__name__)

welcomes = []


def on_welcome(message: str):
    welcomes.append(message)
    logger.info(f"[ExampleClient] {message}")


async def init():
    loader = current_loader()
    network = await loader.get("Network")
    channels = await loader.get("channels")

    await network.observe_signal(channels.EXAMPLE_EVENT, on_welcome)
    await network.signal(channels.EXAMPLE_EVENT)

    response = await network.invoke(channels.EXAMPLE_FUNCTION, "Test Message")
    logger.info(f"[ExampleClient] {response}")

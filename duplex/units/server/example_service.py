"""Example service - answers greetings from clients."""

import logging

from duplex import current_loader

logger = logging.getLogger(__name__)


def greet(peer, message: str) -> str:
    return f"Hello, {peer.name}, you said '{message}'!"


async def welcome(peer):
    network = await current_loader().get("Network")
    channels = await current_loader().get("channels")
    await network.signal(channels.EXAMPLE_EVENT, peer, f"Welcome, {peer.name}!")


async def init():
    loader = current_loader()
    network = await loader.get("Network")
    channels = await loader.get("channels")

    await network.reserve(*channels.RESERVED)
    await network.on_invoke(channels.EXAMPLE_FUNCTION, greet)
    await network.observe_signal(channels.EXAMPLE_EVENT, lambda peer, *args: welcome(peer))

    logger.info("[ExampleService] Hello, world!")

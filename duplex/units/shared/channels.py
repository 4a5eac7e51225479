"""Channel names used by the example service and client."""

from duplex.network import EndpointKind

EXAMPLE_FUNCTION = "ExampleFunction"
EXAMPLE_EVENT = "ExampleEvent"

# Created by the server at startup so clients never wait on them
RESERVED = [
    (EXAMPLE_FUNCTION, EndpointKind.FUNCTION),
    (EXAMPLE_EVENT, EndpointKind.EVENT),
]

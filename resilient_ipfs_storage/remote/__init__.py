"""
Remote content store access.

Provides the resilient client, the IPFS HTTP transport it talks through,
and the best-effort secondary pinning service.
"""

from .client import RemoteStoreClient
from .pinning import PinningService
from .transport import (
    HttpRemoteTransport,
    RemoteTransport,
    TransportFactory,
    TransportResponseError,
    http_transport_factory,
)

__all__ = [
    "RemoteStoreClient",
    "PinningService",
    "RemoteTransport",
    "HttpRemoteTransport",
    "TransportFactory",
    "TransportResponseError",
    "http_transport_factory",
]

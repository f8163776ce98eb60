"""
I/O layer for the Zotero API protocol.

This module provides sync and async implementations for executing
APIRequest objects and returning APIResponse objects.

The I/O layer is intentionally thin - it only handles HTTP transport
and maps timeouts onto TransportTimeout / IndeterminateWrite.  All
protocol logic is in zotapi.protocol.

Example (sync):
    from zotapi.protocol import ZoteroProtocol
    from zotapi.io import SyncIO

    protocol = ZoteroProtocol(config)
    with SyncIO() as io:
        request = protocol.user_request("GET", 1, "items", query={"format": "keys"})
        response = io.execute(request)

Example (async):
    from zotapi.protocol import ZoteroProtocol
    from zotapi.io import AsyncIO

    protocol = ZoteroProtocol(config)
    async with AsyncIO() as io:
        request = protocol.user_request("GET", 1, "items", query={"format": "keys"})
        response = await io.execute(request)
"""

from .base import AsyncIOProtocol, SyncIOProtocol
from .sync import SyncIO
from .async_ import AsyncIO

__all__ = [
    # Protocols
    "SyncIOProtocol",
    "AsyncIOProtocol",
    # Implementations
    "SyncIO",
    "AsyncIO",
]

#!/usr/bin/env python
import logging

__version__ = "0.1.0"

from .client import AsyncZoteroClient
from .config import ClientConfig, get_config
from .protocol_client import SyncProtocolClient

## Silence notification of no default logging handler
log = logging.getLogger("zotapi")


class NullHandler(logging.Handler):
    def emit(self, record) -> None:
        pass


log.addHandler(NullHandler())

__all__ = [
    "__version__",
    "AsyncZoteroClient",
    "ClientConfig",
    "SyncProtocolClient",
    "get_config",
]

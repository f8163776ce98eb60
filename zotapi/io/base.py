"""
Abstract I/O protocol definition.

This module defines the interface that all I/O implementations must follow.
"""

from typing import Protocol, runtime_checkable

from zotapi.lib import error
from zotapi.protocol.types import APIRequest, APIResponse


@runtime_checkable
class SyncIOProtocol(Protocol):
    """
    Protocol defining the synchronous I/O interface.

    Implementations must provide a way to execute APIRequest objects
    and return APIResponse objects synchronously.
    """

    def execute(self, request: APIRequest) -> APIResponse:
        """
        Execute a request and return the response.

        Args:
            request: The APIRequest to execute

        Returns:
            APIResponse with status, multi-valued headers, and body

        Raises:
            TransportTimeout: a read timed out
            IndeterminateWrite: a write timed out; it may have been applied
        """
        ...

    def close(self) -> None:
        """Close any resources (e.g., HTTP session)."""
        ...


@runtime_checkable
class AsyncIOProtocol(Protocol):
    """
    Protocol defining the asynchronous I/O interface.

    Implementations must provide a way to execute APIRequest objects
    and return APIResponse objects asynchronously.
    """

    async def execute(self, request: APIRequest) -> APIResponse:
        """
        Execute a request and return the response.

        Args:
            request: The APIRequest to execute

        Returns:
            APIResponse with status, multi-valued headers, and body

        Raises:
            TransportTimeout: a read timed out
            IndeterminateWrite: a write timed out; it may have been applied
        """
        ...

    async def close(self) -> None:
        """Close any resources (e.g., HTTP session)."""
        ...


def timeout_error(request: APIRequest) -> error.TransportTimeout:
    """
    A timed out write may or may not have been applied by the server,
    so it is never reported as a plain timeout.
    """
    if request.method.is_write:
        return error.IndeterminateWrite(
            url=request.url,
            reason=f"{request.method.value} timed out; re-read before retrying",
        )
    return error.TransportTimeout(url=request.url, reason=f"{request.method.value} timed out")

"""
Asynchronous I/O implementation using aiohttp library.
"""

import asyncio
from typing import Dict, List, Optional

import aiohttp

from zotapi.protocol.types import APIRequest, APIResponse

from .base import timeout_error


class AsyncIO:
    """
    Asynchronous I/O shell using aiohttp library.

    This is a thin wrapper that executes APIRequest objects via HTTP
    and returns APIResponse objects.  Redirects are not followed, since
    the API answers some requests with a redirect the caller checks.

    Example:
        async with AsyncIO() as io:
            request = protocol.user_request("GET", 1, "items")
            response = await io.execute(request)
            items = decode(response, OutputFormat.JSON)
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ):
        """
        Initialize the async I/O handler.

        Args:
            session: Existing aiohttp ClientSession to use (creates new if None)
            timeout: Request timeout in seconds
            verify_ssl: Verify SSL certificates
        """
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.verify_ssl = verify_ssl

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(ssl=self.verify_ssl)
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                connector=connector,
            )
        return self._session

    async def execute(self, request: APIRequest) -> APIResponse:
        """
        Execute an APIRequest and return APIResponse.

        Args:
            request: The request to execute

        Returns:
            APIResponse with status, headers, and body
        """
        session = await self._get_session()

        try:
            async with session.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                data=request.body,
                allow_redirects=False,
            ) as response:
                body = await response.read()
                headers: Dict[str, List[str]] = {}
                for name in response.headers.keys():
                    if name not in headers:
                        headers[name] = list(response.headers.getall(name))
                return APIResponse(
                    status=response.status,
                    headers=headers,
                    body=body,
                    url=request.url,
                )
        except asyncio.TimeoutError as err:
            raise timeout_error(request) from err

    async def close(self) -> None:
        """Close the session if we created it."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AsyncIO":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.close()

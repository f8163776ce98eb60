"""
Synchronous I/O implementation using requests library.
"""

from typing import Dict, List, Optional

import requests

from zotapi.protocol.types import APIRequest, APIResponse

from .base import timeout_error


def _multi_headers(response: requests.Response) -> Dict[str, List[str]]:
    """
    Headers of a requests response as name -> list of values.  requests
    folds repeated headers into one comma-joined value; the underlying
    urllib3 headers keep them apart.
    """
    raw = getattr(getattr(response, "raw", None), "headers", None)
    if raw is not None and hasattr(raw, "getlist"):
        headers: Dict[str, List[str]] = {}
        for name in raw.keys():
            if name not in headers:
                headers[name] = list(raw.getlist(name))
        return headers
    return {name: [value] for name, value in response.headers.items()}


class SyncIO:
    """
    Synchronous I/O shell using requests library.

    This is a thin wrapper that executes APIRequest objects via HTTP
    and returns APIResponse objects.

    Example:
        io = SyncIO()
        request = protocol.user_request("GET", 1, "items")
        response = io.execute(request)
        items = decode(response, OutputFormat.JSON)
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        verify: bool = True,
    ):
        """
        Initialize the sync I/O handler.

        Args:
            session: Existing requests Session to use (creates new if None)
            timeout: Request timeout in seconds
            verify: Verify SSL certificates
        """
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify

    def execute(self, request: APIRequest) -> APIResponse:
        """
        Execute an APIRequest and return APIResponse.

        Args:
            request: The request to execute

        Returns:
            APIResponse with status, headers, and body
        """
        try:
            response = self.session.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                data=request.body,
                timeout=self.timeout,
                verify=self.verify,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as err:
            raise timeout_error(request) from err

        return APIResponse(
            status=response.status_code,
            headers=_multi_headers(response),
            body=response.content,
            url=request.url,
        )

    def close(self) -> None:
        """Close the session if we created it."""
        if self._owns_session and self.session:
            self.session.close()

    def __enter__(self) -> "SyncIO":
        """Context manager entry."""
        return self

    def __exit__(self, *args) -> None:
        """Context manager exit."""
        self.close()

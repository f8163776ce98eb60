"""
Zotero API request building.

This class turns a resource path, a scope, a query, a body and headers
into a fully qualified APIRequest, injecting the protocol version,
schema version and authentication headers, while remaining completely
I/O-free.
"""

import json
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode, urljoin, urlparse

from .types import APIRequest, BasicAuth, HTTPMethod, Library

if TYPE_CHECKING:
    from zotapi.config import ClientConfig

API_VERSION_HEADER = "Zotero-API-Version"
SCHEMA_VERSION_HEADER = "Zotero-Schema-Version"

## auth=None -> ambient API key, auth=False -> no credentials at all
AuthSpec = Union[None, bool, BasicAuth]
HeaderSpec = Union[None, Mapping[str, Any], Iterable[str]]
BodySpec = Union[None, bytes, str, dict, list]


def parse_headers(headers: HeaderSpec) -> Dict[str, str]:
    """
    Normalize extra headers.

    Accepts a mapping or a list of "Header-Name: value" strings, the form
    common in test code.
    """
    if not headers:
        return {}
    if isinstance(headers, Mapping):
        return {str(k): str(v) for k, v in headers.items()}
    result: Dict[str, str] = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if sep and name.strip():
            result[name.strip()] = value.strip()
    return result


def encode_query(query: Optional[Mapping[str, Any]]) -> str:
    """
    Encode query parameters.  Sequences are joined with commas
    (itemKey=A,B), None values are dropped.
    """
    if not query:
        return ""
    pairs = []
    for name, value in query.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "1" if value else "0"
        pairs.append((name, str(value)))
    return urlencode(pairs, safe=",")


class ZoteroProtocol:
    """
    Sans-I/O request builder.

    Builds requests without doing any I/O.  All HTTP communication is
    delegated to an external I/O implementation.

    Example:
        protocol = ZoteroProtocol(ClientConfig(api_url_prefix="http://localhost/",
                                               api_key="abc"))

        # Build request
        request = protocol.build(HTTPMethod.GET, "users/1/items", query={"limit": 1})

        # Execute with your I/O (not shown)
        response = io.execute(request)
    """

    def __init__(self, config: "ClientConfig"):
        """
        Initialize the protocol handler.

        Args:
            config: Immutable session configuration
        """
        self.config = config
        self.base_url = config.api_url_prefix or ""

    def _auth(self, auth: AuthSpec) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Credentials for a request as (headers, query parameters).

        The ambient API key goes into a Bearer header from API version 3
        on, and into the key= query parameter for older generations.
        """
        if auth is False:
            return {}, {}
        if isinstance(auth, BasicAuth):
            return {"Authorization": auth.header()}, {}
        if not self.config.api_key:
            return {}, {}
        api_version = self.config.api_version
        if api_version and api_version < 3:
            return {}, {"key": self.config.api_key}
        return {"Authorization": f"Bearer {self.config.api_key}"}, {}

    def _base_headers(self) -> Dict[str, str]:
        """Return version headers for all requests."""
        headers = {}
        if self.config.api_version:
            headers[API_VERSION_HEADER] = str(self.config.api_version)
        if self.config.schema_version:
            headers[SCHEMA_VERSION_HEADER] = str(self.config.schema_version)
        return headers

    def _resolve_url(self, path: str, query: Optional[Mapping[str, Any]] = None) -> str:
        """
        Resolve a path to a full URL.

        Args:
            path: Path relative to the API root, or absolute URL
            query: Query parameters to append

        Returns:
            Full URL
        """
        if urlparse(path).scheme:
            url = path
        elif self.base_url:
            base = self.base_url
            if not base.endswith("/"):
                base += "/"
            url = urljoin(base, path.lstrip("/"))
        else:
            url = path

        encoded = encode_query(query)
        if encoded:
            url += ("&" if "?" in url else "?") + encoded
        return url

    @staticmethod
    def _encode_body(body: BodySpec) -> Tuple[Optional[bytes], Optional[str]]:
        """Serialize a body, returning it with its implied Content-Type."""
        if body is None:
            return None, None
        if isinstance(body, bytes):
            return body, None
        if isinstance(body, str):
            return body.encode("utf-8"), None
        return json.dumps(body).encode("utf-8"), "application/json"

    def build(
        self,
        method: Union[HTTPMethod, str],
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: BodySpec = None,
        headers: HeaderSpec = None,
        auth: AuthSpec = None,
    ) -> APIRequest:
        """
        Build a fully qualified request.

        Args:
            method: HTTP method
            path: Path relative to the API root (users/1/items ...)
            query: Query parameters
            body: bytes or str sent as is, dict/list sent as JSON
            headers: Extra headers, mapping or "Name: value" strings
            auth: None for the ambient API key, BasicAuth, or False

        Returns:
            APIRequest ready for execution
        """
        if not isinstance(method, HTTPMethod):
            method = HTTPMethod(method.upper())

        auth_headers, auth_query = self._auth(auth)
        data, content_type = self._encode_body(body)

        req_headers = self._base_headers()
        req_headers.update(auth_headers)
        if content_type:
            req_headers["Content-Type"] = content_type
        req_headers.update(parse_headers(headers))

        full_query: Dict[str, Any] = dict(query or {})
        for name, value in auth_query.items():
            full_query.setdefault(name, value)

        return APIRequest(
            method=method,
            url=self._resolve_url(path, full_query),
            headers=req_headers,
            body=data,
        )

    # =========================================================================
    # Scoped builders
    # =========================================================================

    def library_request(
        self,
        method: Union[HTTPMethod, str],
        library: Library,
        suffix: str,
        **kwargs,
    ) -> APIRequest:
        """Build a request for a path inside a user or group library."""
        return self.build(method, library.path(suffix), **kwargs)

    def user_request(
        self, method: Union[HTTPMethod, str], user_id: int, suffix: str, **kwargs
    ) -> APIRequest:
        return self.library_request(method, Library.user(user_id), suffix, **kwargs)

    def group_request(
        self, method: Union[HTTPMethod, str], group_id: int, suffix: str, **kwargs
    ) -> APIRequest:
        return self.library_request(method, Library.group(group_id), suffix, **kwargs)

    def super_request(
        self, method: Union[HTTPMethod, str], path: str, **kwargs
    ) -> APIRequest:
        """Build a privileged request authenticated with the root credentials."""
        kwargs["auth"] = self.config.root_auth or False
        return self.build(method, path, **kwargs)

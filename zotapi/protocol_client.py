"""
Synchronous client using the Sans-I/O protocol layer.

SyncProtocolClient is a small blocking counterpart of AsyncZoteroClient
for scripts and interactive use: the same request builder, version
controller and decoders, executed through SyncIO on requests.  The
object facades are async only.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from zotapi.config import ClientConfig, get_config
from zotapi.io import SyncIO
from zotapi.lib import error
from zotapi.protocol import (
    APIResponse,
    BatchClassification,
    HTTPMethod,
    Library,
    OutputFormat,
    ResourceKind,
    VersionController,
    ZoteroProtocol,
    batch_body,
    classify_response,
    decode,
)
from zotapi.protocol.payloads import to_json


class SyncProtocolClient:
    """
    Synchronous Zotero API client using Sans-I/O protocol layer.

    Example:
        client = SyncProtocolClient(ClientConfig(api_key="...", user_id=1))
        with client:
            keys = client.list(Library.user(1), ResourceKind.ITEM, fmt="keys")
            version = client.library_version(Library.user(1))
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        io: Optional[SyncIO] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Session configuration (resolved by get_config() if None)
            io: I/O implementation (a SyncIO on requests if None)
        """
        self.config = config if config is not None else get_config()
        self.protocol = ZoteroProtocol(self.config)
        self.versions = VersionController(self.config.api_version)
        self.io = io or SyncIO(timeout=self.config.timeout, verify=self.config.verify_ssl)

    def close(self) -> None:
        """Close the HTTP session."""
        self.io.close()

    def __enter__(self) -> "SyncProtocolClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _execute(self, request) -> APIResponse:
        """Execute a request and return the response."""
        return self.io.execute(request)

    def request(self, method: Union[HTTPMethod, str], path: str, **kwargs) -> APIResponse:
        """
        Build and send a request, unchecked.

        Args:
            method: HTTP method
            path: Path relative to the API root
            **kwargs: query, body, headers, auth as for ZoteroProtocol.build()
        """
        return self._execute(self.protocol.build(method, path, **kwargs))

    def get(self, path: str, **kwargs) -> APIResponse:
        return self.request(HTTPMethod.GET, path, **kwargs)

    def post(self, path: str, body: Any = None, **kwargs) -> APIResponse:
        return self.request(HTTPMethod.POST, path, body=body, **kwargs)

    def put(self, path: str, body: Any = None, **kwargs) -> APIResponse:
        return self.request(HTTPMethod.PUT, path, body=body, **kwargs)

    def patch(self, path: str, body: Any = None, **kwargs) -> APIResponse:
        return self.request(HTTPMethod.PATCH, path, body=body, **kwargs)

    def delete(self, path: str, **kwargs) -> APIResponse:
        return self.request(HTTPMethod.DELETE, path, **kwargs)

    # High-level operations

    def library_version(self, library: Library) -> int:
        """
        Current version of a library.

        Returns:
            The Last-Modified-Version of a minimal listing
        """
        response = self.get(library.path("items"), query={"format": "keys", "limit": 1})
        error.raise_for_status(response, (200,))
        version = response.last_modified_version
        if version is None:
            raise error.ResponseError(url=response.url, reason="No Last-Modified-Version in response")
        return version

    def list(
        self,
        library: Library,
        kind: ResourceKind,
        fmt: Union[OutputFormat, str] = OutputFormat.JSON,
        **query,
    ) -> Any:
        """
        List the objects of one kind.

        Args:
            library: Library scope
            kind: Kind of objects
            fmt: Output format the response is decoded in
            **query: Extra query parameters (since, newer, limit, ...)
        """
        fmt = OutputFormat.coerce(fmt)
        if fmt is not OutputFormat.RAW:
            query["format"] = fmt.value
        response = self.get(library.path(kind.plural), query=query)
        error.raise_for_status(response, (200,))
        return decode(response, fmt)

    def get_object(
        self,
        library: Library,
        kind: ResourceKind,
        key: str,
    ) -> Dict[str, Any]:
        """Read one object as JSON"""
        response = self.get(library.path(f"{kind.plural}/{key}"), query={"format": "json"})
        error.raise_for_status(response, (200,))
        return decode(response, OutputFormat.JSON)

    def write_objects(
        self,
        library: Library,
        kind: ResourceKind,
        objects: Sequence[Any],
        version: Optional[int] = None,
    ) -> BatchClassification:
        """
        Create or update several objects in one POST.

        Objects without a key are created; keyed objects must carry their
        version, or version must be given for the whole library.

        Returns:
            Per-index classification of the batch
        """
        payload: List[Any] = [to_json(o, self.config.api_version) for o in objects]
        headers = self.versions.condition_headers(version) if version is not None else None
        response = self.post(
            library.path(kind.plural),
            batch_body(payload, kind, self.config.api_version),
            headers=headers,
        )
        return classify_response(response, expected_count=len(payload))

    def update_object(
        self,
        library: Library,
        kind: ResourceKind,
        key: str,
        data: Any,
        version: Optional[int] = None,
    ) -> Optional[int]:
        """
        Replace one object, conditioned on version (or on the version
        embedded in data).

        Returns:
            The new library version
        """
        condition = self.versions.condition(kind, to_json(data, self.config.api_version), version)
        response = self.put(
            library.path(f"{kind.plural}/{key}"),
            condition.payload,
            headers=condition.headers,
        )
        return self.versions.check_write_response(response)

    def delete_object(
        self,
        library: Library,
        kind: ResourceKind,
        key: str,
        version: int,
    ) -> Optional[int]:
        """Delete one object, conditioned on its version"""
        response = self.delete(
            library.path(f"{kind.plural}/{key}"),
            headers=self.versions.condition_headers(version),
        )
        return self.versions.check_write_response(response, (204,))

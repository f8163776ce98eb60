#!/usr/bin/env python
"""
Async client for the Zotero API.

AsyncZoteroClient wraps the Sans-I/O protocol layer with an I/O
implementation and provides the generic verbs, per-library object
facades and the privileged helpers used to prepare test libraries.

    async with AsyncZoteroClient(get_config()) as client:
        library = client.library()
        key = await library.items.create_item("book", {"title": "A"}, fmt="key")
        item = await library.items.get(key, OutputFormat.JSON)
        await library.items.patch(key, {"title": "B"}, version=item["version"])
"""

import logging
import re
import sys
from types import TracebackType
from typing import Any, Dict, List, Optional, Sequence, Union

from zotapi.config import ClientConfig, get_config
from zotapi.io import AsyncIO
from zotapi.io.base import AsyncIOProtocol
from zotapi.lib import error
from zotapi.protocol import atom, formats
from zotapi.protocol.batch import classify, classify_response
from zotapi.protocol.operations import AuthSpec, BodySpec, HeaderSpec, ZoteroProtocol
from zotapi.protocol.payloads import (
    FulltextPayload,
    ItemPayload,
    annotation_defaults,
    batch_body,
    to_json,
)
from zotapi.protocol.types import (
    APIRequest,
    APIResponse,
    BatchClassification,
    DeletedLog,
    HTTPMethod,
    Library,
    OutputFormat,
    ResourceKind,
    ReturnFormat,
)
from zotapi.protocol.versioning import ConditionForm, VersionController

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self

log = logging.getLogger(__name__)

Keys = Union[str, Sequence[str]]

CREATE_FORMATS = (
    ReturnFormat.RESPONSE,
    ReturnFormat.RESPONSE_JSON,
    ReturnFormat.BATCH,
    ReturnFormat.KEY,
    ReturnFormat.JSON,
    ReturnFormat.JSON_DATA,
    ReturnFormat.ATOM,
)
WRITE_FORMATS = (ReturnFormat.VERSION, ReturnFormat.RESPONSE)
GROUP_FORMATS = ("id", "response")


def _listing_query(query: Optional[Dict[str, Any]], **params: Any) -> Dict[str, Any]:
    """Listing parameters; keyword arguments left as None keep the caller's value"""
    merged: Dict[str, Any] = dict(query or {})
    merged.update({name: value for name, value in params.items() if value is not None})
    return merged


def _dump_communication(request: APIRequest, response: APIResponse) -> None:
    import datetime
    from tempfile import NamedTemporaryFile

    with NamedTemporaryFile(prefix="zotapicomm", delete=False) as commlog:
        commlog.write(b"=" * 80 + b"\n")
        commlog.write(f"{datetime.datetime.now():%FT%H:%M:%S}".encode("utf-8"))
        commlog.write(b"\n====>\n")
        commlog.write(f"{request.method.value} {request.url}\n".encode("utf-8"))
        commlog.write(
            b"\n".join(
                f"{x}: {request.headers[x]}".encode("utf-8") for x in request.headers
            )
        )
        commlog.write(b"\n\n")
        commlog.write(request.body or b"")
        commlog.write(b"<====\n")
        commlog.write(f"{response.status} {response.reason}\n".encode("utf-8"))
        commlog.write(
            b"\n".join(
                f"{x}: {v}".encode("utf-8")
                for x in response.headers
                for v in response.headers[x]
            )
        )
        commlog.write(b"\n\n")
        commlog.write(response.body)
        log.info(f"communication dumped to {commlog.name}")


class AsyncZoteroClient:
    """
    Async Zotero API client.

    The session configuration is immutable: with_api_key(),
    with_api_version() and with_schema_version() return a new client
    sharing the same I/O, so every logical actor gets its own session.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        io: Optional[AsyncIOProtocol] = None,
    ) -> None:
        """
        Args:
            config: Session configuration (resolved by get_config() if None)
            io: I/O implementation (an AsyncIO on aiohttp if None)
        """
        self.config = config if config is not None else get_config()
        self.protocol = ZoteroProtocol(self.config)
        self.versions = VersionController(self.config.api_version)
        self._owns_io = io is None
        self.io = io if io is not None else AsyncIO(
            timeout=self.config.timeout, verify_ssl=self.config.verify_ssl
        )

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the I/O if this client created it."""
        if self._owns_io:
            await self.io.close()

    def _derive(self, config: ClientConfig) -> "AsyncZoteroClient":
        return AsyncZoteroClient(config, io=self.io)

    def with_api_key(self, api_key: Optional[str]) -> "AsyncZoteroClient":
        return self._derive(self.config.with_api_key(api_key))

    def with_api_version(self, api_version: Optional[int]) -> "AsyncZoteroClient":
        return self._derive(self.config.with_api_version(api_version))

    def with_schema_version(self, schema_version: Optional[int]) -> "AsyncZoteroClient":
        return self._derive(self.config.with_schema_version(schema_version))

    async def request(
        self,
        method: Union[HTTPMethod, str],
        path: str,
        query: Optional[Dict[str, Any]] = None,
        body: BodySpec = None,
        headers: HeaderSpec = None,
        auth: AuthSpec = None,
    ) -> APIResponse:
        """
        Build and send a request.  The response is returned whatever its
        status; checking it is up to the caller.

        Args:
            method: HTTP method
            path: Path relative to the API root
            query: Query parameters
            body: bytes/str sent as is, dict/list sent as JSON
            headers: Extra headers, mapping or "Name: value" strings
            auth: None for the ambient API key, BasicAuth, or False
        """
        request = self.protocol.build(
            method, path, query=query, body=body, headers=headers, auth=auth
        )
        return await self.execute(request)

    async def execute(self, request: APIRequest) -> APIResponse:
        log.debug(
            f"sending request - method={request.method.value}, url={request.url}, "
            f"headers={request.headers}\nbody:\n{request.body!r}"
        )
        response = await self.io.execute(request)
        log.debug(f"server responded with {response.status} {response.reason}")
        if error.debug_dump_communication:
            _dump_communication(request, response)
        return response

    # ==================== HTTP Method Wrappers ====================

    async def get(
        self, path: str, query=None, headers: HeaderSpec = None, auth: AuthSpec = None
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.GET, path, query=query, headers=headers, auth=auth
        )

    async def head(
        self, path: str, query=None, headers: HeaderSpec = None, auth: AuthSpec = None
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.HEAD, path, query=query, headers=headers, auth=auth
        )

    async def post(
        self,
        path: str,
        body: BodySpec = None,
        query=None,
        headers: HeaderSpec = None,
        auth: AuthSpec = None,
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.POST, path, query=query, body=body, headers=headers, auth=auth
        )

    async def put(
        self,
        path: str,
        body: BodySpec = None,
        query=None,
        headers: HeaderSpec = None,
        auth: AuthSpec = None,
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.PUT, path, query=query, body=body, headers=headers, auth=auth
        )

    async def patch(
        self,
        path: str,
        body: BodySpec = None,
        query=None,
        headers: HeaderSpec = None,
        auth: AuthSpec = None,
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.PATCH, path, query=query, body=body, headers=headers, auth=auth
        )

    async def delete(
        self, path: str, query=None, headers: HeaderSpec = None, auth: AuthSpec = None
    ) -> APIResponse:
        return await self.request(
            HTTPMethod.DELETE, path, query=query, headers=headers, auth=auth
        )

    # Scoped variants: paths relative to users/{id}/ and groups/{id}/

    async def user_get(self, user_id: int, suffix: str, **kwargs) -> APIResponse:
        return await self.get(Library.user(user_id).path(suffix), **kwargs)

    async def user_head(self, user_id: int, suffix: str, **kwargs) -> APIResponse:
        return await self.head(Library.user(user_id).path(suffix), **kwargs)

    async def user_post(
        self, user_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.post(Library.user(user_id).path(suffix), body, **kwargs)

    async def user_put(
        self, user_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.put(Library.user(user_id).path(suffix), body, **kwargs)

    async def user_patch(
        self, user_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.patch(Library.user(user_id).path(suffix), body, **kwargs)

    async def user_delete(self, user_id: int, suffix: str, **kwargs) -> APIResponse:
        return await self.delete(Library.user(user_id).path(suffix), **kwargs)

    async def group_get(self, group_id: int, suffix: str, **kwargs) -> APIResponse:
        return await self.get(Library.group(group_id).path(suffix), **kwargs)

    async def group_post(
        self, group_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.post(Library.group(group_id).path(suffix), body, **kwargs)

    async def group_put(
        self, group_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.put(Library.group(group_id).path(suffix), body, **kwargs)

    async def group_patch(
        self, group_id: int, suffix: str, body: BodySpec = None, **kwargs
    ) -> APIResponse:
        return await self.patch(Library.group(group_id).path(suffix), body, **kwargs)

    async def group_delete(self, group_id: int, suffix: str, **kwargs) -> APIResponse:
        return await self.delete(Library.group(group_id).path(suffix), **kwargs)

    # Privileged variants, authenticated with the root credentials

    def _root_auth(self) -> AuthSpec:
        if self.config.root_auth is None:
            error.weirdness("privileged request without root credentials configured")
            return False
        return self.config.root_auth

    async def super_get(
        self, path: str, query=None, headers: HeaderSpec = None
    ) -> APIResponse:
        return await self.get(path, query=query, headers=headers, auth=self._root_auth())

    async def super_post(
        self, path: str, body: BodySpec = None, query=None, headers: HeaderSpec = None
    ) -> APIResponse:
        return await self.post(
            path, body, query=query, headers=headers, auth=self._root_auth()
        )

    async def super_put(
        self, path: str, body: BodySpec = None, query=None, headers: HeaderSpec = None
    ) -> APIResponse:
        return await self.put(
            path, body, query=query, headers=headers, auth=self._root_auth()
        )

    async def super_delete(
        self, path: str, query=None, headers: HeaderSpec = None
    ) -> APIResponse:
        return await self.delete(
            path, query=query, headers=headers, auth=self._root_auth()
        )

    # ==================== Libraries ====================

    def library(
        self, user_id: Optional[int] = None, group_id: Optional[int] = None
    ) -> "LibraryClient":
        """
        Object facades bound to one library: the given group, the given
        user, or the configured user when neither is given.
        """
        if group_id is not None:
            return LibraryClient(self, Library.group(group_id))
        if user_id is not None:
            return LibraryClient(self, Library.user(user_id))
        return LibraryClient(self, self.config.user_library)

    async def user_clear(self, user_id: int) -> None:
        await self.library(user_id=user_id).clear()

    async def group_clear(self, group_id: int) -> None:
        await self.library(group_id=group_id).clear()

    async def groups(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Groups a user belongs to"""
        if user_id is None:
            user_id = self.config.user_library.id
        response = await self.user_get(user_id, "groups", query={"format": "json"})
        error.raise_for_status(response, (200,))
        return formats.decode_json(response)

    # ==================== API keys ====================

    async def get_key(self, key: str) -> Dict[str, Any]:
        response = await self.super_get(f"keys/{key}")
        error.raise_for_status(response, (200,))
        return formats.decode_json(response)

    async def put_key(self, key: str, data: Dict[str, Any]) -> None:
        response = await self.super_put(f"keys/{key}", data)
        error.raise_for_status(response, (200,))

    async def reset_key(self, key: str) -> None:
        """Revoke all library and group access of an API key"""
        data = await self.get_key(key)
        data["access"] = {
            "user": {"library": False, "files": False, "notes": False, "write": False},
            "groups": {},
        }
        await self.put_key(key, data)

    async def set_key_user_permission(self, key: str, permission: str, value: bool) -> None:
        """
        Args:
            permission: "library", "files", "notes" or "write"
        """
        if permission not in ("library", "files", "notes", "write"):
            raise ValueError(f"Unknown user permission '{permission}'")
        data = await self.get_key(key)
        data.setdefault("access", {}).setdefault("user", {})[permission] = value
        await self.put_key(key, data)

    async def set_key_group_permission(
        self, key: str, group_id: Union[int, str], permission: str, value: bool = True
    ) -> None:
        """group_id may be "all" to grant access to every group"""
        data = await self.get_key(key)
        groups = data.setdefault("access", {}).setdefault("groups", {})
        groups.setdefault(str(group_id), {})[permission] = value
        await self.put_key(key, data)

    # ==================== Groups ====================

    async def create_group(
        self,
        owner: int,
        type: str,
        name: Optional[str] = None,
        library_editing: str = "members",
        library_reading: str = "members",
        file_editing: str = "none",
        members: Optional[Sequence[int]] = None,
        fmt: str = "id",
    ) -> Union[int, APIResponse]:
        """
        Create a group and optionally add members to it.

        Args:
            owner: User id of the owner
            type: "PublicOpen", "PublicClosed" or "Private"
            fmt: "id" for the new group id, "response" for the creation response
        """
        if fmt not in GROUP_FORMATS:
            raise error.UnsupportedFormat(reason=f"Unknown response format '{fmt}'")
        if name is None:
            import time

            name = f"Test Group {int(time.time() * 1000)}"
        body = atom.render_group(
            owner, type, name, library_editing, library_reading, file_editing
        )
        response = await self.super_post("groups", body)
        error.raise_for_status(response, (201,))

        location = response.header("Location") or ""
        match = re.search(r"[0-9]+$", location)
        if not match:
            raise error.ResponseError(
                url=response.url,
                reason=f"No group id in Location '{location}'",
                status=response.status,
            )
        group_id = int(match.group(0))
        log.info(f"created group {group_id} ({type}) owned by {owner}")

        if members:
            await self.add_group_members(group_id, members)
        if fmt == "response":
            return response
        return group_id

    async def add_group_members(self, group_id: int, user_ids: Sequence[int]) -> None:
        response = await self.super_post(
            f"groups/{group_id}/users", atom.render_group_members(list(user_ids))
        )
        error.raise_for_status(response, (200,))

    async def delete_group(self, group_id: int) -> None:
        response = await self.super_delete(f"groups/{group_id}")
        error.raise_for_status(response, (204,))
        log.info(f"deleted group {group_id}")


class LibraryClient:
    """
    The objects of one library: per-kind facades plus the library-wide
    operations (version, deleted log, clearing).
    """

    def __init__(self, client: AsyncZoteroClient, library: Library) -> None:
        self.client = client
        self.library = library
        self.items = ItemFacade(self)
        self.collections = ObjectFacade(self, ResourceKind.COLLECTION)
        self.searches = ObjectFacade(self, ResourceKind.SEARCH)
        self.settings = SettingFacade(self)
        self.tags = TagFacade(self)

    @property
    def api_version(self) -> Optional[int]:
        return self.client.config.api_version

    @property
    def versions(self) -> VersionController:
        return self.client.versions

    async def request(
        self, method: Union[HTTPMethod, str], suffix: str, **kwargs
    ) -> APIResponse:
        return await self.client.request(method, self.library.path(suffix), **kwargs)

    async def library_version(self) -> int:
        response = await self.request(
            HTTPMethod.GET, "items", query={"format": "keys", "limit": 1}
        )
        error.raise_for_status(response, (200,))
        version = response.last_modified_version
        if version is None:
            raise error.ResponseError(
                url=response.url,
                reason="No Last-Modified-Version in response",
                status=response.status,
            )
        return version

    async def deleted_since(
        self, since: Optional[int] = None, newer: Optional[int] = None
    ) -> DeletedLog:
        """
        Objects deleted after a library version.  since and newer are
        sent as given.
        """
        response = await self.request(
            HTTPMethod.GET, "deleted", query={"since": since, "newer": newer}
        )
        error.raise_for_status(response, (200,))
        data = formats.decode_json(response)
        return DeletedLog(
            collections=list(data.get("collections", [])),
            items=list(data.get("items", [])),
            searches=list(data.get("searches", [])),
            settings=list(data.get("settings", [])),
            tags=list(data.get("tags", [])),
        )

    async def clear(self) -> None:
        """Empty the library (privileged)"""
        response = await self.client.super_post(self.library.path("clear"), "")
        error.raise_for_status(response, (204,))
        log.info(f"cleared library {self.library}")

    def __repr__(self) -> str:
        return f"LibraryClient({self.library})"


class ObjectFacade:
    """
    Typed operations on one kind of versioned object in one library.

    Writes are conditioned through the VersionController; an update with
    no version known is refused before sending unless unconditional=True.
    The fmt parameter selects what is returned and is checked against an
    allow-list per operation.
    """

    def __init__(self, library: LibraryClient, kind: ResourceKind) -> None:
        self.library = library
        self.kind = kind

    @property
    def plural(self) -> str:
        return self.kind.plural

    def _object_path(self, key: str) -> str:
        return f"{self.plural}/{key}"

    def _keys_query(self, keys: Sequence[str]) -> Dict[str, Any]:
        return {self.kind.key_param: list(keys)}

    async def _write_result(
        self, response: APIResponse, fmt: ReturnFormat, expected=(200, 204)
    ):
        if fmt is ReturnFormat.RESPONSE:
            return response
        return self.library.versions.check_write_response(response, expected)

    # ==================== Create ====================

    async def create(
        self,
        objects: Any,
        fmt: Union[ReturnFormat, str] = ReturnFormat.RESPONSE_JSON,
    ) -> Any:
        """
        Create one or more objects in a single batch POST.

        Args:
            objects: A payload (builder or dict) or a list of them
            fmt: RESPONSE, RESPONSE_JSON, BATCH (classified result), or for
                a single object KEY, JSON, JSON_DATA or ATOM

        Raises:
            ResponseError: The request failed, or a single-object format
                was asked for and the batch did not create exactly one object
        """
        fmt = ReturnFormat.coerce(fmt, CREATE_FORMATS)
        if not isinstance(objects, (list, tuple)):
            objects = [objects]
        body = batch_body(objects, self.kind, self.library.api_version)
        response = await self.library.request(HTTPMethod.POST, self.plural, body=body)
        error.raise_for_status(response, (200,))

        if fmt is ReturnFormat.RESPONSE:
            return response
        if fmt is ReturnFormat.RESPONSE_JSON:
            return formats.decode_json(response)

        result = classify(response, expected_count=len(objects))
        if fmt is ReturnFormat.BATCH:
            return result
        if len(result.success) != 1:
            log.error(f"{self.kind.value} creation failed: \n{response.text}")
            raise error.ResponseError(
                url=response.url,
                reason=f"{self.kind.value.capitalize()} creation failed: {response.text}",
                status=response.status,
            )
        key = result.first_success_key()
        if fmt is ReturnFormat.KEY:
            return key
        if fmt is ReturnFormat.ATOM:
            return await self.get(key, OutputFormat.ATOM)
        data = await self.get(key, OutputFormat.JSON)
        if fmt is ReturnFormat.JSON_DATA:
            return data["data"]
        return data

    async def create_with_key(
        self,
        key: str,
        data: Any,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """Create an object under a client-chosen key (PUT conditioned on version 0)"""
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        condition = self.library.versions.condition(
            self.kind, to_json(data, self.library.api_version), 0
        )
        response = await self.library.request(
            HTTPMethod.PUT,
            self._object_path(key),
            body=condition.payload,
            headers=condition.headers,
        )
        return await self._write_result(response, fmt)

    # ==================== Read ====================

    async def get_response(
        self,
        keys: Keys,
        fmt: Union[OutputFormat, str, None] = None,
        if_modified_since: Optional[int] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> APIResponse:
        """The unchecked response to reading one key or several"""
        params: Dict[str, Any] = dict(query or {})
        if isinstance(keys, str):
            path = self._object_path(keys)
        else:
            path = self.plural
            params.update(self._keys_query(keys))
            params["order"] = f"{self.kind.value}KeyList"
        if fmt is not None:
            fmt = OutputFormat.coerce(fmt)
            if fmt is not OutputFormat.RAW:
                params["format"] = fmt.value
            if fmt is OutputFormat.ATOM:
                params.setdefault("content", "json")
        return await self.library.request(
            HTTPMethod.GET,
            path,
            query=params,
            headers=self.library.versions.read_headers(if_modified_since),
        )

    async def get(
        self,
        keys: Keys,
        fmt: Union[OutputFormat, str, None] = None,
        if_modified_since: Optional[int] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Read one object (keys is a key) or several (keys is a list).

        JSON and Atom responses are decoded according to their
        Content-Type; KEYS, VERSIONS and RAW are decoded as asked.

        Returns:
            The decoded body, or None when if_modified_since is given and
            the object has not changed (304)
        """
        response = await self.get_response(keys, fmt, if_modified_since, query)
        versions = self.library.versions
        if if_modified_since is not None and versions.is_not_modified(response):
            return None
        error.raise_for_status(response, (200,))
        if fmt is None or OutputFormat.coerce(fmt) in (OutputFormat.JSON, OutputFormat.ATOM):
            return formats.decode_auto(response)
        return formats.decode(response, fmt)

    async def search_response(
        self,
        query: Optional[Dict[str, Any]] = None,
        top: bool = False,
        trash: bool = False,
        since: Optional[int] = None,
        newer: Optional[int] = None,
        limit: Optional[int] = None,
        fmt: Union[OutputFormat, str, None] = OutputFormat.JSON,
    ) -> APIResponse:
        path = self.plural
        if top:
            path += "/top"
        elif trash:
            path += "/trash"
        params = _listing_query(query, since=since, newer=newer, limit=limit)
        if fmt is not None:
            fmt = OutputFormat.coerce(fmt)
            if fmt is not OutputFormat.RAW:
                params["format"] = fmt.value
        return await self.library.request(HTTPMethod.GET, path, query=params)

    async def search(
        self,
        query: Optional[Dict[str, Any]] = None,
        top: bool = False,
        trash: bool = False,
        since: Optional[int] = None,
        newer: Optional[int] = None,
        limit: Optional[int] = None,
        fmt: Union[OutputFormat, str] = OutputFormat.JSON,
    ) -> Any:
        """
        List objects matching query parameters (q, tag, itemType, ...).
        since and newer are sent as given.
        """
        response = await self.search_response(query, top, trash, since, newer, limit, fmt)
        error.raise_for_status(response, (200,))
        return formats.decode(response, fmt)

    async def versions(
        self, since: Optional[int] = None, newer: Optional[int] = None
    ) -> Dict[str, int]:
        """Map of key -> version, restricted to objects changed after since/newer"""
        return await self.search(since=since, newer=newer, fmt=OutputFormat.VERSIONS)

    async def keys(
        self, since: Optional[int] = None, newer: Optional[int] = None
    ) -> List[str]:
        return await self.search(since=since, newer=newer, fmt=OutputFormat.KEYS)

    # ==================== Update ====================

    async def _conditioned_write(
        self,
        method: HTTPMethod,
        key: str,
        data: Any,
        version: Optional[int],
        form: ConditionForm,
        unconditional: bool,
        fmt: Union[ReturnFormat, str],
    ) -> Any:
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        condition = self.library.versions.condition(
            self.kind,
            to_json(data, self.library.api_version),
            version,
            form=form,
            unconditional=unconditional,
        )
        response = await self.library.request(
            method,
            self._object_path(key),
            body=condition.payload,
            headers=condition.headers,
        )
        return await self._write_result(response, fmt)

    async def update(
        self,
        key: str,
        data: Any,
        version: Optional[int] = None,
        form: ConditionForm = ConditionForm.HEADER,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """
        Replace an object (PUT), conditioned on version.

        Returns:
            The new library version, or the response with fmt=RESPONSE

        Raises:
            PreconditionRequired: No version in either form (before sending,
                unless unconditional)
            PreconditionFailed: The version is stale
        """
        return await self._conditioned_write(
            HTTPMethod.PUT, key, data, version, form, unconditional, fmt
        )

    async def patch(
        self,
        key: str,
        data: Any,
        version: Optional[int] = None,
        form: ConditionForm = ConditionForm.HEADER,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """Partially update an object (PATCH), conditioned on version"""
        return await self._conditioned_write(
            HTTPMethod.PATCH, key, data, version, form, unconditional, fmt
        )

    async def trash(
        self,
        key: str,
        version: Optional[int] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """Move an object to the trash (soft delete)"""
        return await self.patch(key, {"deleted": True}, version=version, fmt=fmt)

    async def update_batch(
        self,
        objects: Sequence[Any],
        version: Optional[int] = None,
        form: ConditionForm = ConditionForm.HEADER,
        unconditional: bool = False,
    ) -> BatchClassification:
        """
        Write several existing objects in one POST.

        Each object carries its key and either its own version (property
        form) or the library version given here.

        Returns:
            Per-index classification; per-object failures are not raised
        """
        payload = [to_json(o, self.library.api_version) for o in objects]
        condition = self.library.versions.condition(
            self.kind, payload, version, form=form, unconditional=unconditional
        )
        body = batch_body(condition.payload, self.kind, self.library.api_version)
        response = await self.library.request(
            HTTPMethod.POST, self.plural, body=body, headers=condition.headers
        )
        return classify_response(response, expected_count=len(payload))

    # ==================== Delete ====================

    async def delete(
        self,
        keys: Keys,
        version: Optional[int] = None,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """
        Permanently delete one object or several, conditioned on version
        (the object's for one key, the library's for several).
        """
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        condition = self.library.versions.condition(
            self.kind, None, version, unconditional=unconditional
        )
        if isinstance(keys, str):
            path, query = self._object_path(keys), None
        else:
            path, query = self.plural, self._keys_query(keys)
        response = await self.library.request(
            HTTPMethod.DELETE, path, query=query, headers=condition.headers
        )
        return await self._write_result(response, fmt, expected=(204,))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.library.library}, {self.kind.value})"


class ItemFacade(ObjectFacade):
    """Items, with template-based creation and full-text content"""

    def __init__(self, library: LibraryClient) -> None:
        super().__init__(library, ResourceKind.ITEM)

    async def template(
        self,
        item_type: str,
        link_mode: Optional[str] = None,
        annotation_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """The empty JSON template of an item type, served by the API"""
        response = await self.library.client.get(
            "items/new",
            query={
                "itemType": item_type,
                "linkMode": link_mode,
                "annotationType": annotation_type,
            },
        )
        if response.status != 200:
            log.error(f"Invalid response from template request: \n{response.text}")
            raise error.from_response(response)
        return formats.decode_json(response)

    async def new(
        self, item_type: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> ItemPayload:
        """
        A payload builder for an item type.  Fields outside the template
        raise InvalidFieldError.
        """
        payload = ItemPayload.from_template(await self.template(item_type, **kwargs))
        if data:
            payload.update(data)
        return payload

    async def create_item(
        self,
        item_type: str,
        data: Optional[Dict[str, Any]] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.RESPONSE_JSON,
    ) -> Any:
        return await self.create(await self.new(item_type, data), fmt)

    async def create_note(
        self,
        text: str = "",
        parent_key: Optional[str] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.RESPONSE_JSON,
    ) -> Any:
        payload = await self.new("note", {"note": text})
        if parent_key:
            payload.set("parentItem", parent_key)
        return await self.create(payload, fmt)

    async def create_attachment(
        self,
        link_mode: str,
        data: Optional[Dict[str, Any]] = None,
        parent_key: Optional[str] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.RESPONSE_JSON,
    ) -> Any:
        """
        Args:
            link_mode: "imported_file", "imported_url", "linked_file",
                "linked_url" or "embedded_image"
        """
        payload = await self.new("attachment", data, link_mode=link_mode)
        if parent_key:
            payload.set("parentItem", parent_key)
        return await self.create(payload, fmt)

    async def create_annotation(
        self,
        annotation_type: str,
        parent_key: str,
        data: Optional[Dict[str, Any]] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.RESPONSE_JSON,
    ) -> Any:
        """
        Create an annotation on an attachment, filled with a fixed color,
        sort index and position.

        Args:
            annotation_type: "highlight", "underline", "note", "image" or "ink"
            parent_key: Key of the annotated attachment
            data: Only annotationComment is taken from it
        """
        template = await self.template("annotation", annotation_type=annotation_type)
        defaults = annotation_defaults(annotation_type)
        payload = ItemPayload(
            template, allowed=set(template) | set(defaults) | {"annotationComment"}
        )
        payload.set("parentItem", parent_key)
        payload.update(defaults)
        if data and data.get("annotationComment"):
            payload.set("annotationComment", data["annotationComment"])
        return await self.create(payload, fmt)

    async def children(
        self, key: str, fmt: Union[OutputFormat, str] = OutputFormat.JSON
    ) -> Any:
        fmt = OutputFormat.coerce(fmt)
        query = {"format": fmt.value} if fmt is not OutputFormat.RAW else None
        response = await self.library.request(
            HTTPMethod.GET, f"items/{key}/children", query=query
        )
        error.raise_for_status(response, (200,))
        return formats.decode(response, fmt)

    async def get_fulltext(self, key: str) -> Dict[str, Any]:
        response = await self.library.request(HTTPMethod.GET, f"items/{key}/fulltext")
        error.raise_for_status(response, (200,))
        return formats.decode_json(response)

    async def put_fulltext(
        self,
        key: str,
        content: Union[FulltextPayload, Dict[str, Any]],
        version: Optional[int] = None,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """Store the full-text content of an attachment"""
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        if isinstance(content, FulltextPayload):
            content = content.to_json()
        headers = None
        if version is not None:
            headers = self.library.versions.condition_headers(version)
        response = await self.library.request(
            HTTPMethod.PUT, f"items/{key}/fulltext", body=content, headers=headers
        )
        return await self._write_result(response, fmt, expected=(204,))

    async def fulltext_versions(
        self, since: Optional[int] = None, newer: Optional[int] = None
    ) -> Dict[str, int]:
        """Map of item key -> version of its full-text content"""
        response = await self.library.request(
            HTTPMethod.GET, "fulltext", query={"since": since, "newer": newer}
        )
        error.raise_for_status(response, (200,))
        return formats.decode_versions(response)


class SettingFacade(ObjectFacade):
    """
    Settings, addressed by name rather than key.  get() reads one setting
    as {"value": ..., "version": ...}.
    """

    def __init__(self, library: LibraryClient) -> None:
        super().__init__(library, ResourceKind.SETTING)

    async def get_all(self) -> Dict[str, Any]:
        response = await self.library.request(HTTPMethod.GET, self.plural)
        error.raise_for_status(response, (200,))
        return formats.decode_json(response)

    async def put(
        self,
        name: str,
        value: Any,
        version: Optional[int] = None,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """
        Write one setting.  version is 0 to create it, its current version
        to replace it.
        """
        return await self.update(
            name, {"value": value}, version=version, unconditional=unconditional, fmt=fmt
        )

    async def post_many(
        self,
        settings: Dict[str, Any],
        version: Optional[int] = None,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """
        Write several settings in one POST, conditioned on the library
        version.

        Args:
            settings: name -> value, or name -> {"value": ...}
        """
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        body = {}
        for name, value in settings.items():
            value = to_json(value, self.library.api_version)
            if not (isinstance(value, dict) and "value" in value):
                value = {"value": value}
            body[name] = value
        condition = self.library.versions.condition(
            self.kind, None, version, unconditional=unconditional
        )
        response = await self.library.request(
            HTTPMethod.POST, self.plural, body=body, headers=condition.headers
        )
        return await self._write_result(response, fmt, expected=(204,))


class TagFacade:
    """Tags have no version of their own; deletion is conditioned on the library"""

    def __init__(self, library: LibraryClient) -> None:
        self.library = library

    async def list(
        self,
        query: Optional[Dict[str, Any]] = None,
        since: Optional[int] = None,
        newer: Optional[int] = None,
        fmt: Union[OutputFormat, str] = OutputFormat.JSON,
    ) -> Any:
        fmt = OutputFormat.coerce(fmt)
        params = _listing_query(query, since=since, newer=newer)
        if fmt is not OutputFormat.RAW:
            params["format"] = fmt.value
        response = await self.library.request(HTTPMethod.GET, "tags", query=params)
        error.raise_for_status(response, (200,))
        return formats.decode(response, fmt)

    async def delete(
        self,
        tags: Sequence[str],
        version: Optional[int] = None,
        unconditional: bool = False,
        fmt: Union[ReturnFormat, str] = ReturnFormat.VERSION,
    ) -> Any:
        """Delete tags from every object of the library"""
        fmt = ReturnFormat.coerce(fmt, WRITE_FORMATS)
        condition = self.library.versions.condition(
            ResourceKind.TAG, None, version, unconditional=unconditional
        )
        response = await self.library.request(
            HTTPMethod.DELETE,
            "tags",
            query={"tag": " || ".join(tags)},
            headers=condition.headers,
        )
        if fmt is ReturnFormat.RESPONSE:
            return response
        return self.library.versions.check_write_response(response, (204,))

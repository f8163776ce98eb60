"""
Core protocol types for the Sans-I/O Zotero API implementation.

These dataclasses and enums represent HTTP requests and responses, the
resource kinds and the negotiated formats at the protocol level,
independent of any I/O implementation.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from zotapi.lib import error


class HTTPMethod(Enum):
    """HTTP methods used by the API."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def is_write(self) -> bool:
        return self not in (HTTPMethod.GET, HTTPMethod.HEAD)


class ResourceKind(Enum):
    """Object kinds living inside a library, plus the library-less ones."""

    ITEM = "item"
    COLLECTION = "collection"
    SEARCH = "search"
    SETTING = "setting"
    TAG = "tag"
    GROUP = "group"
    KEY = "key"

    @property
    def plural(self) -> str:
        if self is ResourceKind.SEARCH:
            return "searches"
        return self.value + "s"

    @property
    def key_param(self) -> str:
        """Query parameter selecting several objects, e.g. itemKey"""
        return self.value + "Key"

    @property
    def versioned(self) -> bool:
        """Kinds carrying their own object version"""
        return self in (
            ResourceKind.ITEM,
            ResourceKind.COLLECTION,
            ResourceKind.SEARCH,
            ResourceKind.SETTING,
        )


class OutputFormat(Enum):
    """Formats the negotiator knows how to decode."""

    JSON = "json"
    ATOM = "atom"
    KEYS = "keys"
    VERSIONS = "versions"
    RAW = "raw"

    @classmethod
    def coerce(cls, value: "OutputFormat | str") -> "OutputFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise error.UnsupportedFormat(reason=f"Unknown output format '{value}'")


class ReturnFormat(Enum):
    """Shapes an object facade operation can hand back to its caller."""

    RESPONSE = "response"
    RESPONSE_JSON = "responseJSON"
    KEY = "key"
    JSON = "json"
    JSON_DATA = "jsonData"
    ATOM = "atom"
    DATA = "data"
    CONTENT = "content"
    BATCH = "batch"
    VERSION = "version"

    @classmethod
    def coerce(
        cls,
        value: "ReturnFormat | str",
        allowed: Iterable["ReturnFormat"] | None = None,
    ) -> "ReturnFormat":
        if not isinstance(value, cls):
            try:
                value = cls(value)
            except ValueError:
                raise error.UnsupportedFormat(reason=f"Invalid result format '{value}'")
        if allowed is not None and value not in allowed:
            raise error.UnsupportedFormat(
                reason=f"Result format '{value.value}' is not supported here"
            )
        return value


@dataclass(frozen=True)
class BasicAuth:
    """Credentials for HTTP Basic authentication (root/privileged calls)."""

    username: str
    password: str

    def header(self) -> str:
        credentials = f"{self.username}:{self.password}"
        return "Basic " + base64.b64encode(credentials.encode()).decode()


@dataclass(frozen=True)
class Library:
    """
    A library scope: the objects of one user or one group.

    Attributes:
        type: "user" or "group"
        id: numeric user or group id
    """

    type: str
    id: int

    def __post_init__(self) -> None:
        if self.type not in ("user", "group"):
            raise ValueError(f"Unknown library type '{self.type}'")

    @classmethod
    def user(cls, user_id: int) -> "Library":
        return cls("user", int(user_id))

    @classmethod
    def group(cls, group_id: int) -> "Library":
        return cls("group", int(group_id))

    @property
    def prefix(self) -> str:
        return f"{self.type}s/{self.id}"

    def path(self, suffix: str = "") -> str:
        """Path of a resource relative to the API root"""
        if not suffix:
            return self.prefix
        return f"{self.prefix}/{suffix.lstrip('/')}"

    def __str__(self) -> str:
        return f"{self.type}:{self.id}"


@dataclass(frozen=True)
class APIRequest:
    """
    Represents an HTTP request to be made.

    This is a pure data structure with no I/O. It describes what request
    should be made, but does not make it.

    Attributes:
        method: HTTP method
        url: Full URL for the request, query string included
        headers: HTTP headers as dict
        body: Request body as bytes (optional)
    """

    method: HTTPMethod
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def with_header(self, name: str, value: str) -> "APIRequest":
        """Return new request with additional header."""
        new_headers = {**self.headers, name: value}
        return APIRequest(
            method=self.method,
            url=self.url,
            headers=new_headers,
            body=self.body,
        )

    def with_body(self, body: bytes) -> "APIRequest":
        """Return new request with body."""
        return APIRequest(
            method=self.method,
            url=self.url,
            headers=self.headers,
            body=body,
        )


@dataclass(frozen=True)
class APIResponse:
    """
    Represents an HTTP response received.

    Headers are always multi-valued: every header name maps to the list
    of values the server sent for it.

    Attributes:
        status: HTTP status code
        headers: HTTP headers, name -> list of values
        body: Response body as bytes
        url: URL the response was fetched from (for error reporting)
    """

    status: int
    headers: dict[str, list[str]]
    body: bytes
    url: str = ""

    @classmethod
    def build(
        cls,
        status: int,
        headers: Mapping[str, Any] | None = None,
        body: bytes | str = b"",
        url: str = "",
    ) -> "APIResponse":
        """Build a response, accepting single-valued headers and str bodies."""
        multi: dict[str, list[str]] = {}
        for name, value in (headers or {}).items():
            if isinstance(value, (list, tuple)):
                multi.setdefault(name, []).extend(str(v) for v in value)
            else:
                multi.setdefault(name, []).append(str(value))
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(status=status, headers=multi, body=body, url=url)

    def header_values(self, name: str) -> list[str]:
        lower_name = name.lower()
        values: list[str] = []
        for key, value in self.headers.items():
            if key.lower() == lower_name:
                values.extend(value)
        return values

    def header(self, name: str) -> str | None:
        """First value of a header (case-insensitive), None if absent."""
        values = self.header_values(name)
        return values[0] if values else None

    @property
    def ok(self) -> bool:
        """True if status indicates success (2xx)."""
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def content_type(self) -> str | None:
        """Media type without parameters, lower-cased."""
        value = self.header("Content-Type")
        if value is None:
            return None
        return value.split(";")[0].strip().lower()

    @property
    def last_modified_version(self) -> int | None:
        value = self.header("Last-Modified-Version")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            error.weirdness(f"Last-Modified-Version is not an integer: {value}")
            return None

    @property
    def reason(self) -> str:
        """Return a reason phrase for the status code."""
        reasons = {
            200: "OK",
            201: "Created",
            204: "No Content",
            300: "Multiple Choices",
            302: "Found",
            304: "Not Modified",
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            405: "Method Not Allowed",
            409: "Conflict",
            412: "Precondition Failed",
            413: "Request Entity Too Large",
            428: "Precondition Required",
            429: "Too Many Requests",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return reasons.get(self.status, "Unknown")


@dataclass
class AtomEntry:
    """
    Data of one Atom entry.

    Attributes:
        key: zapi:key of the entry, None when the feed carries it elsewhere
        version: zapi:version as text, None when absent
        content: text of <content>, or its serialised children
    """

    key: str | None
    version: str | None
    content: str


@dataclass
class BatchResult:
    """
    Outcome of one object in a multi-object write.

    success/unchanged results carry the key (and for success the new
    version and data when the server returns them); failed results carry
    code and message.
    """

    index: int
    key: str | None = None
    version: int | None = None
    data: dict[str, Any] | None = None
    code: int | None = None
    message: str | None = None


@dataclass
class BatchClassification:
    """
    Per-index partition of a batch write response.

    Every index of the submitted batch appears in exactly one of the
    three maps.
    """

    success: dict[int, BatchResult] = field(default_factory=dict)
    unchanged: dict[int, BatchResult] = field(default_factory=dict)
    failed: dict[int, BatchResult] = field(default_factory=dict)

    @property
    def advanced_library(self) -> bool:
        """The library version moved iff something was written."""
        return bool(self.success)

    def __len__(self) -> int:
        return len(self.success) + len(self.unchanged) + len(self.failed)

    def outcome(self, index: int) -> str:
        for name in ("success", "unchanged", "failed"):
            if index in getattr(self, name):
                return name
        raise KeyError(index)

    def success_keys(self) -> list[str]:
        return [self.success[i].key for i in sorted(self.success)]

    def unchanged_keys(self) -> list[str]:
        return [self.unchanged[i].key for i in sorted(self.unchanged)]

    def first_success_key(self) -> str:
        if not self.success:
            raise error.ResponseError(reason="No success keys found in response")
        return self.success[min(self.success)].key


@dataclass
class DeletedLog:
    """
    Contents of the deleted-object log since some library version.

    Attributes:
        collections, items, searches, settings: deleted keys or names
        tags: deleted tag names
    """

    collections: list[str] = field(default_factory=list)
    items: list[str] = field(default_factory=list)
    searches: list[str] = field(default_factory=list)
    settings: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def contains(self, kind: ResourceKind, key: str) -> bool:
        return key in getattr(self, kind.plural, [])

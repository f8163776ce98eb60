"""
Sans-I/O Zotero API protocol implementation.

This module provides protocol-level operations without any I/O.
It builds requests and decodes responses as pure data transformations.

The protocol layer is organized into:
- types: Core data structures (APIRequest, APIResponse, result types)
- operations: ZoteroProtocol, building requests with auth and version headers
- formats: Decoding of responses in the negotiated output format
- atom: Atom entry decoding (the only place XML is handled)
- versioning: Optimistic concurrency, conditioning writes on versions
- batch: Classification of multi-object write responses
- payloads: Per-resource payload builders

Example usage:

    from zotapi.config import ClientConfig
    from zotapi.protocol import ZoteroProtocol, OutputFormat, decode

    protocol = ZoteroProtocol(ClientConfig(api_key="..."))

    # Build a request (no I/O)
    request = protocol.user_request("GET", 1, "items", query={"format": "keys"})

    # Execute via your preferred I/O (sync, async, or mock)
    response = your_http_client.execute(request)

    # Decode response (no I/O)
    keys = decode(response, OutputFormat.KEYS)
"""

from .types import (
    # Enums
    HTTPMethod,
    OutputFormat,
    ResourceKind,
    ReturnFormat,
    # Request/Response
    APIRequest,
    APIResponse,
    BasicAuth,
    Library,
    # Result types
    AtomEntry,
    BatchClassification,
    BatchResult,
    DeletedLog,
)
from .atom import AtomDocument, parse_entry, parse_subcontent, render_entry
from .formats import (
    decode,
    decode_atom,
    decode_auto,
    decode_json,
    decode_keys,
    decode_raw,
    decode_versions,
    parse_link_header,
    total_results,
)
from .versioning import (
    ConditionForm,
    VersionController,
    WriteDecision,
    evaluate,
)
from .batch import classify, classify_response
from .payloads import (
    CollectionPayload,
    FulltextPayload,
    ItemPayload,
    SearchCondition,
    SearchPayload,
    SettingPayload,
    batch_body,
    generate_key,
)
from .operations import ZoteroProtocol

__all__ = [
    # Enums
    "HTTPMethod",
    "OutputFormat",
    "ResourceKind",
    "ReturnFormat",
    # Request/Response
    "APIRequest",
    "APIResponse",
    "BasicAuth",
    "Library",
    # Result types
    "AtomEntry",
    "BatchClassification",
    "BatchResult",
    "DeletedLog",
    # Atom
    "AtomDocument",
    "parse_entry",
    "parse_subcontent",
    "render_entry",
    # Formats
    "decode",
    "decode_atom",
    "decode_auto",
    "decode_json",
    "decode_keys",
    "decode_raw",
    "decode_versions",
    "parse_link_header",
    "total_results",
    # Versioning
    "ConditionForm",
    "VersionController",
    "WriteDecision",
    "evaluate",
    # Batch
    "classify",
    "classify_response",
    # Payloads
    "CollectionPayload",
    "FulltextPayload",
    "ItemPayload",
    "SearchCondition",
    "SearchPayload",
    "SettingPayload",
    "batch_body",
    "generate_key",
    # Protocol
    "ZoteroProtocol",
]

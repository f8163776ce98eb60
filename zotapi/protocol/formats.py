"""
Pure functions for decoding API responses.

Each OutputFormat maps to one decoder through a strategy table built at
import time.  All functions here take an APIResponse (or raw body) in
and return structured data out, with no side effects besides logging
the raw body of anything that can't be decoded.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Optional, Union

from zotapi.lib import error

from .atom import AtomDocument
from .types import APIResponse, OutputFormat

log = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
ATOM_CONTENT_TYPE = "application/atom+xml"
TEXT_CONTENT_TYPE = "text/plain"

Body = Union[APIResponse, bytes, str]


def _body(source: Body) -> bytes:
    if isinstance(source, APIResponse):
        return source.body
    if isinstance(source, str):
        return source.encode("utf-8")
    return source


def text_of(source: Body) -> str:
    return _body(source).decode("utf-8", errors="replace")


def decode_json(source: Body) -> Any:
    """
    Parse a body as JSON.

    Raises:
        ParseError: the body is not valid JSON (the raw body is logged)
    """
    text = text_of(source)
    try:
        return json.loads(text)
    except ValueError as err:
        log.error("JSON response could not be parsed: \n" + text)
        raise error.ParseError(
            url=getattr(source, "url", None), reason=text
        ) from err


def decode_atom(source: Body) -> AtomDocument:
    """Parse a body as an Atom feed or entry"""
    return AtomDocument.parse(_body(source))


def decode_keys(source: Body) -> list[str]:
    """
    Split a newline-separated key list.  Trailing blank lines and
    separators are tolerated.
    """
    return [line.strip() for line in text_of(source).split("\n") if line.strip()]


def decode_versions(source: Body) -> Dict[str, int]:
    """Parse a format=versions body, a JSON object key -> version"""
    data = decode_json(source)
    ## An empty PHP array is serialised as []
    if data == []:
        return {}
    if not isinstance(data, dict):
        log.error("versions response is not a JSON object: \n" + text_of(source))
        raise error.ParseError(reason=text_of(source))
    try:
        return {str(key): int(value) for key, value in data.items()}
    except (TypeError, ValueError) as err:
        log.error("versions response has non-integer versions: \n" + text_of(source))
        raise error.ParseError(reason=text_of(source)) from err


def decode_raw(source: Body) -> str:
    return text_of(source)


DECODERS: Dict[OutputFormat, Callable[[Body], Any]] = {
    OutputFormat.JSON: decode_json,
    OutputFormat.ATOM: decode_atom,
    OutputFormat.KEYS: decode_keys,
    OutputFormat.VERSIONS: decode_versions,
    OutputFormat.RAW: decode_raw,
}

## Content types a self-describing response may come back with
SELF_DESCRIBING: Dict[str, OutputFormat] = {
    JSON_CONTENT_TYPE: OutputFormat.JSON,
    ATOM_CONTENT_TYPE: OutputFormat.ATOM,
}


def decode(response: Body, fmt: Union[OutputFormat, str]) -> Any:
    """
    Decode a response in the requested format.

    Args:
        response: APIResponse or raw body
        fmt: OutputFormat (or its string value)

    Raises:
        UnsupportedFormat: fmt is not a known format
        ParseError: the body doesn't decode in that format
    """
    fmt = OutputFormat.coerce(fmt)
    return DECODERS[fmt](response)


def decode_auto(response: APIResponse) -> Any:
    """
    Decode a response according to its Content-Type.

    Raises:
        UnsupportedContentType: anything but JSON or Atom
    """
    content_type = response.content_type
    fmt = SELF_DESCRIBING.get(content_type or "")
    if fmt is None:
        log.error(f"Unknown content type '{content_type}': \n" + response.text)
        raise error.UnsupportedContentType(
            url=response.url,
            reason=f"Unknown content type '{content_type}': {response.text}",
            status=response.status,
        )
    return DECODERS[fmt](response)


_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')


def parse_link_header(response: APIResponse) -> Dict[str, str]:
    """Parse Link headers into {rel: url}"""
    links: Dict[str, str] = {}
    for header in response.header_values("Link"):
        for url, rel in _LINK_RE.findall(header):
            links[rel] = url
    return links


def total_results(response: APIResponse) -> Optional[int]:
    value = response.header("Total-Results")
    if value is None:
        return None
    return int(value)


def count_results(response: APIResponse) -> int:
    """
    Number of results in a listing, whatever the format it came back in.
    """
    content_type = response.content_type
    if content_type == JSON_CONTENT_TYPE:
        data = decode_json(response)
        return len(data)
    if content_type == TEXT_CONTENT_TYPE:
        return len(decode_keys(response))
    ## older API versions may send Atom with a wrong Content-Type
    if content_type == ATOM_CONTENT_TYPE or response.text.lstrip().startswith("<?xml"):
        return decode_atom(response).count_entries()
    if content_type == "application/x-bibtex":
        return response.text.count("\n@")
    raise error.UnsupportedContentType(
        url=response.url,
        reason=f"Unknown content type for counting results: {content_type}",
        status=response.status,
    )

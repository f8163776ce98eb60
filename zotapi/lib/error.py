#!/usr/bin/env python
import logging
import os
from collections import defaultdict
from typing import Dict
from typing import Iterable
from typing import Optional
from typing import Type

from zotapi import __version__

## Environmental variables prepended with "PYTHON_ZOTAPI" are used for debug purposes,
## environmental variables prepended with "ZOTAPI_" are for connection parameters
debug_dump_communication = bool(os.environ.get("PYTHON_ZOTAPI_COMMDUMP", False))
## one of DEBUG_PDB, DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("PYTHON_ZOTAPI_DEBUGMODE")
if not debugmode:
    if "dev" in __version__ or __version__ == "(unknown)":
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("zotapi")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)
else:
    log.setLevel(logging.WARNING)


def errmsg(r) -> str:
    """Utility for formatting an error response to an error string"""
    return "%s %s\n\n%s" % (r.status, r.reason, r.text)


def weirdness(*reasons) -> None:
    reason = " : ".join([str(x) for x in reasons])
    log.warning(f"Deviation from expectations found: {reason}")
    if debugmode == "DEBUG_PDB":
        log.error(f"Dropping into debugger due to {reason}")
        import pdb

        pdb.set_trace()


class ZoteroError(Exception):
    url: Optional[str] = None
    reason: str = "no reason"
    status: Optional[int] = None

    def __init__(
        self,
        url: Optional[str] = None,
        reason: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        if url:
            self.url = url
        if reason:
            self.reason = reason
        if status is not None:
            self.status = status

    def __str__(self) -> str:
        return "%s at '%s', reason %s" % (
            self.__class__.__name__,
            self.url,
            self.reason,
        )


class ParseError(ZoteroError):
    """
    The response body could not be decoded in the requested format.
    The reason property holds the raw body.
    """

    pass


class UnsupportedContentType(ParseError):
    """
    A self-describing response came back with a Content-Type we do not
    know how to decode.
    """

    pass


class UnsupportedFormat(ZoteroError):
    """
    An operation was asked for an output or return format outside its
    allow-list.
    """

    pass


class InvalidFieldError(ZoteroError):
    """
    A payload builder was given a field that is not part of the
    resource schema.  Raised before anything is sent.
    """

    pass


class TransportTimeout(ZoteroError):
    pass


class IndeterminateWrite(TransportTimeout):
    """
    A mutating request timed out.  The server may or may not have
    applied it; re-read before retrying.
    """

    pass


class ResponseError(ZoteroError):
    """
    The server answered with a status code the caller did not expect.
    The reason property holds the raw body, which usually carries the
    diagnostic message.
    """

    pass


class ValidationError(ResponseError):
    status = 400


class AuthorizationError(ResponseError):
    """
    The client encountered an HTTP 403 error and is passing it on
    to the user. The url property will contain the url in question,
    the reason property will contain the excuse the server sent.
    """

    status = 403


Forbidden = AuthorizationError


class NotFoundError(ResponseError):
    status = 404


class PreconditionFailed(ResponseError):
    """
    HTTP 412.  The version the write was conditioned on is stale.
    current_version is the library version reported by the server.
    """

    status = 412
    current_version: Optional[int] = None

    def __init__(
        self,
        url: Optional[str] = None,
        reason: Optional[str] = None,
        status: Optional[int] = None,
        current_version: Optional[int] = None,
    ) -> None:
        super().__init__(url, reason, status)
        self.current_version = current_version


class PayloadTooLarge(ResponseError):
    status = 413


class PreconditionRequired(ResponseError):
    """HTTP 428.  The write carried no version in either form."""

    status = 428


exception_by_status: Dict[int, Type[ResponseError]] = defaultdict(
    lambda: ResponseError
)
for _cls in (
    ValidationError,
    AuthorizationError,
    NotFoundError,
    PreconditionFailed,
    PayloadTooLarge,
    PreconditionRequired,
):
    exception_by_status[_cls.status] = _cls


def from_response(response) -> ResponseError:
    """Build the exception matching the status of a response"""
    cls = exception_by_status[response.status]
    if cls is PreconditionFailed:
        return PreconditionFailed(
            url=response.url,
            reason=response.text,
            status=response.status,
            current_version=response.last_modified_version,
        )
    return cls(url=response.url, reason=response.text, status=response.status)


def raise_for_status(response, expected: Optional[Iterable[int]] = None) -> None:
    """
    Raise the matching exception unless the response status is among
    the expected ones (2xx when nothing is given).
    """
    if expected is None:
        if 200 <= response.status < 300:
            return
    elif response.status in expected:
        return
    log.debug(errmsg(response))
    raise from_response(response)

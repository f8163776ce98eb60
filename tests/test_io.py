"""
Tests for the I/O shells, with the HTTP libraries mocked out.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
import requests
from multidict import CIMultiDict, CIMultiDictProxy
from requests.structures import CaseInsensitiveDict
from urllib3._collections import HTTPHeaderDict

from zotapi.io import AsyncIO, AsyncIOProtocol, SyncIO, SyncIOProtocol
from zotapi.lib import error
from zotapi.protocol import APIRequest, HTTPMethod


def make_requests_response(status=200, body=b"", headers=None, raw_headers=None):
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = Mock(headers=raw_headers) if raw_headers is not None else None
    return response


class TestSyncIO:
    def test_implements_protocol(self):
        assert isinstance(SyncIO(session=Mock()), SyncIOProtocol)

    def test_execute(self):
        session = Mock()
        session.request.return_value = make_requests_response(
            200, b'{"a": 1}', {"Content-Type": "application/json"}
        )
        io = SyncIO(session=session, timeout=5.0, verify=False)
        request = APIRequest(
            method=HTTPMethod.PUT,
            url="http://localhost/users/1/items/ABCD2345",
            headers={"If-Unmodified-Since-Version": "3"},
            body=b"{}",
        )

        response = io.execute(request)

        session.request.assert_called_once_with(
            method="PUT",
            url="http://localhost/users/1/items/ABCD2345",
            headers={"If-Unmodified-Since-Version": "3"},
            data=b"{}",
            timeout=5.0,
            verify=False,
            allow_redirects=False,
        )
        assert response.status == 200
        assert response.header("content-type") == "application/json"
        assert response.body == b'{"a": 1}'
        assert response.url == request.url

    def test_repeated_headers_kept_apart(self):
        raw = HTTPHeaderDict()
        raw.add("Link", '<a>; rel="next"')
        raw.add("Link", '<b>; rel="last"')
        session = Mock()
        session.request.return_value = make_requests_response(raw_headers=raw)

        response = SyncIO(session=session).execute(
            APIRequest(method=HTTPMethod.GET, url="http://localhost/")
        )

        assert response.header_values("Link") == ['<a>; rel="next"', '<b>; rel="last"']

    def test_read_timeout(self):
        session = Mock()
        session.request.side_effect = requests.exceptions.ReadTimeout()
        io = SyncIO(session=session)
        with pytest.raises(error.TransportTimeout) as exc:
            io.execute(APIRequest(method=HTTPMethod.GET, url="http://localhost/"))
        assert not isinstance(exc.value, error.IndeterminateWrite)

    def test_write_timeout_is_indeterminate(self):
        session = Mock()
        session.request.side_effect = requests.exceptions.Timeout()
        io = SyncIO(session=session)
        with pytest.raises(error.IndeterminateWrite):
            io.execute(APIRequest(method=HTTPMethod.POST, url="http://localhost/users/1/items"))

    def test_close_only_owned_session(self):
        session = Mock()
        SyncIO(session=session).close()
        session.close.assert_not_called()


def make_aiohttp_session(status=200, body=b"", headers=None, exception=None):
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)
    response.headers = CIMultiDictProxy(CIMultiDict(headers or []))

    context = MagicMock()
    if exception is not None:
        context.__aenter__ = AsyncMock(side_effect=exception)
    else:
        context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.request = Mock(return_value=context)
    session.close = AsyncMock()
    return session


class TestAsyncIO:
    def test_implements_protocol(self):
        assert isinstance(AsyncIO(session=MagicMock()), AsyncIOProtocol)

    @pytest.mark.asyncio
    async def test_execute(self):
        session = make_aiohttp_session(
            200,
            b"AAAAAAAA\n",
            [("Content-Type", "text/plain"), ("Link", "<a>"), ("Link", "<b>")],
        )
        io = AsyncIO(session=session)
        request = APIRequest(method=HTTPMethod.GET, url="http://localhost/users/1/items?format=keys")

        response = await io.execute(request)

        session.request.assert_called_once_with(
            method="GET",
            url=request.url,
            headers={},
            data=None,
            allow_redirects=False,
        )
        assert response.status == 200
        assert response.body == b"AAAAAAAA\n"
        assert response.header_values("Link") == ["<a>", "<b>"]
        assert response.content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        io = AsyncIO(session=make_aiohttp_session(exception=asyncio.TimeoutError()))
        with pytest.raises(error.TransportTimeout) as exc:
            await io.execute(APIRequest(method=HTTPMethod.GET, url="http://localhost/"))
        assert not isinstance(exc.value, error.IndeterminateWrite)

    @pytest.mark.asyncio
    async def test_write_timeout_is_indeterminate(self):
        io = AsyncIO(session=make_aiohttp_session(exception=asyncio.TimeoutError()))
        with pytest.raises(error.IndeterminateWrite) as exc:
            await io.execute(APIRequest(method=HTTPMethod.DELETE, url="http://localhost/users/1/items/A"))
        assert "re-read" in exc.value.reason

    @pytest.mark.asyncio
    async def test_close_only_owned_session(self):
        session = make_aiohttp_session()
        async with AsyncIO(session=session):
            pass
        session.close.assert_not_awaited()

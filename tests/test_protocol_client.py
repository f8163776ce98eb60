"""
Tests for the synchronous protocol client.

These tests verify the client works correctly, using mocked I/O.
"""

import json
from unittest.mock import Mock

import pytest

from zotapi import ClientConfig, SyncProtocolClient
from zotapi.lib import error
from zotapi.protocol import APIResponse, HTTPMethod, Library, ResourceKind

CONFIG = ClientConfig(api_url_prefix="https://api.example.org/", api_key="KEY", user_id=1)
LIBRARY = Library.user(1)


def make_client(*responses):
    io = Mock()
    io.execute = Mock(side_effect=list(responses))
    return SyncProtocolClient(CONFIG, io=io), io


def sent(io):
    return io.execute.call_args.args[0]


class TestSyncProtocolClient:
    """Test SyncProtocolClient."""

    def test_init(self):
        """Client should initialize protocol and I/O from the config."""
        client = SyncProtocolClient(ClientConfig(api_url_prefix="https://api.example.org/", timeout=60.0))
        try:
            assert client.protocol.base_url == "https://api.example.org/"
            assert client.io.timeout == 60.0
        finally:
            client.close()

    def test_context_manager(self):
        """Client should close its I/O on exit."""
        io = Mock()
        with SyncProtocolClient(CONFIG, io=io) as client:
            assert client.protocol is not None
        io.close.assert_called_once()

    def test_request_verbs(self):
        client, io = make_client(APIResponse.build(200), APIResponse.build(204))
        client.get("users/1/items", query={"limit": 1})
        assert sent(io).url == "https://api.example.org/users/1/items?limit=1"
        client.patch("users/1/items/AAAAAAAA", {"title": "A"}, headers={"If-Unmodified-Since-Version": "1"})
        request = sent(io)
        assert request.method is HTTPMethod.PATCH
        assert json.loads(request.body) == {"title": "A"}

    def test_library_version(self):
        client, io = make_client(APIResponse.build(200, {"Last-Modified-Version": "12"}, ""))
        assert client.library_version(LIBRARY) == 12

    def test_list_keys(self):
        client, io = make_client(APIResponse.build(200, {"Content-Type": "text/plain"}, "AAAAAAAA\nBBBBBBBB\n"))
        keys = client.list(LIBRARY, ResourceKind.COLLECTION, fmt="keys", since=3)
        assert keys == ["AAAAAAAA", "BBBBBBBB"]
        assert sent(io).url == "https://api.example.org/users/1/collections?since=3&format=keys"

    def test_get_object(self):
        client, io = make_client(
            APIResponse.build(200, {"Content-Type": "application/json"}, '{"key": "AAAAAAAA", "version": 2}')
        )
        assert client.get_object(LIBRARY, ResourceKind.ITEM, "AAAAAAAA")["version"] == 2

    def test_get_object_missing(self):
        client, io = make_client(APIResponse.build(404, {}, "Not found"))
        with pytest.raises(error.NotFoundError):
            client.get_object(LIBRARY, ResourceKind.ITEM, "AAAAAAAA")

    def test_write_objects(self):
        client, io = make_client(
            APIResponse.build(
                200,
                {"Content-Type": "application/json", "Last-Modified-Version": "5"},
                json.dumps({"success": {"0": "AAAAAAAA"}, "unchanged": {"1": "BBBBBBBB"}, "failed": {}}),
            )
        )
        result = client.write_objects(
            LIBRARY, ResourceKind.COLLECTION, [{"name": "A"}, {"key": "BBBBBBBB", "name": "B"}], version=4
        )
        assert result.success[0].version == 5
        assert result.unchanged_keys() == ["BBBBBBBB"]
        assert sent(io).headers["If-Unmodified-Since-Version"] == "4"

    def test_update_object(self):
        client, io = make_client(APIResponse.build(204, {"Last-Modified-Version": "6"}))
        assert client.update_object(LIBRARY, ResourceKind.ITEM, "AAAAAAAA", {"title": "A", "version": 5}) == 6
        assert "If-Unmodified-Since-Version" not in sent(io).headers

    def test_update_object_without_version(self):
        client, io = make_client()
        with pytest.raises(error.PreconditionRequired):
            client.update_object(LIBRARY, ResourceKind.ITEM, "AAAAAAAA", {"title": "A"})
        io.execute.assert_not_called()

    def test_delete_object_stale(self):
        client, io = make_client(APIResponse.build(412, {"Last-Modified-Version": "8"}, "modified"))
        with pytest.raises(error.PreconditionFailed) as exc:
            client.delete_object(LIBRARY, ResourceKind.ITEM, "AAAAAAAA", 3)
        assert exc.value.current_version == 8
        assert sent(io).headers["If-Unmodified-Since-Version"] == "3"

"""
Tests for AsyncZoteroClient and the object facades, with the I/O mocked.

Each test queues the responses the server would send and inspects the
requests the client built.
"""

import json
import tempfile
from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qs, urlsplit

import pytest

from zotapi import AsyncZoteroClient, ClientConfig
from zotapi.lib import error
from zotapi.protocol import (
    APIResponse,
    BatchClassification,
    CollectionPayload,
    FulltextPayload,
    HTTPMethod,
    OutputFormat,
    ReturnFormat,
)
from zotapi.protocol.versioning import ConditionForm

CONFIG = ClientConfig(
    api_url_prefix="http://localhost/",
    api_key="KEY",
    user_id=1,
    user_id2=2,
    root_username="root",
    root_password="pw",
)


def json_response(data, status=200, version=None, **headers):
    headers["Content-Type"] = "application/json"
    if version is not None:
        headers["Last-Modified-Version"] = str(version)
    return APIResponse.build(status, headers, json.dumps(data))


def empty_response(status=204, version=None, **headers):
    if version is not None:
        headers["Last-Modified-Version"] = str(version)
    return APIResponse.build(status, headers)


def make_client(*responses, config=CONFIG):
    io = Mock()
    io.execute = AsyncMock(side_effect=list(responses))
    io.close = AsyncMock()
    return AsyncZoteroClient(config, io=io), io


def sent(io, index=-1):
    """The request passed to io.execute (the last one by default)"""
    return io.execute.await_args_list[index].args[0]


def query_of(request):
    return {k: v[0] for k, v in parse_qs(urlsplit(request.url).query).items()}


def body_of(request):
    return json.loads(request.body)


class TestSession:
    @pytest.mark.asyncio
    async def test_bearer_auth_and_version_header(self):
        client, io = make_client(empty_response(200))
        await client.get("users/1/items")
        request = sent(io)
        assert request.url == "http://localhost/users/1/items"
        assert request.headers["Authorization"] == "Bearer KEY"
        assert request.headers["Zotero-API-Version"] == "3"

    @pytest.mark.asyncio
    async def test_derived_sessions_share_io(self):
        client, io = make_client(empty_response(200), empty_response(200))
        v2 = client.with_api_version(2).with_api_key("OTHER")
        assert v2.io is io
        assert client.config.api_version == 3

        await v2.user_get(1, "items")
        assert query_of(sent(io))["key"] == "OTHER"
        assert "Authorization" not in sent(io).headers

        await client.with_schema_version(9).get("items/new")
        assert sent(io).headers["Zotero-Schema-Version"] == "9"

    @pytest.mark.asyncio
    async def test_super_requests_use_basic_auth(self):
        client, io = make_client(empty_response(200))
        await client.super_get("users/1/groups")
        assert sent(io).headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_super_request_without_root_credentials(self):
        client, io = make_client(empty_response(200), config=ClientConfig(api_key="KEY"))
        await client.super_get("keys/KEY")
        assert "Authorization" not in sent(io).headers

    @pytest.mark.asyncio
    async def test_close_keeps_foreign_io(self):
        client, io = make_client()
        async with client:
            pass
        io.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_communication_dump(self, monkeypatch, tmp_path):
        monkeypatch.setattr(error, "debug_dump_communication", True)
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        client, io = make_client(json_response({"a": 1}))
        await client.get("users/1/items")
        dumps = list(tmp_path.glob("zotapicomm*"))
        assert len(dumps) == 1
        content = dumps[0].read_bytes()
        assert b"GET http://localhost/users/1/items" in content
        assert b'{"a": 1}' in content


class TestLibrary:
    @pytest.mark.asyncio
    async def test_library_scopes(self):
        client, io = make_client()
        assert client.library().library.prefix == "users/1"
        assert client.library(group_id=5).library.prefix == "groups/5"
        assert client.library(user_id=2).library.prefix == "users/2"
        with pytest.raises(ValueError):
            AsyncZoteroClient(ClientConfig(), io=io).library()

    @pytest.mark.asyncio
    async def test_library_version(self):
        client, io = make_client(
            APIResponse.build(200, {"Last-Modified-Version": "14", "Content-Type": "text/plain"}, "")
        )
        assert await client.library().library_version() == 14
        assert query_of(sent(io)) == {"format": "keys", "limit": "1"}

    @pytest.mark.asyncio
    async def test_library_version_missing(self):
        client, io = make_client(empty_response(200))
        with pytest.raises(error.ResponseError):
            await client.library().library_version()

    @pytest.mark.asyncio
    async def test_deleted_since_passes_both_parameters(self):
        client, io = make_client(
            json_response({"items": ["AAAAAAAA"], "collections": [], "tags": ["a"]}),
            json_response([]),
        )
        deleted = await client.library().deleted_since(since=3, newer=4)
        assert query_of(sent(io)) == {"since": "3", "newer": "4"}
        assert deleted.items == ["AAAAAAAA"]
        assert deleted.tags == ["a"]

    @pytest.mark.asyncio
    async def test_clear(self):
        client, io = make_client(empty_response(204))
        await client.group_clear(7)
        request = sent(io)
        assert request.method is HTTPMethod.POST
        assert request.url == "http://localhost/groups/7/clear"
        assert request.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_clear_failure(self):
        client, io = make_client(empty_response(403))
        with pytest.raises(error.AuthorizationError):
            await client.user_clear(1)


class TestCreate:
    BATCH = {
        "successful": {"0": {"key": "AAAAAAAA", "version": 3, "data": {"name": "A"}}},
        "success": {"0": "AAAAAAAA"},
        "unchanged": {},
        "failed": {},
    }

    @pytest.mark.asyncio
    async def test_invalid_format_sends_nothing(self):
        client, io = make_client()
        with pytest.raises(error.UnsupportedFormat):
            await client.library().collections.create(CollectionPayload("A"), fmt="version")
        with pytest.raises(error.UnsupportedFormat):
            await client.library().collections.create(CollectionPayload("A"), fmt="bogus")
        io.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_key(self):
        client, io = make_client(json_response(self.BATCH, version=3))
        key = await client.library().collections.create(CollectionPayload("A"), fmt="key")
        assert key == "AAAAAAAA"
        request = sent(io)
        assert request.url == "http://localhost/users/1/collections"
        assert body_of(request) == [{"name": "A", "parentCollection": False, "relations": {}}]

    @pytest.mark.asyncio
    async def test_create_v2_wraps_body(self):
        client, io = make_client(json_response({"success": {"0": "AAAAAAAA"}}, version=3))
        client = client.with_api_version(2)
        await client.library().collections.create({"name": "A"}, fmt=ReturnFormat.RESPONSE)
        assert body_of(sent(io)) == {"collections": [{"name": "A"}]}

    @pytest.mark.asyncio
    async def test_create_batch(self):
        client, io = make_client(json_response(self.BATCH, version=3))
        result = await client.library().searches.create([{"name": "S"}], fmt=ReturnFormat.BATCH)
        assert isinstance(result, BatchClassification)
        assert result.success[0].version == 3

    @pytest.mark.asyncio
    async def test_create_json_fetches_object(self):
        client, io = make_client(
            json_response(self.BATCH, version=3),
            json_response({"key": "AAAAAAAA", "version": 3, "data": {"name": "A"}}),
        )
        data = await client.library().collections.create({"name": "A"}, fmt="jsonData")
        assert data == {"name": "A"}
        assert sent(io).url == "http://localhost/users/1/collections/AAAAAAAA?format=json"

    @pytest.mark.asyncio
    async def test_single_object_format_needs_one_success(self):
        failed = {"success": {}, "unchanged": {}, "failed": {"0": {"code": 400, "message": "bad"}}}
        client, io = make_client(json_response(failed, version=3))
        with pytest.raises(error.ResponseError):
            await client.library().collections.create({"name": "A"}, fmt="key")

    @pytest.mark.asyncio
    async def test_create_request_failure(self):
        client, io = make_client(APIResponse.build(413, {}, "Request too large"))
        with pytest.raises(error.PayloadTooLarge):
            await client.library().collections.create({"name": "A"})

    @pytest.mark.asyncio
    async def test_create_with_key(self):
        client, io = make_client(empty_response(204, version=8))
        version = await client.library().collections.create_with_key("AAAAAAAA", {"name": "A"})
        assert version == 8
        request = sent(io)
        assert request.method is HTTPMethod.PUT
        assert request.headers["If-Unmodified-Since-Version"] == "0"


class TestReadAndWrite:
    @pytest.mark.asyncio
    async def test_get_multiple_keys(self):
        client, io = make_client(json_response([]))
        await client.library().items.get(["AAAAAAAA", "BBBBBBBB"], OutputFormat.JSON)
        assert query_of(sent(io)) == {
            "itemKey": "AAAAAAAA,BBBBBBBB",
            "order": "itemKeyList",
            "format": "json",
        }

    @pytest.mark.asyncio
    async def test_get_not_modified(self):
        client, io = make_client(empty_response(304, version=5))
        assert await client.library().items.get("AAAAAAAA", if_modified_since=5) is None
        assert sent(io).headers["If-Modified-Since-Version"] == "5"

    @pytest.mark.asyncio
    async def test_get_atom(self):
        atom = (
            b'<entry xmlns="http://www.w3.org/2005/Atom" xmlns:zapi="http://zotero.org/ns/api">'
            b'<zapi:key>AAAAAAAA</zapi:key><content type="application/json">{}</content></entry>'
        )
        client, io = make_client(APIResponse.build(200, {"Content-Type": "application/atom+xml"}, atom))
        doc = await client.library().items.get("AAAAAAAA", "atom")
        assert doc.entry().key == "AAAAAAAA"
        assert query_of(sent(io)) == {"format": "atom", "content": "json"}

    @pytest.mark.asyncio
    async def test_get_missing(self):
        client, io = make_client(APIResponse.build(404, {}, "Item not found"))
        with pytest.raises(error.NotFoundError):
            await client.library().items.get("AAAAAAAA")

    @pytest.mark.asyncio
    async def test_versions(self):
        client, io = make_client(json_response({"AAAAAAAA": 4}))
        versions = await client.library().collections.versions(since=2)
        assert versions == {"AAAAAAAA": 4}
        assert query_of(sent(io)) == {"since": "2", "format": "versions"}

    @pytest.mark.asyncio
    async def test_search_top_and_trash(self):
        client, io = make_client(json_response([]), APIResponse.build(200, {}, "A\n"))
        await client.library().items.search({"q": "x"}, top=True, limit=5)
        assert urlsplit(sent(io).url).path == "/users/1/items/top"
        assert await client.library().items.search(trash=True, fmt="keys") == ["A"]
        assert urlsplit(sent(io).url).path == "/users/1/items/trash"

    @pytest.mark.asyncio
    async def test_search_keeps_query_parameters(self):
        client, io = make_client(json_response([]), json_response([]))
        await client.library().collections.search({"limit": 1, "since": 0})
        assert query_of(sent(io)) == {"limit": "1", "since": "0", "format": "json"}
        await client.library().collections.search({"limit": 1, "since": 0}, limit=3)
        assert query_of(sent(io)) == {"limit": "3", "since": "0", "format": "json"}

    @pytest.mark.asyncio
    async def test_update_without_version_sends_nothing(self):
        client, io = make_client()
        with pytest.raises(error.PreconditionRequired):
            await client.library().items.update("AAAAAAAA", {"title": "A"})
        io.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconditional_update_reaches_server(self):
        client, io = make_client(APIResponse.build(428, {}, "If-Unmodified-Since-Version not provided"))
        with pytest.raises(error.PreconditionRequired):
            await client.library().items.update("AAAAAAAA", {"title": "A"}, unconditional=True)
        assert "If-Unmodified-Since-Version" not in sent(io).headers

    @pytest.mark.asyncio
    async def test_patch_property_form(self):
        client, io = make_client(empty_response(204, version=6))
        version = await client.library().items.patch(
            "AAAAAAAA", {"title": "B"}, version=5, form=ConditionForm.PROPERTY
        )
        assert version == 6
        request = sent(io)
        assert request.method is HTTPMethod.PATCH
        assert body_of(request) == {"title": "B", "version": 5}
        assert "If-Unmodified-Since-Version" not in request.headers

    @pytest.mark.asyncio
    async def test_stale_write(self):
        client, io = make_client(APIResponse.build(412, {"Last-Modified-Version": "9"}, "Item has been modified"))
        with pytest.raises(error.PreconditionFailed) as exc:
            await client.library().items.update("AAAAAAAA", {"title": "A"}, version=3)
        assert exc.value.current_version == 9

    @pytest.mark.asyncio
    async def test_write_response_format(self):
        client, io = make_client(empty_response(204, version=6))
        response = await client.library().items.trash("AAAAAAAA", version=5, fmt="response")
        assert response.status == 204
        assert body_of(sent(io)) == {"deleted": True}

    @pytest.mark.asyncio
    async def test_update_batch(self):
        client, io = make_client(
            json_response({"success": {}, "unchanged": {"0": "AAAAAAAA"}, "failed": {}}, version=4)
        )
        result = await client.library().collections.update_batch(
            [{"key": "AAAAAAAA", "name": "A"}], version=4
        )
        assert result.unchanged_keys() == ["AAAAAAAA"]
        assert sent(io).headers["If-Unmodified-Since-Version"] == "4"

    @pytest.mark.asyncio
    async def test_update_batch_with_new_object(self):
        client, io = make_client(
            json_response(
                {"success": {"0": "AAAAAAAA", "1": "BBBBBBBB"}, "unchanged": {}, "failed": {}},
                version=5,
            )
        )
        result = await client.library().collections.update_batch(
            [{"key": "AAAAAAAA", "version": 4, "name": "A"}, {"name": "New"}]
        )
        assert result.success_keys() == ["AAAAAAAA", "BBBBBBBB"]
        assert "If-Unmodified-Since-Version" not in sent(io).headers

    @pytest.mark.asyncio
    async def test_update_batch_keyed_object_needs_version(self):
        client, io = make_client()
        with pytest.raises(error.PreconditionRequired):
            await client.library().collections.update_batch(
                [{"key": "AAAAAAAA", "name": "A"}, {"name": "New"}]
            )
        io.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_multiple(self):
        client, io = make_client(empty_response(204, version=7))
        assert await client.library().searches.delete(["AAAAAAAA", "BBBBBBBB"], version=6) == 7
        request = sent(io)
        assert request.method is HTTPMethod.DELETE
        assert query_of(request) == {"searchKey": "AAAAAAAA,BBBBBBBB"}

    @pytest.mark.asyncio
    async def test_delete_needs_version(self):
        client, io = make_client()
        with pytest.raises(error.PreconditionRequired):
            await client.library().items.delete("AAAAAAAA")


class TestItems:
    ANNOTATION_TEMPLATE = {
        "itemType": "annotation",
        "parentItem": "",
        "annotationType": "highlight",
        "annotationComment": "",
        "tags": [],
        "relations": {},
    }

    @pytest.mark.asyncio
    async def test_template(self):
        client, io = make_client(json_response({"itemType": "attachment", "linkMode": "linked_url"}))
        await client.library().items.template("attachment", link_mode="linked_url")
        request = sent(io)
        assert urlsplit(request.url).path == "/items/new"
        assert query_of(request) == {"itemType": "attachment", "linkMode": "linked_url"}

    @pytest.mark.asyncio
    async def test_template_failure(self):
        client, io = make_client(APIResponse.build(400, {}, "Invalid item type 'nonexistent'"))
        with pytest.raises(error.ValidationError) as exc:
            await client.library().items.template("nonexistent")
        assert "nonexistent" in exc.value.reason

    @pytest.mark.asyncio
    async def test_new_rejects_unknown_field(self):
        client, io = make_client(json_response({"itemType": "book", "title": ""}))
        with pytest.raises(error.InvalidFieldError):
            await client.library().items.new("book", {"invalidName": "x"})
        assert io.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_create_annotation(self):
        client, io = make_client(
            json_response(self.ANNOTATION_TEMPLATE),
            json_response({"success": {"0": "CCCCCCCC"}}, version=2),
        )
        key = await client.library().items.create_annotation(
            "highlight", "BBBBBBBB", {"annotationComment": "note", "other": "ignored"}, fmt="key"
        )
        assert key == "CCCCCCCC"
        assert query_of(sent(io, 0)) == {"itemType": "annotation", "annotationType": "highlight"}
        (item,) = body_of(sent(io))
        assert item["parentItem"] == "BBBBBBBB"
        assert item["annotationColor"] == "#ff8c19"
        assert item["annotationSortIndex"] == "00015|002431|00000"
        assert item["annotationText"] == "This is highlighted text."
        assert item["annotationComment"] == "note"
        assert "other" not in item

    @pytest.mark.asyncio
    async def test_create_note_with_parent(self):
        client, io = make_client(
            json_response({"itemType": "note", "note": "", "collections": []}),
            json_response({"success": {"0": "CCCCCCCC"}}, version=2),
        )
        await client.library().items.create_note("<p>x</p>", parent_key="BBBBBBBB")
        assert body_of(sent(io)) == [
            {"itemType": "note", "note": "<p>x</p>", "collections": [], "parentItem": "BBBBBBBB"}
        ]

    @pytest.mark.asyncio
    async def test_put_fulltext(self):
        client, io = make_client(empty_response(204, version=3), empty_response(204, version=4))
        items = client.library().items
        assert await items.put_fulltext("AAAAAAAA", FulltextPayload("text", indexed_chars=4, total_chars=4)) == 3
        request = sent(io)
        assert request.url == "http://localhost/users/1/items/AAAAAAAA/fulltext"
        assert body_of(request) == {"content": "text", "indexedChars": 4, "totalChars": 4}
        assert "If-Unmodified-Since-Version" not in request.headers

        await items.put_fulltext("AAAAAAAA", {"content": "x"}, version=3)
        assert sent(io).headers["If-Unmodified-Since-Version"] == "3"

    @pytest.mark.asyncio
    async def test_fulltext_versions(self):
        client, io = make_client(json_response({"AAAAAAAA": 2}))
        assert await client.library().items.fulltext_versions(since=1) == {"AAAAAAAA": 2}
        assert query_of(sent(io)) == {"since": "1"}


class TestSettingsAndTags:
    @pytest.mark.asyncio
    async def test_put_setting(self):
        client, io = make_client(empty_response(204, version=2))
        assert await client.library().settings.put("tagColors", [{"name": "a"}], version=0) == 2
        request = sent(io)
        assert request.url == "http://localhost/users/1/settings/tagColors"
        assert body_of(request) == {"value": [{"name": "a"}]}
        assert request.headers["If-Unmodified-Since-Version"] == "0"

    @pytest.mark.asyncio
    async def test_post_many(self):
        client, io = make_client(empty_response(204, version=5))
        await client.library().settings.post_many(
            {"tagColors": [], "feeds": {"value": {}}}, version=4
        )
        assert body_of(sent(io)) == {"tagColors": {"value": []}, "feeds": {"value": {}}}

    @pytest.mark.asyncio
    async def test_get_setting_not_modified(self):
        client, io = make_client(empty_response(304))
        assert await client.library().settings.get("tagColors", if_modified_since=3) is None

    @pytest.mark.asyncio
    async def test_get_setting_with_format(self):
        client, io = make_client(json_response({"value": {}, "version": 2}))
        setting = await client.library().settings.get("tagColors", "json")
        assert setting == {"value": {}, "version": 2}
        assert query_of(sent(io)) == {"format": "json"}
        assert urlsplit(sent(io).url).path == "/users/1/settings/tagColors"

    @pytest.mark.asyncio
    async def test_delete_tags(self):
        client, io = make_client(empty_response(204, version=8))
        assert await client.library().tags.delete(["a", "b"], version=7) == 8
        assert query_of(sent(io)) == {"tag": "a || b"}

    @pytest.mark.asyncio
    async def test_delete_tags_needs_version(self):
        client, io = make_client()
        with pytest.raises(error.PreconditionRequired):
            await client.library().tags.delete(["a"])

    @pytest.mark.asyncio
    async def test_list_tags(self):
        client, io = make_client(json_response([{"tag": "a"}]))
        assert await client.library().tags.list(since=1, newer=2) == [{"tag": "a"}]
        assert query_of(sent(io)) == {"since": "1", "newer": "2", "format": "json"}

    @pytest.mark.asyncio
    async def test_list_tags_keeps_query_parameters(self):
        client, io = make_client(json_response([]))
        await client.library().tags.list({"since": 4, "limit": 2})
        assert query_of(sent(io)) == {"since": "4", "limit": "2", "format": "json"}


class TestAdministration:
    @pytest.mark.asyncio
    async def test_create_group(self):
        client, io = make_client(
            APIResponse.build(201, {"Location": "http://localhost/groups/123"}),
            empty_response(200),
        )
        group_id = await client.create_group(1, "Private", name="G", members=[2])
        assert group_id == 123
        create = sent(io, 0)
        assert create.url == "http://localhost/groups"
        assert b'name="G"' in create.body
        members = sent(io)
        assert members.url == "http://localhost/groups/123/users"
        assert members.body == b'<user id="2" role="member"/>'

    @pytest.mark.asyncio
    async def test_create_group_without_location(self):
        client, io = make_client(APIResponse.build(201, {}))
        with pytest.raises(error.ResponseError):
            await client.create_group(1, "PublicOpen")

    @pytest.mark.asyncio
    async def test_create_group_bad_format(self):
        client, io = make_client()
        with pytest.raises(error.UnsupportedFormat):
            await client.create_group(1, "PublicOpen", fmt="json")

    @pytest.mark.asyncio
    async def test_delete_group(self):
        client, io = make_client(empty_response(204))
        await client.delete_group(5)
        assert sent(io).method is HTTPMethod.DELETE

    @pytest.mark.asyncio
    async def test_reset_key(self):
        key_data = {"key": "KEY", "access": {"user": {"library": True}, "groups": {"all": {"library": True}}}}
        client, io = make_client(json_response(key_data), empty_response(200))
        await client.reset_key("KEY")
        request = sent(io)
        assert request.method is HTTPMethod.PUT
        assert body_of(request)["access"] == {
            "user": {"library": False, "files": False, "notes": False, "write": False},
            "groups": {},
        }

    @pytest.mark.asyncio
    async def test_key_permissions(self):
        client, io = make_client(
            json_response({"access": {}}), empty_response(200),
            json_response({"access": {}}), empty_response(200),
        )
        await client.set_key_user_permission("KEY", "notes", True)
        assert body_of(sent(io))["access"]["user"] == {"notes": True}
        await client.set_key_group_permission("KEY", 12, "write")
        assert body_of(sent(io))["access"]["groups"] == {"12": {"write": True}}

    @pytest.mark.asyncio
    async def test_unknown_user_permission(self):
        client, io = make_client()
        with pytest.raises(ValueError):
            await client.set_key_user_permission("KEY", "admin", True)

"""
Preparation of a test server.

setup_environment() wipes the two test users, obtains their API keys
and makes sure the expected set of groups exists:

* a PublicOpen group owned by the first user, readable by all
* a PublicClosed group owned by the first user, readable by members
* a Private group owned by the first user ("Private Test Group"), with
  the second user as member
* a Private group owned by the second user

Any other group of the first user is deleted, and the kept groups are
cleared.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from zotapi.client import AsyncZoteroClient
from zotapi.lib import error
from zotapi.protocol import formats

log = logging.getLogger(__name__)

PRIVATE_GROUP_NAME = "Private Test Group"


@dataclass(frozen=True)
class TestEnvironment:
    """
    What the tests need to know about the prepared server.

    client is authenticated as the first user with API version 3.
    """

    __test__ = False

    client: AsyncZoteroClient
    user1_api_key: str
    user2_api_key: str
    owned_public_group_id: int
    owned_public_no_anonymous_group_id: int
    owned_private_group_id: int
    owned_private_group_id2: int
    owned_private_group_name: str = PRIVATE_GROUP_NAME
    num_owned_groups: int = 3
    num_public_groups: int = 2

    def client_for_user2(self) -> AsyncZoteroClient:
        return self.client.with_api_key(self.user2_api_key)


async def wipe_users(client: AsyncZoteroClient) -> Dict[str, str]:
    """
    Reset the test users on the server.

    Returns:
        {"user1": api key, "user2": api key}
    """
    config = client.config
    response = await client.super_post(
        "test/setup", " ", query={"u": config.user_id, "u2": config.user_id2}
    )
    try:
        data = formats.decode_json(response)
        keys = {"user1": data["user1"]["apiKey"], "user2": data["user2"]["apiKey"]}
    except (error.ParseError, KeyError, TypeError) as err:
        log.error(f"Invalid test setup response, status {response.status}: \n{response.text}")
        raise error.ResponseError(
            url=response.url,
            reason=f"Invalid test setup response: {response.text}",
            status=response.status,
        ) from err
    return keys


def _classify_groups(
    groups: List[Dict[str, Any]], user_id: int, user_id2: Optional[int]
) -> "tuple[Dict[str, int], List[int]]":
    found: Dict[str, int] = {}
    to_delete: List[int] = []
    for group in groups:
        data = group.get("data", group)
        group_id = data["id"]
        group_type = data.get("type")
        owner = data.get("owner")
        reading = data.get("libraryReading")

        if "public" not in found and group_type == "PublicOpen" and owner == user_id and reading == "all":
            found["public"] = group_id
        elif (
            "public_closed" not in found
            and group_type == "PublicClosed"
            and owner == user_id
            and reading == "members"
        ):
            found["public_closed"] = group_id
        elif (
            "private" not in found
            and group_type == "Private"
            and owner == user_id
            and data.get("name") == PRIVATE_GROUP_NAME
        ):
            found["private"] = group_id
        elif "private2" not in found and group_type == "Private" and owner == user_id2:
            found["private2"] = group_id
        else:
            to_delete.append(group_id)
    return found, to_delete


async def setup_groups(client: AsyncZoteroClient) -> Dict[str, int]:
    """
    Reuse or create the test groups, delete the others, clear the kept
    ones.

    Returns:
        Group ids under "public", "public_closed", "private", "private2"
    """
    user_id = client.config.user_id
    user_id2 = client.config.user_id2
    response = await client.super_get(f"users/{user_id}/groups")
    error.raise_for_status(response, (200,))
    groups = formats.decode_json(response)

    found, to_delete = _classify_groups(groups, user_id, user_id2)
    kept = list(found.values())

    if "public" not in found:
        found["public"] = await client.create_group(
            user_id, "PublicOpen", library_reading="all"
        )
    if "public_closed" not in found:
        found["public_closed"] = await client.create_group(
            user_id, "PublicClosed", library_reading="members"
        )
    if "private" not in found:
        found["private"] = await client.create_group(
            user_id,
            "Private",
            name=PRIVATE_GROUP_NAME,
            library_reading="members",
            file_editing="members",
            members=[user_id2] if user_id2 is not None else None,
        )
    if "private2" not in found and user_id2 is not None:
        found["private2"] = await client.create_group(
            user_id2, "Private", library_reading="members", file_editing="members"
        )

    for group_id in to_delete:
        await client.delete_group(group_id)
    for group_id in kept:
        await client.group_clear(group_id)
    return found


async def setup_environment(client: AsyncZoteroClient) -> TestEnvironment:
    """
    Prepare the server and return a client for the first user.

    Args:
        client: A client configured with the API URL, both user ids and
            the root credentials
    """
    keys = await wipe_users(client)
    client = client.with_api_key(keys["user1"]).with_api_version(3)
    groups = await setup_groups(client)
    log.info(f"test environment ready: groups {groups}")
    return TestEnvironment(
        client=client,
        user1_api_key=keys["user1"],
        user2_api_key=keys["user2"],
        owned_public_group_id=groups["public"],
        owned_public_no_anonymous_group_id=groups["public_closed"],
        owned_private_group_id=groups["private"],
        owned_private_group_id2=groups.get("private2", 0),
    )

"""
Per-resource payload builders.

A payload is built from the fields its resource actually has and
serialised when the request is built, so an unknown field is caught
here (InvalidFieldError) instead of by the server's validation.

Item fields depend on the item type, so ItemPayload takes its schema
from the server's template (``items/new?itemType=...``).
"""

import copy
import json
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from zotapi.lib import error

from .types import ResourceKind

KEY_CHARS = "23456789ABCDEFGHIJKLMNPQRSTUVWXYZ"
KEY_LENGTH = 8

## Metadata every object may carry besides its schema fields
COMMON_FIELDS = frozenset(("key", "version", "deleted", "relations"))
## Item types that may have a parent item
CHILD_ITEM_TYPES = frozenset(("note", "attachment", "annotation"))

ANNOTATION_COLOR = "#ff8c19"
ANNOTATION_SORT_INDEX = "00015|002431|00000"
ANNOTATION_POSITION = {"pageIndex": 123, "rects": [[314.4, 412.8, 556.2, 609.6]]}
HIGHLIGHT_TEXT = "This is highlighted text."


def generate_key() -> str:
    """A random object key, as clients create them for PUT-creates"""
    return "".join(random.choice(KEY_CHARS) for _ in range(KEY_LENGTH))


def is_valid_key(key: Any) -> bool:
    return (
        isinstance(key, str)
        and len(key) == KEY_LENGTH
        and all(c in KEY_CHARS for c in key)
    )


class Payload:
    """
    Base for the builders.  Subclasses define ``kind`` and ``to_json()``.
    """

    kind: ResourceKind

    def to_json(self, api_version: Optional[int] = 3) -> Dict[str, Any]:
        raise NotImplementedError

    def serialize(self, api_version: Optional[int] = 3) -> str:
        return json.dumps(self.to_json(api_version))


class ItemPayload(Payload):
    """
    An item, restricted to the fields of its item type.

    Example:
        template = await client.library().items.template("book")
        item = ItemPayload.from_template(template, title="A")
        item.set("nonexistent", 1)  # raises InvalidFieldError
    """

    kind = ResourceKind.ITEM

    def __init__(self, fields: Dict[str, Any], allowed: Optional[Iterable[str]] = None) -> None:
        self._fields: Dict[str, Any] = {}
        self._allowed = frozenset(allowed if allowed is not None else fields) | COMMON_FIELDS
        if fields.get("itemType") in CHILD_ITEM_TYPES:
            self._allowed |= {"parentItem"}
        for name, value in fields.items():
            self.set(name, value)

    @classmethod
    def from_template(cls, template: Dict[str, Any], **values) -> "ItemPayload":
        payload = cls(copy.deepcopy(template))
        for name, value in values.items():
            payload.set(name, value)
        return payload

    @property
    def item_type(self) -> Optional[str]:
        return self._fields.get("itemType")

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def set(self, name: str, value: Any) -> "ItemPayload":
        if name not in self._allowed:
            raise error.InvalidFieldError(
                reason=f"'{name}' is not a valid field for item type '{self.item_type}'"
            )
        if name == "collections" and value and self._fields.get("parentItem"):
            raise error.InvalidFieldError(reason="Child items cannot be assigned to collections")
        if name == "parentItem" and value and self._fields.get("collections"):
            raise error.InvalidFieldError(reason="Child items cannot be assigned to collections")
        self._fields[name] = value
        return self

    def update(self, values: Dict[str, Any]) -> "ItemPayload":
        for name, value in values.items():
            self.set(name, value)
        return self

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def to_json(self, api_version: Optional[int] = 3) -> Dict[str, Any]:
        data = {k: copy.deepcopy(v) for k, v in self._fields.items() if v is not None}
        if api_version and api_version < 3 and "version" in data:
            data["itemVersion"] = data.pop("version")
        return data

    def __repr__(self) -> str:
        return f"ItemPayload({self._fields!r})"


@dataclass
class CollectionPayload(Payload):
    name: str
    parent_collection: Any = False
    relations: Dict[str, Any] = field(default_factory=dict)
    deleted: Optional[bool] = None
    key: Optional[str] = None
    version: Optional[int] = None

    kind = ResourceKind.COLLECTION

    def to_json(self, api_version: Optional[int] = 3) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "parentCollection": self.parent_collection,
            "relations": dict(self.relations),
        }
        if self.deleted is not None:
            data["deleted"] = self.deleted
        if self.key is not None:
            data["key"] = self.key
        if self.version is not None:
            vname = "collectionVersion" if api_version and api_version < 3 else "version"
            data[vname] = self.version
        return data


@dataclass
class SearchCondition:
    condition: str
    operator: str
    value: str

    def to_json(self) -> Dict[str, str]:
        return {"condition": self.condition, "operator": self.operator, "value": self.value}


def default_conditions() -> List[SearchCondition]:
    return [SearchCondition("title", "contains", "test")]


@dataclass
class SearchPayload(Payload):
    name: str
    conditions: List[SearchCondition] = field(default_factory=default_conditions)
    key: Optional[str] = None
    version: Optional[int] = None

    kind = ResourceKind.SEARCH

    def to_json(self, api_version: Optional[int] = 3) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "conditions": [c.to_json() for c in self.conditions],
        }
        if self.key is not None:
            data["key"] = self.key
        if self.version is not None:
            vname = "searchVersion" if api_version and api_version < 3 else "version"
            data[vname] = self.version
        return data


@dataclass
class SettingPayload(Payload):
    value: Any
    version: Optional[int] = None

    kind = ResourceKind.SETTING

    def to_json(self, api_version: Optional[int] = 3) -> Dict[str, Any]:
        data: Dict[str, Any] = {"value": self.value}
        if self.version is not None:
            data["version"] = self.version
        return data


@dataclass
class FulltextPayload:
    """Full-text content of an attachment, with indexing statistics"""

    content: str
    indexed_chars: Optional[int] = None
    total_chars: Optional[int] = None
    indexed_pages: Optional[int] = None
    total_pages: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"content": self.content}
        for name, value in (
            ("indexedChars", self.indexed_chars),
            ("totalChars", self.total_chars),
            ("indexedPages", self.indexed_pages),
            ("totalPages", self.total_pages),
        ):
            if value is not None:
                data[name] = value
        return data


def annotation_defaults(annotation_type: str) -> Dict[str, Any]:
    """Fields filled into an annotation template before it is created"""
    data: Dict[str, Any] = {
        "annotationColor": ANNOTATION_COLOR,
        "annotationSortIndex": ANNOTATION_SORT_INDEX,
        "annotationPosition": json.dumps(ANNOTATION_POSITION, separators=(",", ":")),
    }
    if annotation_type == "highlight":
        data["annotationText"] = HIGHLIGHT_TEXT
    return data


def to_json(payload: Any, api_version: Optional[int] = 3) -> Any:
    if isinstance(payload, Payload):
        return payload.to_json(api_version)
    return payload


def batch_body(
    payloads: Iterable[Any],
    kind: ResourceKind,
    api_version: Optional[int] = 3,
) -> Any:
    """
    Body of a multi-object write: a JSON array from API version 3 on,
    an object keyed by the plural resource name before.
    """
    objects = [to_json(p, api_version) for p in payloads]
    if api_version and api_version < 3:
        return {kind.plural: objects}
    return objects

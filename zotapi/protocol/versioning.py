"""
Optimistic concurrency control.

Every mutation must be conditioned on a version the caller believes is
current.  Two equivalent forms exist across protocol generations:

* header form: ``If-Unmodified-Since-Version: <expected>``
* property form: a ``version`` (API 3) or ``{type}Version`` (older
  generations) field embedded in each object of a JSON payload

evaluate() is the decision table the server applies to one conditioned
write.  VersionController is the client side: it conditions outgoing
writes and interprets the answers.
"""
import copy
import logging
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any
from typing import Dict
from typing import Optional

from zotapi.lib import error

from .types import APIResponse
from .types import ResourceKind

log = logging.getLogger(__name__)

UNMODIFIED_SINCE_HEADER = "If-Unmodified-Since-Version"
MODIFIED_SINCE_HEADER = "If-Modified-Since-Version"
LAST_MODIFIED_HEADER = "Last-Modified-Version"


class ConditionForm(Enum):
    HEADER = "header"
    PROPERTY = "property"


class WriteDecision(Enum):
    """What happens to one conditioned write."""

    ACCEPT = 200
    CREATE = 201
    INVALID = 400
    NOT_FOUND = 404
    PRECONDITION_FAILED = 412
    PRECONDITION_REQUIRED = 428

    @property
    def applied(self) -> bool:
        return self in (WriteDecision.ACCEPT, WriteDecision.CREATE)

    @property
    def status(self) -> int:
        return self.value


@dataclass(frozen=True)
class Verdict:
    decision: WriteDecision
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.decision.applied

    @property
    def status(self) -> int:
        return self.decision.status


def version_property(kind: ResourceKind, api_version: Optional[int] = 3) -> str:
    """Name of the embedded version field for a kind of object"""
    if api_version and api_version < 3:
        return kind.value + "Version"
    return "version"


def resolve_expected(
    header: Optional[int],
    prop: Optional[int],
) -> "tuple[Optional[int], Optional[Verdict]]":
    """
    Combine both condition forms into one expected version.

    Returns (expected, None), or (None, INVALID verdict) when both forms
    are given and disagree.
    """
    if header is not None and prop is not None and int(header) != int(prop):
        return None, Verdict(
            WriteDecision.INVALID,
            f"Version in {UNMODIFIED_SINCE_HEADER} header ({header}) "
            f"does not match version property ({prop})",
        )
    if header is not None:
        return int(header), None
    if prop is not None:
        return int(prop), None
    return None, None


def evaluate(
    current_version: Optional[int],
    expected: Optional[int],
    kind: ResourceKind = ResourceKind.ITEM,
    keyed: bool = True,
    form: ConditionForm = ConditionForm.HEADER,
) -> Verdict:
    """
    Decide the fate of one conditioned write.

    Args:
        current_version: Version of the target object, None if it doesn't exist
        expected: Version the caller conditioned the write on, None if absent
        kind: Kind of the target object (used in messages)
        keyed: The write names an object key; unkeyed writes are plain creates
        form: Which form carried the expected version

    Returns:
        Verdict with decision and server-style message
    """
    name = kind.value.capitalize()

    if expected is None:
        if not keyed:
            return Verdict(WriteDecision.CREATE)
        if form is ConditionForm.HEADER:
            return Verdict(
                WriteDecision.PRECONDITION_REQUIRED,
                f"{UNMODIFIED_SINCE_HEADER} not provided",
            )
        return Verdict(
            WriteDecision.PRECONDITION_REQUIRED,
            f"{name} version not provided",
        )

    if current_version is None:
        if expected == 0:
            return Verdict(WriteDecision.CREATE)
        return Verdict(
            WriteDecision.NOT_FOUND,
            f"{name} doesn't exist (expected version {expected}; use 0 instead)",
        )

    stale = expected < current_version
    ## The embedded property names the exact version the client saw
    if form is ConditionForm.PROPERTY:
        stale = expected != current_version
    if expected == 0 or stale:
        return Verdict(
            WriteDecision.PRECONDITION_FAILED,
            f"{name} has been modified since specified version "
            f"(expected {expected}, found {current_version})",
        )
    return Verdict(WriteDecision.ACCEPT)


def evaluate_library(library_version: int, expected: Optional[int]) -> Verdict:
    """
    Header form applied to a whole library (multi-object writes, tag
    and setting deletion): stale iff the library moved past it.
    """
    if expected is None:
        return Verdict(WriteDecision.ACCEPT)
    if expected < library_version:
        return Verdict(
            WriteDecision.PRECONDITION_FAILED,
            f"Library has been modified since specified version "
            f"(expected {expected}, found {library_version})",
        )
    return Verdict(WriteDecision.ACCEPT)


@dataclass(frozen=True)
class WriteCondition:
    """Headers and payload of a conditioned write, ready to be built."""

    headers: Dict[str, str] = field(default_factory=dict)
    payload: Any = None

    @property
    def conditioned(self) -> bool:
        return UNMODIFIED_SINCE_HEADER in self.headers


class VersionController:
    """
    Client side of the optimistic concurrency protocol.

    Conditions outgoing writes (refusing to build an unconditioned one
    unless asked to) and turns write responses into new versions or
    exceptions.
    """

    def __init__(self, api_version: Optional[int] = 3) -> None:
        self.api_version = api_version

    def version_property(self, kind: ResourceKind) -> str:
        return version_property(kind, self.api_version)

    def embedded(self, payload: Any, kind: ResourceKind) -> Optional[int]:
        """Version carried by a payload object, None if it has none"""
        if not isinstance(payload, dict):
            return None
        value = payload.get(self.version_property(kind))
        if value is None:
            return None
        return int(value)

    @staticmethod
    def keyed(payload: Any, kind: ResourceKind) -> bool:
        """Whether a payload object names an existing key"""
        if not isinstance(payload, dict):
            return False
        return bool(payload.get("key") or payload.get(f"{kind.value}Key"))

    def embed(self, payload: Dict[str, Any], kind: ResourceKind, version: int) -> Dict[str, Any]:
        """Return a copy of payload carrying version in property form"""
        result = copy.deepcopy(payload)
        result[self.version_property(kind)] = int(version)
        return result

    @staticmethod
    def condition_headers(version: int) -> Dict[str, str]:
        return {UNMODIFIED_SINCE_HEADER: str(int(version))}

    @staticmethod
    def read_headers(version: Optional[int]) -> Dict[str, str]:
        """Headers turning a GET into a 304 short-circuit"""
        if version is None:
            return {}
        return {MODIFIED_SINCE_HEADER: str(int(version))}

    def condition(
        self,
        kind: ResourceKind,
        payload: Any = None,
        version: Optional[int] = None,
        form: ConditionForm = ConditionForm.HEADER,
        unconditional: bool = False,
    ) -> WriteCondition:
        """
        Condition a write on a version.

        Args:
            kind: Kind of object written
            payload: JSON payload (dict, list of dicts) or None
            version: Expected version; None to rely on embedded versions
            form: Send version as header or embed it into the payload
            unconditional: Send the write even if no version is known,
                leaving the 428 to the server

        Returns:
            WriteCondition with headers and (possibly updated) payload

        Raises:
            PreconditionRequired: No version in either form and not unconditional
        """
        if version is not None:
            if form is ConditionForm.HEADER:
                return WriteCondition(self.condition_headers(version), payload)
            if isinstance(payload, list):
                payload = [self.embed(p, kind, version) for p in payload]
            else:
                payload = self.embed(payload or {}, kind, version)
            return WriteCondition({}, payload)

        if isinstance(payload, list):
            # objects without a key are creates and need no version
            objects = [p for p in payload if self.keyed(p, kind)]
            versioned = bool(payload)
        else:
            objects = [payload]
            versioned = True
        if versioned and all(self.embedded(p, kind) is not None for p in objects):
            return WriteCondition({}, payload)

        if not unconditional:
            raise error.PreconditionRequired(
                reason=f"refusing to send a {kind.value} write without "
                f"{UNMODIFIED_SINCE_HEADER} or {self.version_property(kind)} property"
            )
        log.debug(f"sending unconditioned {kind.value} write")
        return WriteCondition({}, payload)

    @staticmethod
    def is_not_modified(response: APIResponse) -> bool:
        return response.status == 304

    def check_write_response(
        self,
        response: APIResponse,
        expected: tuple = (200, 204),
    ) -> Optional[int]:
        """
        Interpret the answer to a conditioned write.

        Returns:
            The library version after the write (Last-Modified-Version)

        Raises:
            PreconditionRequired: 428
            PreconditionFailed: 412, with the current version reported
            ResponseError (or subclass): any other unexpected status
        """
        error.raise_for_status(response, expected)
        new_version = response.last_modified_version
        if new_version is None:
            error.weirdness(f"no {LAST_MODIFIED_HEADER} on a successful write")
        return new_version

"""
Classification of multi-object write responses.

A batch write answers with one JSON object partitioning the submitted
indices::

    {
      "successful": {"0": {"key": "ABCD2345", "version": 5, "data": {...}}},
      "success": {"0": "ABCD2345"},
      "unchanged": {"1": "BCDE3456"},
      "failed": {"2": {"key": "CDEF4567", "code": 400, "message": "..."}}
    }

``successful`` only exists from API version 3 on.  Any of the maps may
come back as a JSON list when it is empty or sequential.  classify()
never raises for per-object failures: those are results.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from zotapi.lib import error

from .formats import decode_json, text_of
from .types import APIResponse, BatchClassification, BatchResult

log = logging.getLogger(__name__)

BatchSource = Union[APIResponse, bytes, str, Dict[str, Any]]


def _entries(section: Any) -> Iterable[Tuple[int, Any]]:
    if section is None:
        return []
    if isinstance(section, list):
        return list(enumerate(section))
    if isinstance(section, dict):
        try:
            return [(int(index), value) for index, value in section.items()]
        except ValueError as err:
            raise error.ParseError(reason=f"Non-numeric batch index in {section}") from err
    raise error.ParseError(reason=f"Unexpected batch section {section!r}")


def _success_results(body: Dict[str, Any], library_version: Optional[int]) -> Dict[int, BatchResult]:
    results: Dict[int, BatchResult] = {}

    for index, obj in _entries(body.get("successful")):
        if not isinstance(obj, dict):
            raise error.ParseError(reason=f"Unexpected successful entry {obj!r}")
        version = obj.get("version")
        results[index] = BatchResult(
            index=index,
            key=obj.get("key"),
            version=int(version) if version is not None else library_version,
            data=obj.get("data"),
        )

    for index, key in _entries(body.get("success")):
        if index in results:
            ## successful and success describe the same writes
            if results[index].key is None:
                results[index].key = key
            elif results[index].key != key:
                raise error.ResponseError(
                    reason=f"Conflicting keys for index {index}: {results[index].key} != {key}"
                )
            continue
        results[index] = BatchResult(index=index, key=key, version=library_version)
    return results


def classify(
    source: BatchSource,
    expected_count: Optional[int] = None,
) -> BatchClassification:
    """
    Partition a batch write response by index.

    Args:
        source: APIResponse, raw JSON body or already decoded dict
        expected_count: Number of objects submitted, if known; every
            index below it must be accounted for

    Returns:
        BatchClassification with success, unchanged and failed maps

    Raises:
        ParseError: The body is not a batch result
        ResponseError: An index appears in more than one map, or a
            submitted index is missing
    """
    library_version = None
    if isinstance(source, APIResponse):
        library_version = source.last_modified_version
    if isinstance(source, dict):
        body = source
    else:
        body = decode_json(source)
        if not isinstance(body, dict):
            log.error(f"batch response is not a JSON object: \n{text_of(source)}")
            raise error.ParseError(reason=repr(body))

    try:
        result = _classify_body(body, library_version)
    except error.ParseError:
        raw = repr(source) if isinstance(source, dict) else text_of(source)
        log.error(f"batch response could not be classified: \n{raw}")
        raise

    _check_partition(result, expected_count)
    log.debug(
        f"batch result: {len(result.success)} success, "
        f"{len(result.unchanged)} unchanged, {len(result.failed)} failed"
    )
    return result


def _classify_body(body: Dict[str, Any], library_version: Optional[int]) -> BatchClassification:
    result = BatchClassification()
    result.success = _success_results(body, library_version)

    for index, key in _entries(body.get("unchanged")):
        result.unchanged[index] = BatchResult(index=index, key=key)

    for index, failure in _entries(body.get("failed")):
        if not isinstance(failure, dict):
            raise error.ParseError(reason=f"Unexpected failed entry {failure!r}")
        code = failure.get("code")
        result.failed[index] = BatchResult(
            index=index,
            key=failure.get("key"),
            code=int(code) if code is not None else None,
            message=failure.get("message"),
        )
    return result


def _check_partition(result: BatchClassification, expected_count: Optional[int]) -> None:
    seen: Dict[int, str] = {}
    for name in ("success", "unchanged", "failed"):
        for index in getattr(result, name):
            if index in seen:
                raise error.ResponseError(
                    reason=f"Index {index} is both {seen[index]} and {name}"
                )
            seen[index] = name

    if expected_count is None:
        return
    missing = [i for i in range(expected_count) if i not in seen]
    if missing:
        raise error.ResponseError(reason=f"No result for batch indices {missing}")
    extra = [i for i in seen if i >= expected_count or i < 0]
    if extra:
        raise error.ResponseError(reason=f"Results for unknown batch indices {extra}")


def classify_response(
    response: APIResponse,
    expected_count: Optional[int] = None,
) -> BatchClassification:
    """
    Classify a batch write response after checking its status.

    A batch answer is always 200 (per-object failures included); any
    other status is the whole request failing and is raised.
    """
    error.raise_for_status(response, (200,))
    return classify(response, expected_count)

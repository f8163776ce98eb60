"""
Assertion helpers for tests written against the API.

They raise AssertionError with the response body in the message, so a
failing test shows what the server said.  The per-object helpers read
batch write responses through the classifier.
"""

from typing import Callable, Optional

from zotapi.protocol import formats
from zotapi.protocol.batch import classify
from zotapi.protocol.types import APIResponse, BatchResult

StatusAssertion = Callable[..., None]


def assert_status(response: APIResponse, expected: int, message: Optional[str] = None) -> None:
    assert response.status == expected, (
        message or f"Expected {expected}, got {response.status}: {response.text}"
    )


def _status_assertion(expected: int) -> StatusAssertion:
    def check(response: APIResponse, message: Optional[str] = None) -> None:
        assert_status(response, expected, message)

    check.__name__ = f"assert_{expected}"
    check.__doc__ = f"Assert the response status is {expected}"
    return check


assert_200 = _status_assertion(200)
assert_201 = _status_assertion(201)
assert_204 = _status_assertion(204)
assert_300 = _status_assertion(300)
assert_302 = _status_assertion(302)
assert_304 = _status_assertion(304)
assert_400 = _status_assertion(400)
assert_401 = _status_assertion(401)
assert_403 = _status_assertion(403)
assert_404 = _status_assertion(404)
assert_405 = _status_assertion(405)
assert_409 = _status_assertion(409)
assert_412 = _status_assertion(412)
assert_413 = _status_assertion(413)
assert_428 = _status_assertion(428)


def assert_success_for_object(response: APIResponse, index: int = 0) -> BatchResult:
    """The object at index was written; returns its result"""
    assert_200(response)
    result = classify(response)
    assert index in result.success, f"Expected success for index {index}: {response.text}"
    return result.success[index]


def assert_unchanged_for_object(response: APIResponse, index: int = 0) -> BatchResult:
    assert_200(response)
    result = classify(response)
    assert index in result.unchanged, f"Expected index {index} unchanged: {response.text}"
    return result.unchanged[index]


def assert_failed_for_object(
    response: APIResponse,
    expected_code: int,
    expected_message: Optional[str] = None,
    index: int = 0,
) -> BatchResult:
    """
    The object at index failed with expected_code (and expected_message,
    when given).  The batch itself is a 200.
    """
    assert_200(response)
    result = classify(response)
    assert index in result.failed, f"Expected index {index} failed: {response.text}"
    failure = result.failed[index]
    assert failure.code == expected_code, (
        f"Expected error code {expected_code}, got {failure.code}"
    )
    if expected_message is not None:
        assert failure.message == expected_message, (
            f"Expected message '{expected_message}', got '{failure.message}'"
        )
    return failure


def _failed_assertion(code: int) -> Callable[..., BatchResult]:
    def check(
        response: APIResponse, expected_message: Optional[str] = None, index: int = 0
    ) -> BatchResult:
        return assert_failed_for_object(response, code, expected_message, index)

    check.__name__ = f"assert_{code}_for_object"
    return check


assert_400_for_object = _failed_assertion(400)
assert_404_for_object = _failed_assertion(404)
assert_409_for_object = _failed_assertion(409)
assert_412_for_object = _failed_assertion(412)
assert_413_for_object = _failed_assertion(413)
assert_428_for_object = _failed_assertion(428)


def assert_total_results(response: APIResponse, expected: int) -> None:
    total = formats.total_results(response)
    assert total == expected, f"Expected {expected} total results, got {total}"


def assert_num_results(response: APIResponse, expected: int) -> None:
    """Count the results in the body, whatever format it came back in"""
    count = formats.count_results(response)
    assert count == expected, f"Expected {expected} results, got {count}"


def assert_content_type(response: APIResponse, expected: str) -> None:
    content_type = response.header("Content-Type")
    assert content_type == expected, f"Expected Content-Type {expected}, got {content_type}"

"""
Unit tests for SDK errors.

Tests cover:
- Server error parsing
- Retry hints from error causes
- Error messages and codes
"""

import httpx
import pytest

from sdk.arango_sdk._http_client import Response
from sdk.arango_sdk.errors import (
    ArangoError,
    ArangoSdkError,
    BuilderError,
    FetchFailedError,
    HttpError,
    NetworkError,
    PropagationTimeoutError,
    RequestAbortedError,
    ResponseTimeoutError,
    TransactionPinError,
    is_arango_error,
    is_network_error,
    safe_to_retry_from_cause,
    status_message,
)


def make_response(status, body, headers=None):
    request = httpx.Request("GET", "http://a:8529/_api/test")
    return Response(
        status=status,
        headers=httpx.Headers(headers or {}),
        body=body,
        host_url="http://a:8529/",
        request=request,
    )


class TestArangoError:
    """Tests for structured server errors."""

    def test_from_response(self):
        """Fields come from the error body, the response from the cause."""
        body = {"error": True, "code": 404, "errorNum": 1202, "errorMessage": "document not found"}
        response = make_response(404, body)

        error = ArangoError.from_response(response)

        assert error.error_num == 1202
        assert error.status_code == 404
        assert error.error_message == "document not found"
        assert error.response is response
        assert error.request is response.request
        assert error.is_not_found
        assert not error.is_conflict
        assert str(error) == "ArangoError 1202: document not found"
        assert error.to_dict() == body

    def test_maintenance_mode_is_safe_to_retry(self):
        error = ArangoError({"errorNum": 503, "errorMessage": "maintenance"})

        assert error.is_safe_to_retry is True

    def test_conflict(self):
        error = ArangoError({"errorNum": 1200, "errorMessage": "conflict"})

        assert error.is_conflict
        assert error.is_safe_to_retry is None

    def test_is_not_a_network_error(self):
        error = ArangoError({"errorNum": 1, "errorMessage": "x"})

        assert is_arango_error(error)
        assert not is_network_error(error)
        assert isinstance(error, ArangoSdkError)


class TestNetworkErrors:
    """Tests for transport errors."""

    def test_default_messages(self):
        assert ResponseTimeoutError().message == "Timed out while waiting for server response"
        assert RequestAbortedError().message == "Request aborted"
        assert NetworkError().message == "Network error"

    def test_codes(self):
        assert ResponseTimeoutError().code == "RESPONSE_TIMEOUT"
        assert RequestAbortedError().code == "REQUEST_ABORTED"
        assert FetchFailedError().code == "FETCH_FAILED"

    def test_fetch_failed_derives_hint_from_cause(self):
        """A refused connection in the cause chain makes it safe to retry."""
        cause = ConnectionRefusedError("refused")

        error = FetchFailedError(cause=cause)

        assert error.is_safe_to_retry is True
        assert error.__cause__ is cause
        assert error.message == "Fetch failed: refused"

    def test_fetch_failed_unknown_hint(self):
        error = FetchFailedError(cause=ValueError("odd"))

        assert error.is_safe_to_retry is None

    def test_explicit_hint_wins(self):
        error = FetchFailedError(cause=ConnectionRefusedError(), is_safe_to_retry=False)

        assert error.is_safe_to_retry is False

    def test_http_error(self):
        """HttpError carries the response and a reason phrase."""
        response = make_response(502, "bad gateway")

        error = HttpError(response)

        assert error.status_code == 502
        assert error.response is response
        assert error.request is response.request
        assert str(error) == "HttpError 502: Bad Gateway"
        assert is_network_error(error)

    def test_request_url_in_details(self):
        request = httpx.Request("GET", "http://a:8529/_api/x")

        assert ResponseTimeoutError(None, request).details["url"] == "http://a:8529/_api/x"


class TestSafeToRetryFromCause:
    """Tests for safe_to_retry_from_cause."""

    def test_walks_chain(self):
        """Hints are found through __cause__ links."""
        root = httpx.ConnectError("refused")
        middle = RuntimeError("wrapped")
        middle.__cause__ = root

        assert safe_to_retry_from_cause(middle) is True

    def test_inherits_sdk_hint(self):
        inner = NetworkError(is_safe_to_retry=False)

        assert safe_to_retry_from_cause(inner) is False

    def test_none(self):
        assert safe_to_retry_from_cause(None) is None
        assert safe_to_retry_from_cause(ValueError()) is None

    def test_cycles_terminate(self):
        a = RuntimeError("a")
        b = RuntimeError("b")
        a.__cause__ = b
        b.__cause__ = a

        assert safe_to_retry_from_cause(a) is None


class TestOtherErrors:
    """Tests for builder, propagation and transaction errors."""

    def test_builder_error(self):
        error = BuilderError("x", 1, 2)

        assert error.code == "BUILDER_ERROR"
        assert error.details == {"name": "x", "existing": 1, "incoming": 2}

    def test_propagation_timeout_chains_cause(self):
        cause = NetworkError("down")

        error = PropagationTimeoutError(cause=cause)

        assert error.__cause__ is cause
        assert error.code == "PROPAGATION_TIMEOUT"

    def test_transaction_pin_error(self):
        error = TransactionPinError("t1", "t2")

        assert error.active_id == "t1"
        assert "t1" in error.message and "t2" in error.message

    @pytest.mark.parametrize("status, phrase", [(404, "Not Found"), (503, "Service Unavailable")])
    def test_status_message(self, status, phrase):
        assert status_message(status) == phrase

    def test_unknown_status_message(self):
        assert status_message(599) == "Unknown status 599"

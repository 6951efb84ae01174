"""
Error types for the ArangoDB SDK.

This module defines all exception types raised by the SDK:
- ArangoSdkError: Base exception
- ArangoError: Structured error returned by the server
- NetworkError: Transport failures (and its subclasses)
- HttpError: Non-2xx response without a structured error body
- BuilderError: Conflicting bind variables while composing a query
- PropagationTimeoutError: Hosts did not converge in time
- TransactionPinError: A second transaction was pinned on a connection

Invariants:
    - All errors inherit from ArangoSdkError
    - Callers never see raw httpx exceptions
    - is_safe_to_retry is a tri-state: True, False or None (unknown)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from .codes import ERROR_ARANGO_CONFLICT, ERROR_ARANGO_MAINTENANCE_MODE, NOT_FOUND_CODES

if TYPE_CHECKING:
    from ._http_client import Response


class ArangoSdkError(Exception):
    """Base exception for all SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ARANGO_SDK_ERROR"
        self.details = details or {}


class NetworkError(ArangoSdkError):
    """A request could not be completed at the transport level.

    Attributes:
        request: The httpx request that failed, if one was built
        is_safe_to_retry: Whether the request can be sent to another host
    """

    default_message = "Network error"

    def __init__(
        self,
        message: Optional[str] = None,
        request: Optional[httpx.Request] = None,
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
        code: str = "NETWORK_ERROR",
    ) -> None:
        super().__init__(
            message or self.default_message,
            code=code,
            details={"url": str(request.url) if request is not None else None},
        )
        self.request = request
        self.is_safe_to_retry = is_safe_to_retry
        if cause is not None:
            self.__cause__ = cause


class ResponseTimeoutError(NetworkError):
    """Timed out while waiting for the server response."""

    default_message = "Timed out while waiting for server response"

    def __init__(
        self,
        message: Optional[str] = None,
        request: Optional[httpx.Request] = None,
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
    ) -> None:
        super().__init__(
            message,
            request,
            cause=cause,
            is_safe_to_retry=is_safe_to_retry,
            code="RESPONSE_TIMEOUT",
        )


class RequestAbortedError(NetworkError):
    """The request was aborted before a response arrived."""

    default_message = "Request aborted"

    def __init__(
        self,
        message: Optional[str] = None,
        request: Optional[httpx.Request] = None,
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
    ) -> None:
        super().__init__(
            message,
            request,
            cause=cause,
            is_safe_to_retry=is_safe_to_retry,
            code="REQUEST_ABORTED",
        )


class FetchFailedError(NetworkError):
    """The request failed for a transport reason.

    The root cause is often hard to pin down. When no explicit hint is
    given, safety to retry is derived from the cause chain.
    """

    default_message = "Fetch failed"

    def __init__(
        self,
        message: Optional[str] = None,
        request: Optional[httpx.Request] = None,
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
    ) -> None:
        if is_safe_to_retry is None:
            is_safe_to_retry = safe_to_retry_from_cause(cause)
        if message is None and cause is not None and str(cause):
            message = f"Fetch failed: {cause}"
        super().__init__(
            message,
            request,
            cause=cause,
            is_safe_to_retry=is_safe_to_retry,
            code="FETCH_FAILED",
        )


class HttpError(NetworkError):
    """Non-2xx response without a structured error body.

    Attributes:
        status_code: HTTP status code of the response
        response: The processed response
    """

    def __init__(
        self,
        response: Response,
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
    ) -> None:
        super().__init__(
            status_message(response.status),
            response.request,
            cause=cause,
            is_safe_to_retry=is_safe_to_retry,
            code="HTTP_ERROR",
        )
        self.response = response
        self.status_code = response.status
        self.details["status_code"] = response.status

    def __str__(self) -> str:
        return f"HttpError {self.status_code}: {self.message}"


class ArangoError(ArangoSdkError):
    """Structured error returned by the server.

    Attributes:
        error_num: Server error code (see codes.py)
        status_code: HTTP status code reported in the error body
        is_safe_to_retry: True for maintenance mode, else taken from the
            wrapped network cause, else None
    """

    def __init__(
        self,
        data: Dict[str, Any],
        *,
        cause: Optional[BaseException] = None,
        is_safe_to_retry: Optional[bool] = None,
    ) -> None:
        error_num = int(data.get("errorNum", 0))
        status_code = data.get("code")
        super().__init__(
            data.get("errorMessage") or f"Server error {error_num}",
            code="ARANGO_ERROR",
            details={"error_num": error_num, "status_code": status_code},
        )
        self.error_num = error_num
        self.status_code = status_code
        if cause is not None:
            self.__cause__ = cause
        if is_safe_to_retry is not None:
            self.is_safe_to_retry: Optional[bool] = is_safe_to_retry
        elif error_num == ERROR_ARANGO_MAINTENANCE_MODE:
            self.is_safe_to_retry = True
        elif isinstance(cause, NetworkError):
            self.is_safe_to_retry = cause.is_safe_to_retry
        else:
            self.is_safe_to_retry = None

    @classmethod
    def from_response(cls, response: Response) -> ArangoError:
        """Build an ArangoError from a response carrying an error body."""
        return cls(response.body, cause=HttpError(response))

    @property
    def error_message(self) -> str:
        return self.message

    @property
    def response(self) -> Optional[Response]:
        cause = self.__cause__
        if isinstance(cause, HttpError):
            return cause.response
        return None

    @property
    def request(self) -> Optional[httpx.Request]:
        cause = self.__cause__
        if isinstance(cause, NetworkError):
            return cause.request
        return None

    @property
    def is_not_found(self) -> bool:
        return self.error_num in NOT_FOUND_CODES

    @property
    def is_conflict(self) -> bool:
        return self.error_num == ERROR_ARANGO_CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the server error body shape."""
        return {
            "error": True,
            "errorMessage": self.message,
            "errorNum": self.error_num,
            "code": self.status_code,
        }

    def __str__(self) -> str:
        return f"ArangoError {self.error_num}: {self.message}"


class BuilderError(ArangoSdkError):
    """Two query fragments bind the same name to different values."""

    def __init__(self, name: str, existing: Any, incoming: Any) -> None:
        super().__init__(
            f"Bind variable '{name}' is bound to conflicting values",
            code="BUILDER_ERROR",
            details={"name": name, "existing": existing, "incoming": incoming},
        )
        self.name = name


class PropagationTimeoutError(ArangoSdkError):
    """Timed out while waiting for a request to succeed on every host."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message or "Timed out while waiting for propagation",
            code="PROPAGATION_TIMEOUT",
        )
        if cause is not None:
            self.__cause__ = cause


class TransactionPinError(ArangoSdkError):
    """A transaction is already pinned on this connection."""

    def __init__(self, active_id: str, requested_id: str) -> None:
        super().__init__(
            f"Transaction '{active_id}' is still pinned, "
            f"clear it before pinning '{requested_id}'",
            code="TRANSACTION_PINNED",
            details={"active_id": active_id, "requested_id": requested_id},
        )
        self.active_id = active_id
        self.requested_id = requested_id


def is_arango_error(error: Any) -> bool:
    """Whether the given value is a structured server error."""
    return isinstance(error, ArangoError)


def is_network_error(error: Any) -> bool:
    """Whether the given value is a transport-level error."""
    return isinstance(error, NetworkError)


def safe_to_retry_from_cause(error: Optional[BaseException]) -> Optional[bool]:
    """Walk an exception chain looking for a retry hint.

    Connection refused and connect timeouts mean the request never reached
    the server, so it can be sent elsewhere.
    """
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if isinstance(error, (NetworkError, ArangoError)):
            return error.is_safe_to_retry
        if isinstance(error, (ConnectionRefusedError, httpx.ConnectError, httpx.ConnectTimeout)):
            return True
        error = error.__cause__ or error.__context__
    return None


def status_message(status: int) -> str:
    """Human readable reason for an HTTP status code."""
    return httpx.codes.get_reason_phrase(status) or f"Unknown status {status}"

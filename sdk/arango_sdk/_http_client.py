"""
Internal HTTP client for the ArangoDB SDK.

This module performs single request attempts against a single host and
translates every outcome into a Response or an SDK error. It knows
nothing about host selection, retries or pooling; that lives in
ConnectionManager.

It is internal to the SDK and should not be used directly by users.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Set, Tuple

import httpx

from .errors import (
    ArangoError,
    FetchFailedError,
    HttpError,
    NetworkError,
    RequestAbortedError,
    ResponseTimeoutError,
)

logger = logging.getLogger(__name__)

MIME_JSON = re.compile(r"/(json|javascript)(\W|$)")


@dataclass
class RequestDescriptor:
    """A fully resolved request, independent of the host it is sent to.

    Attributes:
        method: HTTP method
        path: URL path relative to the host base URL
        params: Query string parameters
        headers: Extra headers for this request
        body: Body, structured (JSON encoded) or already serialized
        expect_binary: Return the response body as bytes
        is_binary: Send the body as application/octet-stream
        allow_dirty_read: Allow a non-leader to answer
        retry_on_conflict: Conflict retry budget, passed through to callers
        timeout: Seconds to wait for the response
        host_url: Pin to this host, no failover
        transaction_id: Transaction to run the request in
    """

    method: str = "GET"
    path: str = ""
    params: Optional[Mapping[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    expect_binary: bool = False
    is_binary: bool = False
    allow_dirty_read: bool = False
    retry_on_conflict: Optional[int] = None
    timeout: Optional[float] = None
    host_url: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class Response:
    """Processed response of a single attempt.

    Attributes:
        status: HTTP status code
        headers: Response headers
        body: Parsed JSON, text or bytes; None when empty
        host_url: Host that served the request
        request: The request that was sent
    """

    status: int
    headers: httpx.Headers
    body: Any
    host_url: str
    request: httpx.Request


def is_arango_error_response(body: Any) -> bool:
    """Whether a parsed body is a structured server error."""
    return (
        isinstance(body, dict)
        and body.get("error") is True
        and "errorNum" in body
        and "errorMessage" in body
    )


def serialize_body(body: Any, is_binary: bool = False) -> Tuple[Optional[bytes], Optional[str]]:
    """Serialize a request body.

    Returns:
        Tuple of (content, content type), (None, None) without a body
    """
    if body is None:
        return None, None
    if is_binary or isinstance(body, (bytes, bytearray)):
        return bytes(body), "application/octet-stream"
    if isinstance(body, (Mapping, list, tuple)):
        return json.dumps(body).encode("utf-8"), "application/json"
    return str(body).encode("utf-8"), "text/plain"


class RequestExecutor:
    """Sends single request attempts to a given host.

    One httpx.AsyncClient is kept per host so keep-alive connections are
    reused. A transport can be injected for testing.
    """

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._pending: Set[asyncio.Future[httpx.Response]] = set()

    def _client_for(self, host_url: str) -> httpx.AsyncClient:
        client = self._clients.get(host_url)
        if client is None:
            client = self._create_client(host_url)
            self._clients[host_url] = client
        return client

    def _create_client(self, host_url: str) -> httpx.AsyncClient:
        transport = self._transport
        base_url = host_url
        if "://unix:" in host_url:
            scheme, _, rest = host_url.partition("://unix:")
            socket_path, _, base_path = rest.partition(":")
            base_url = f"{scheme}://localhost/{base_path.lstrip('/')}"
            if transport is None:
                transport = httpx.AsyncHTTPTransport(uds=socket_path)
        return httpx.AsyncClient(base_url=base_url, transport=transport, timeout=None)

    async def send(
        self,
        host_url: str,
        descriptor: RequestDescriptor,
        headers: Mapping[str, str],
        content: Optional[bytes],
    ) -> Response:
        """Perform one attempt against one host.

        Args:
            host_url: Normalized base URL of the host
            descriptor: The request to perform
            headers: Final merged headers
            content: Serialized body

        Returns:
            Response for 2xx/3xx statuses

        Raises:
            ArangoError: Server returned a structured error
            HttpError: Server returned an error status without one
            NetworkError: Transport failure, timeout or abort
        """
        client = self._client_for(host_url)
        request = client.build_request(
            descriptor.method,
            descriptor.path,
            params=_encode_params(descriptor.params),
            headers=dict(headers),
            content=content,
        )

        task = asyncio.ensure_future(client.send(request))
        self._pending.add(task)
        try:
            done, _ = await asyncio.wait({task}, timeout=descriptor.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._pending.discard(task)

        if not done:
            task.cancel()
            raise ResponseTimeoutError(None, request)
        if task.cancelled():
            raise RequestAbortedError(None, request)
        error = task.exception()
        if error is not None:
            raise self._classify(error, request)

        return self._process(host_url, request, task.result(), descriptor.expect_binary)

    def _classify(self, error: BaseException, request: httpx.Request) -> NetworkError:
        """Translate a transport exception into an SDK error."""
        if isinstance(error, httpx.ConnectTimeout):
            return FetchFailedError(None, request, cause=error, is_safe_to_retry=True)
        if isinstance(error, httpx.TimeoutException):
            return ResponseTimeoutError(None, request, cause=error)
        if isinstance(error, httpx.ConnectError):
            # Never reached the server
            return FetchFailedError(None, request, cause=error, is_safe_to_retry=True)
        if isinstance(error, httpx.HTTPError):
            return FetchFailedError(None, request, cause=error)
        return NetworkError(str(error) or None, request, cause=error)

    def _process(
        self,
        host_url: str,
        request: httpx.Request,
        http_response: httpx.Response,
        expect_binary: bool,
    ) -> Response:
        content_type = http_response.headers.get("content-type", "")
        is_json = bool(MIME_JSON.search(content_type))
        raw = http_response.content

        body: Any = None
        if http_response.status_code >= 400:
            if is_json and raw:
                try:
                    body = http_response.json()
                except ValueError:
                    body = None
            response = Response(
                status=http_response.status_code,
                headers=http_response.headers,
                body=body if body is not None else http_response.text,
                host_url=host_url,
                request=request,
            )
            if is_arango_error_response(body):
                raise ArangoError.from_response(response)
            raise HttpError(response)

        if raw:
            if expect_binary:
                body = raw
            elif is_json:
                try:
                    body = http_response.json()
                except ValueError as error:
                    # Already processed by the server
                    raise FetchFailedError(
                        f"Malformed JSON response body: {error}",
                        request,
                        cause=error,
                        is_safe_to_retry=False,
                    ) from error
            else:
                body = http_response.text

        return Response(
            status=http_response.status_code,
            headers=http_response.headers,
            body=body,
            host_url=host_url,
            request=request,
        )

    async def close(self) -> None:
        """Abort pending requests and close all host clients.

        The executor stays usable; new clients are created on demand.
        """
        pending = list(self._pending)
        self._pending.clear()
        for task in pending:
            task.cancel()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()
        if pending:
            logger.debug(f"Aborted {len(pending)} pending requests")


def _encode_params(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    encoded: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = value
    return encoded

"""
Integration test fixtures for the ArangoDB SDK.

FakeArango stands in for one or more servers behind an
httpx.MockTransport, so the whole request path (headers, host selection,
failover, response parsing) runs for real without a network.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

HOST_A = "http://a:8529"
HOST_B = "http://b:8529"
HOST_C = "http://c:8529"


def json_response(
    body: Any = None,
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    """Build a JSON response the way the server sends it."""
    content = b"" if body is None else json.dumps(body).encode("utf-8")
    merged = {"content-type": "application/json; charset=utf-8"}
    merged.update(headers or {})
    return httpx.Response(status, headers=merged, content=content)


def arango_error(status: int, error_num: int, message: str = "error", **headers: str) -> httpx.Response:
    """Build a structured server error response."""
    return json_response(
        {"error": True, "code": status, "errorNum": error_num, "errorMessage": message},
        status=status,
        headers={k.replace("_", "-"): v for k, v in headers.items()},
    )


class FakeArango:
    """Scriptable fake server shared by every host.

    Handlers are matched on method and a full-match path regex, newest
    first. Hosts listed in `down` refuse connections.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.down: set = set()
        self._routes: List[tuple] = []

    def route(self, method: str, path: str, handler: Any) -> None:
        """Register a handler: a callable taking the request, or a fixed response."""
        self._routes.insert(0, (method.upper(), re.compile(path), handler))

    def hosts(self) -> List[str]:
        """Host names of the recorded requests, in order."""
        return [request.url.host for request in self.requests]

    def requests_to(self, method: str, path: str) -> List[httpx.Request]:
        pattern = re.compile(path)
        return [
            request
            for request in self.requests
            if request.method == method and pattern.fullmatch(request.url.path)
        ]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.down:
            raise httpx.ConnectError("Connection refused", request=request)
        for method, pattern, handler in self._routes:
            if method == request.method and pattern.fullmatch(request.url.path):
                if isinstance(handler, httpx.Response):
                    # Fresh copy, responses are bound to one request
                    return httpx.Response(
                        handler.status_code, headers=handler.headers, content=handler.content
                    )
                result = handler(request)
                if hasattr(result, "__await__"):
                    result = await result
                return result
        return arango_error(404, 404, f"unknown path {request.url.path}")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class FakeCursorApi:
    """Server side cursor state for the cursor endpoints.

    Results are served in batches of the requested batchSize. With
    batch_ids set, continuation uses the nextBatchId form.
    """

    def __init__(self, server: FakeArango, results: List[Any], batch_ids: bool = False) -> None:
        self.results = list(results)
        self.batch_ids = batch_ids
        self.batch_size = 1000
        self.offset = 0
        self.batch_number = 1
        self.deleted = 0
        self.last_body: Dict[str, Any] = {}
        server.route("POST", r"/_db/[^/]+/_api/cursor", self.create)
        server.route("PUT", r"/_db/[^/]+/_api/cursor/c1", self.fetch)
        server.route("POST", r"/_db/[^/]+/_api/cursor/c1/\d+", self.fetch)
        server.route("DELETE", r"/_db/[^/]+/_api/cursor/c1", self.delete)

    def _batch(self) -> Dict[str, Any]:
        chunk = self.results[self.offset : self.offset + self.batch_size]
        self.offset += len(chunk)
        has_more = self.offset < len(self.results)
        body: Dict[str, Any] = {
            "result": chunk,
            "hasMore": has_more,
            "count": len(self.results),
            "extra": {"stats": {"writesExecuted": 0}},
        }
        if has_more:
            body["id"] = "c1"
            if self.batch_ids:
                self.batch_number += 1
                body["nextBatchId"] = str(self.batch_number)
        return body

    def create(self, request: httpx.Request) -> httpx.Response:
        self.last_body = json.loads(request.content)
        self.batch_size = self.last_body.get("batchSize", 1000)
        self.offset = 0
        return json_response(self._batch(), status=201)

    def fetch(self, request: httpx.Request) -> httpx.Response:
        return json_response(self._batch())

    def delete(self, request: httpx.Request) -> httpx.Response:
        self.deleted += 1
        return json_response(None, status=202)


@pytest.fixture
def server() -> FakeArango:
    """Fake server with a version endpoint."""
    fake = FakeArango()
    version: Callable[[httpx.Request], httpx.Response] = lambda request: json_response(
        {"server": "arango", "version": "3.11.0", "host": request.url.host}
    )
    fake.route("GET", r"(/_db/[^/]+)?/_api/version", version)
    return fake

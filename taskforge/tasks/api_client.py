"""HTTP client and runner adapter for calling external JSON APIs.

Library API: used through :class:`taskforge.tasks.runner.TaskRunner`, not by
the service wiring.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

import httpx

from ..core.errors import ExecutionError
from ..core.logging import get_logger
from .runner import TaskFunction

logger = get_logger(name=__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass(slots=True)
class APIRequest:
    method: str
    path: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class APIResponse:
    status_code: int
    body: bytes
    headers: httpx.Headers

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class APIClient:
    """JSON-over-HTTP client with a base URL and default headers."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = dict(headers or {})
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def set_header(self, key: str, value: str) -> None:
        self.headers[key] = value

    def set_headers(self, headers: Mapping[str, str]) -> None:
        self.headers.update(headers)

    async def request(self, request: APIRequest) -> APIResponse:
        headers = {**self.headers, **request.headers}
        content: bytes | None = None
        if request.body is not None:
            content = json.dumps(request.body).encode("utf-8")
            if not any(key.lower() == "content-type" for key in headers):
                headers["Content-Type"] = "application/json"

        response = await self._client.request(
            request.method,
            f"{self.base_url}{request.path}",
            content=content,
            headers=headers,
            params=request.query or None,
        )
        logger.debug("api_request", method=request.method, path=request.path, status=response.status_code)
        return APIResponse(status_code=response.status_code, body=response.content, headers=response.headers)

    async def get(self, path: str, *, query: Mapping[str, str] | None = None, headers: Mapping[str, str] | None = None) -> APIResponse:
        return await self.request(APIRequest("GET", path, query=dict(query or {}), headers=dict(headers or {})))

    async def post(self, path: str, body: Any = None, *, headers: Mapping[str, str] | None = None) -> APIResponse:
        return await self.request(APIRequest("POST", path, body=body, headers=dict(headers or {})))

    async def put(self, path: str, body: Any = None, *, headers: Mapping[str, str] | None = None) -> APIResponse:
        return await self.request(APIRequest("PUT", path, body=body, headers=dict(headers or {})))

    async def delete(self, path: str, *, headers: Mapping[str, str] | None = None) -> APIResponse:
        return await self.request(APIRequest("DELETE", path, headers=dict(headers or {})))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def api_task(client: APIClient, request: APIRequest) -> TaskFunction:
    """Wrap ``request`` as a runner function; non-None params replace the request body."""

    async def run(params: Any = None) -> Any:
        prepared = replace(request, body=params) if params is not None else request
        response = await client.request(prepared)
        if not response.is_success:
            raise ExecutionError(
                f"API request failed with status code {response.status_code}: {response.body.decode('utf-8', 'replace')}"
            )
        content_type = response.headers.get("content-type", "")
        if response.body and content_type.split(";")[0].strip() == "application/json":
            try:
                return json.loads(response.body)
            except json.JSONDecodeError as exc:
                raise ExecutionError(f"failed to parse response body: {exc}") from exc
        return response.body

    return run


__all__ = ["APIClient", "APIRequest", "APIResponse", "api_task"]

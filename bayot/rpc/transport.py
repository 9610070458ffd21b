"""
JSON-RPC over HTTP transports.

A transport is anything with a ``request(namespace, method, params,
on_success, on_error)`` method. ``on_success`` receives the decoded
response object (the one carrying ``result``); ``on_error`` receives either
the decoded response carrying ``error`` or a string describing a failure
below the application layer (connection refused, timeout, bad body).
RpcCall normalizes both forms.

Two implementations are provided:
- JsonRpcTransport: blocking, built on ``httpx.Client``
- AsyncJsonRpcTransport: non-blocking, built on ``httpx.AsyncClient``;
  each request runs as a task on the running asyncio loop
"""
import asyncio
import itertools
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set

import httpx

from bayot.config import RpcSettings

SuccessHandler = Callable[[Any], None]
ErrorHandler = Callable[[Any], None]


class RpcTransport(Protocol):
    """Protocol for the transport primitive consumed by RpcCall."""
    def request(
        self,
        namespace: str,
        method: str,
        params: Dict[str, Any],
        on_success: SuccessHandler,
        on_error: ErrorHandler,
    ) -> None: ...


class _JsonRpcBase:
    _logger = logging.getLogger("JsonRpcTransport")

    def __init__(self, settings: Optional[RpcSettings] = None):
        self.settings = settings or RpcSettings()
        self._ids = itertools.count(1)

    def build_payload(self, namespace: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        call_params = dict(params or {})
        if self.settings.api_key:
            call_params.setdefault("Bugzilla_api_key", self.settings.api_key)
        return {
            "method": f"{namespace}.{method}",
            "params": [call_params],
            "id": next(self._ids),
        }

    def _dispatch(self, http_response: httpx.Response, on_success: SuccessHandler, on_error: ErrorHandler) -> None:
        try:
            body = http_response.json()
        except ValueError as e:
            self._logger.error(f"Undecodable response (HTTP {http_response.status_code}): {e}")
            on_error(f"Invalid response body: {e}")
            return

        if isinstance(body, dict) and body.get("error") is not None:
            on_error(body)
        elif http_response.is_error:
            on_error(f"HTTP {http_response.status_code}")
        elif isinstance(body, dict) and "result" in body:
            on_success(body)
        else:
            self._logger.error(f"Malformed JSON-RPC response: {body!r}")
            on_error("Malformed JSON-RPC response")


class JsonRpcTransport(_JsonRpcBase):
    """
    Blocking transport: the callbacks run before ``request()`` returns.

    Args:
        settings: Endpoint, timeout and API key
        client: Optional preconfigured ``httpx.Client`` (tests pass one
            built on ``httpx.MockTransport``)
    """

    def __init__(self, settings: Optional[RpcSettings] = None, client: Optional[httpx.Client] = None):
        super().__init__(settings)
        self._client = client or httpx.Client(timeout=self.settings.timeout)

    def request(self, namespace, method, params, on_success, on_error) -> None:
        payload = self.build_payload(namespace, method, params)
        self._logger.debug(f"POST {self.settings.endpoint} {payload['method']} id={payload['id']}")
        try:
            http_response = self._client.post(self.settings.endpoint, json=payload)
        except httpx.HTTPError as e:
            self._logger.error(f"{payload['method']} transport failure: {e}")
            on_error(str(e) or type(e).__name__)
            return
        self._dispatch(http_response, on_success, on_error)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "JsonRpcTransport":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class AsyncJsonRpcTransport(_JsonRpcBase):
    """
    Asyncio transport: ``request()`` returns immediately and the callbacks
    fire on the event loop once the HTTP round trip finishes.

    Must be used from inside a running loop.
    """

    def __init__(self, settings: Optional[RpcSettings] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings)
        self._client = client or httpx.AsyncClient(timeout=self.settings.timeout)
        self._tasks: Set[asyncio.Task] = set()

    def request(self, namespace, method, params, on_success, on_error) -> None:
        payload = self.build_payload(namespace, method, params)
        task = asyncio.get_running_loop().create_task(self._send(payload, on_success, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, payload: Dict[str, Any], on_success: SuccessHandler, on_error: ErrorHandler) -> None:
        self._logger.debug(f"POST {self.settings.endpoint} {payload['method']} id={payload['id']}")
        try:
            http_response = await self._client.post(self.settings.endpoint, json=payload)
        except httpx.HTTPError as e:
            self._logger.error(f"{payload['method']} transport failure: {e}")
            on_error(str(e) or type(e).__name__)
            return
        self._dispatch(http_response, on_success, on_error)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every outstanding request has fired its callbacks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()

"""
RpcCall: one remote procedure invocation and its completion callbacks.

State machine::

    created -> started -> succeeded
                       -> failed

``succeeded`` and ``failed`` are terminal. Subscriptions made after the call
reached a terminal state are replayed with the recorded outcome.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Generator, Optional, TYPE_CHECKING

from bayot.errors import RemoteError
from bayot.rpc.callbacks import Callbacks

if TYPE_CHECKING:
    from bayot.rpc.transport import RpcTransport


class RpcState(str, Enum):
    created = "created"
    started = "started"
    succeeded = "succeeded"
    failed = "failed"


def normalize_error(response: Any) -> RemoteError:
    """
    Turn whatever the transport reported into a RemoteError.

    A structured error object (either bare or under an ``error`` key) is
    kept verbatim. Anything else, typically a string from the HTTP layer,
    means the failure happened below the application and is reported as a
    generic network error.
    """
    if isinstance(response, dict):
        error = response.get("error", response)
        if isinstance(error, dict):
            return RemoteError.from_payload(error)
    return RemoteError.network_error()


class RpcCall:
    """
    Wraps the parameters of a remote call together with callbacks
    indicating its completion state.

    Args:
        transport: Object implementing ``request(namespace, method, params,
            on_success, on_error)``
        namespace: Remote namespace, e.g. ``"Bug"``
        method: Method name within the namespace, e.g. ``"update"``
        params: Single parameter object for the call
        immediate: If False the call is not started until :meth:`start`
            is invoked (e.g. when the caller wants to subscribe first)

    All subscription methods return the call itself so they can be chained::

        RpcCall(transport, "Bug", "get", {"ids": [1]}).done(show).fail(report)
    """
    _logger = logging.getLogger("RpcCall")

    def __init__(
        self,
        transport: "RpcTransport",
        namespace: str,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        immediate: bool = True,
    ):
        self.transport = transport
        self.namespace = namespace
        self.method = method
        self.params: Dict[str, Any] = params or {}
        self.state = RpcState.created
        self.response: Any = None
        self.error: Optional[RemoteError] = None

        # started: call object; done: result; fail: RemoteError; complete: call object
        self._started_cb = Callbacks(f"{self.name}.started", memory=True)
        self._done_cb = Callbacks(f"{self.name}.done", memory=True)
        self._fail_cb = Callbacks(f"{self.name}.fail", memory=True)
        self._complete_cb = Callbacks(f"{self.name}.complete", memory=True)

        if immediate:
            self.start()

    @property
    def name(self) -> str:
        return f"{self.namespace}.{self.method}"

    @property
    def is_terminal(self) -> bool:
        return self.state in (RpcState.succeeded, RpcState.failed)

    def started(self, callback: Callable[["RpcCall"], Any]) -> "RpcCall":
        self._started_cb.add(callback)
        return self

    def done(self, callback: Callable[[Any], Any]) -> "RpcCall":
        self._done_cb.add(callback)
        return self

    def fail(self, callback: Callable[[RemoteError], Any]) -> "RpcCall":
        self._fail_cb.add(callback)
        return self

    def complete(self, callback: Callable[["RpcCall"], Any]) -> "RpcCall":
        self._complete_cb.add(callback)
        return self

    def start(self) -> "RpcCall":
        """Hand the call to the transport. A call can only be started once."""
        if self.state != RpcState.created:
            raise RuntimeError(f"{self.name}: cannot start a call in state {self.state.value}")
        self.state = RpcState.started
        self._logger.info(f"Starting RPC {self.name}")
        self._started_cb.fire(self)
        try:
            self.transport.request(self.namespace, self.method, self.params, self._on_success, self._on_error)
        except Exception as e:
            self._logger.error(f"Transport raised while sending {self.name}: {e}", exc_info=True)
            self._on_error(str(e))
        return self

    def _on_success(self, response: Any) -> None:
        """Record the RPC result and fire done, then complete."""
        if self.is_terminal:
            self._logger.warning(f"{self.name}: late success ignored, call already {self.state.value}")
            return
        self.response = response.get("result") if isinstance(response, dict) else response
        self.state = RpcState.succeeded
        self._logger.info(f"RPC {self.name} succeeded")
        self._done_cb.fire(self.response)
        self._complete_cb.fire(self)

    def _on_error(self, response: Any) -> None:
        """Record the normalized error and fire fail, then complete."""
        if self.is_terminal:
            self._logger.warning(f"{self.name}: late failure ignored, call already {self.state.value}")
            return
        self.error = normalize_error(response)
        self.state = RpcState.failed
        self._logger.error(f"RPC {self.name} failed: {self.error.data}")
        self._fail_cb.fire(self.error)
        self._complete_cb.fire(self)

    def __await__(self) -> Generator[Any, None, Any]:
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_done(result: Any) -> None:
            if not future.done():
                future.set_result(result)

        def on_fail(error: RemoteError) -> None:
            if not future.done():
                future.set_exception(error)

        self.done(on_done)
        self.fail(on_fail)
        return future.__await__()

    def __repr__(self) -> str:
        return f"RpcCall({self.name}, state={self.state.value})"

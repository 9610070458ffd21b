"""
Completion handle for multi-step operations (entity save/fetch, schema load).
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Generator, Optional, Tuple

from bayot.rpc.callbacks import Callbacks


class DeferredState(str, Enum):
    pending = "pending"
    resolved = "resolved"
    rejected = "rejected"


class Deferred:
    """
    A pending outcome with ``done``/``fail``/``complete`` subscriptions.

    ``done`` subscribers receive the resolve arguments, ``fail`` subscribers
    the reject arguments, ``complete`` subscribers the deferred itself.
    ``done``/``fail`` always fire before ``complete``. Subscriptions made
    after the outcome is known fire immediately.

    Awaiting a deferred returns the first resolve argument, or raises the
    last reject argument if it is an exception.
    """
    _logger = logging.getLogger("Deferred")

    def __init__(self, name: str = "deferred"):
        self.name = name
        self.state = DeferredState.pending
        self.value: Tuple[Any, ...] = ()
        self.reason: Tuple[Any, ...] = ()
        self._done_cb = Callbacks(f"{name}.done", memory=True)
        self._fail_cb = Callbacks(f"{name}.fail", memory=True)
        self._complete_cb = Callbacks(f"{name}.complete", memory=True)

    @property
    def is_pending(self) -> bool:
        return self.state == DeferredState.pending

    def done(self, callback: Callable[..., Any]) -> "Deferred":
        self._done_cb.add(callback)
        return self

    def fail(self, callback: Callable[..., Any]) -> "Deferred":
        self._fail_cb.add(callback)
        return self

    def complete(self, callback: Callable[["Deferred"], Any]) -> "Deferred":
        self._complete_cb.add(callback)
        return self

    def resolve(self, *args: Any) -> None:
        if not self.is_pending:
            self._logger.warning(f"{self.name}: resolve() ignored, already {self.state.value}")
            return
        self.state = DeferredState.resolved
        self.value = args
        self._done_cb.fire(*args)
        self._complete_cb.fire(self)

    def reject(self, *args: Any) -> None:
        if not self.is_pending:
            self._logger.warning(f"{self.name}: reject() ignored, already {self.state.value}")
            return
        self.state = DeferredState.rejected
        self.reason = args
        self._fail_cb.fire(*args)
        self._complete_cb.fire(self)

    def __await__(self) -> Generator[Any, None, Any]:
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_done(*args: Any) -> None:
            if not future.done():
                future.set_result(args[0] if args else None)

        def on_fail(*args: Any) -> None:
            if future.done():
                return
            error: Optional[BaseException] = args[-1] if args and isinstance(args[-1], BaseException) else None
            future.set_exception(error or RuntimeError(f"{self.name} failed: {args!r}"))

        self.done(on_done)
        self.fail(on_fail)
        return future.__await__()

    def __repr__(self) -> str:
        return f"Deferred({self.name!r}, state={self.state.value})"

"""
Subscriber lists used for RPC completion and entity change events.
"""
import logging
from typing import Any, Callable, List, Optional, Tuple

Callback = Callable[..., Any]


class Callbacks:
    """
    An ordered list of subscriber functions for one event category.

    Subscribers run in registration order. An exception raised by one
    subscriber is logged with its traceback and the remaining subscribers
    still run.

    With ``memory=True`` the list remembers the arguments of the last
    ``fire()``: a subscriber added afterwards is called immediately with
    them. RPC outcomes use this so late subscribers still see the result.
    """
    _logger = logging.getLogger("Callbacks")

    def __init__(self, name: str = "callbacks", memory: bool = False):
        self.name = name
        self.memory = memory
        self._callbacks: List[Callback] = []
        self._memo: Optional[Tuple[Any, ...]] = None

    @property
    def fired(self) -> bool:
        return self._memo is not None

    def add(self, callback: Callback) -> "Callbacks":
        if not callable(callback):
            raise TypeError(f"{self.name}: callback must be callable, got {type(callback).__name__}")
        self._callbacks.append(callback)
        if self.memory and self._memo is not None:
            self._run(callback, self._memo)
        return self

    def remove(self, callback: Callback) -> bool:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
            return True
        return False

    def has(self, callback: Callback) -> bool:
        return callback in self._callbacks

    def fire(self, *args: Any) -> None:
        if self.memory:
            self._memo = args
        # Copy so a subscriber may add or remove subscribers while we iterate
        for callback in list(self._callbacks):
            self._run(callback, args)

    def clear(self) -> None:
        self._callbacks.clear()

    def _run(self, callback: Callback, args: Tuple[Any, ...]) -> None:
        try:
            callback(*args)
        except Exception as e:
            self._logger.error(f"Error in {self.name} callback {callback!r}: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._callbacks)

"""
Error types raised by the bug entry core.

- SchemaError: malformed field schema (dangling or cyclic dependency links)
- UnknownFieldError: caller referenced a field the registry does not know
- RemoteError: normalized failure reported by the remote service
"""
from typing import Any, Dict, Optional

# JSON-RPC "internal error", used when the transport gives us nothing structured
NETWORK_ERROR_CODE = -32603
NETWORK_ERROR_MESSAGE = "Network error or other unexpected problem"


class BayotError(Exception):
    """Base class for all bayot errors."""


class SchemaError(BayotError):
    """The field descriptor table cannot be turned into a dependency index."""


class UnknownFieldError(BayotError, KeyError):
    """Neither a field name nor an internal alias matched."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown field: {self.name!r}"


class RemoteError(BayotError):
    """
    A failed RPC, normalized to ``{code, message, ...}``.

    ``data`` holds the structured error object exactly as the service
    reported it, so callers can inspect service specific keys.
    """

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data: Dict[str, Any] = data if data is not None else {"message": message, "code": code}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RemoteError":
        """Wrap a structured error object without altering it."""
        return cls(
            message=str(payload.get("message", "")),
            code=payload.get("code"),
            data=payload,
        )

    @classmethod
    def network_error(cls) -> "RemoteError":
        return cls.from_payload({"message": NETWORK_ERROR_MESSAGE, "code": NETWORK_ERROR_CODE})

    def __repr__(self) -> str:
        return f"RemoteError(code={self.code!r}, message={self.message!r})"

"""
Remote call layer: subscriber lists, completion handles, RpcCall and
JSON-RPC transports.
"""
from .callbacks import Callbacks
from .deferred import Deferred, DeferredState
from .call import RpcCall, RpcState, normalize_error
from .transport import RpcTransport, JsonRpcTransport, AsyncJsonRpcTransport

__all__ = [
    "Callbacks",
    "Deferred",
    "DeferredState",
    "RpcCall",
    "RpcState",
    "normalize_error",
    "RpcTransport",
    "JsonRpcTransport",
    "AsyncJsonRpcTransport",
]

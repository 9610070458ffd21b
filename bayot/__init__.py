"""
bayot: client-side core for creating and editing bug records whose schema
is discovered at runtime from a remote JSON-RPC service.

Main components:
- FieldRegistry: field descriptors and their dependency index
- FieldLoader: fetches the schema from the service
- Bug: confirmed state, pending edits, dependency propagation, save/fetch
- RpcCall: one remote call with started/done/fail/complete callbacks
- JsonRpcTransport / AsyncJsonRpcTransport: HTTP transports
"""
from bayot.errors import BayotError, SchemaError, UnknownFieldError, RemoteError
from bayot.config import RpcSettings
from bayot.rpc import (
    Callbacks,
    Deferred,
    RpcCall,
    RpcState,
    JsonRpcTransport,
    AsyncJsonRpcTransport,
)
from bayot.fields import (
    FieldType,
    FieldValue,
    FieldDescriptor,
    FieldRegistry,
    DependencyIndex,
    FieldLoader,
)
from bayot.bug import Bug

__all__ = [
    "BayotError",
    "SchemaError",
    "UnknownFieldError",
    "RemoteError",
    "RpcSettings",
    "Callbacks",
    "Deferred",
    "RpcCall",
    "RpcState",
    "JsonRpcTransport",
    "AsyncJsonRpcTransport",
    "FieldType",
    "FieldValue",
    "FieldDescriptor",
    "FieldRegistry",
    "DependencyIndex",
    "FieldLoader",
    "Bug",
]

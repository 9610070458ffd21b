"""
Runtime configuration for talking to the remote bug service.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class RpcSettings(BaseModel):
    """
    Connection settings shared by the JSON-RPC transports.

    Values can be given directly or read from the environment (and a
    ``.env`` file) with :meth:`from_env`.
    """
    endpoint: str = Field(
        default="jsonrpc.cgi",
        description="URL of the JSON-RPC endpoint"
    )

    timeout: float = Field(
        default=30.0,
        description="Request timeout in seconds",
        gt=0
    )

    api_key: Optional[str] = Field(
        default=None,
        description="API key sent as Bugzilla_api_key with every call"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level used by the example scripts"
    )

    @classmethod
    def from_env(cls) -> "RpcSettings":
        """Build settings from BAYOT_* environment variables."""
        load_dotenv()
        defaults = cls()
        return cls(
            endpoint=os.getenv("BAYOT_RPC_ENDPOINT", defaults.endpoint),
            timeout=float(os.getenv("BAYOT_RPC_TIMEOUT", defaults.timeout)),
            api_key=os.getenv("BAYOT_API_KEY") or None,
            log_level=os.getenv("BAYOT_LOG_LEVEL", defaults.log_level).upper(),
        )

# echoledger/retrieval/__init__.py
"""
Content-addressed blob stores and the resilient fetch wrapper around them.
"""

from abc import ABC, abstractmethod
from typing import Any

from echoledger.core.errors import EchoLedgerError


class BlobNotFound(EchoLedgerError):
    """Raised by a store when the blob does not exist. Never retried."""


class BlobUnavailable(EchoLedgerError):
    """Raised by a store for transient misses (propagation, gateway hiccups). Retried."""


class BlobStore(ABC):
    """A store keyed by content hash. Implementations fetch exactly once per call."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return raw bytes, parsed JSON, or text, whichever the backend produces."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_store(base_url: str, token: str = None, timeout: float = 30.0) -> BlobStore:
    if base_url.startswith(("http://", "https://")):
        from .gateway import GatewayBlobStore
        return GatewayBlobStore(base_url, token=token, timeout=timeout)
    raise ValueError(f"Unsupported blob store URL: {base_url}")


from .retry import ResilientFetcher

__all__ = ["BlobStore", "BlobNotFound", "BlobUnavailable", "ResilientFetcher", "create_store"]

"""Leased key-value store protocol."""
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class LeasedStore(Protocol):
    """Durable keyed storage where every entry lives under a renewable lease."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def has(self, key: str) -> bool: ...

    def extend_ttl(self, key: str, ttl: int) -> None: ...

    def transaction(self) -> AbstractAsyncContextManager[None]: ...

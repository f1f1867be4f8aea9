"""Key-value store interface backing the instance registry."""

from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """Opaque string-keyed store of JSON-compatible values.

    Implementations: RedisKeyValueStore.

    There is no multi-key transaction: callers must not assume that two
    ``set`` calls are applied atomically.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under key (overwrites)."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        ...

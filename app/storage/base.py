import threading
from abc import ABC, abstractmethod
from functools import lru_cache

from app.core.config import get_settings


class RecordStore(ABC):
    """Synchronous key-value store holding serialized collections by slot name.

    ``lock`` serializes compound read-modify-write sequences across callers.
    Backends raise StoreUnavailableError when the underlying medium fails.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the raw value for key, or None if unset."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored."""
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


@lru_cache
def get_store() -> RecordStore:
    settings = get_settings()
    if settings.store_backend == "redis":
        from app.storage.redis import RedisStore
        return RedisStore()
    if settings.store_backend == "local":
        from app.storage.local import LocalStore
        return LocalStore()
    from app.storage.memory import MemoryStore
    return MemoryStore()

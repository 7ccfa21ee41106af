import redis

from app.core.config import get_settings
from app.core.exceptions import StoreUnavailableError
from app.storage.base import RecordStore


class RedisStore(RecordStore):
    """Store shared by every process pointed at the same Redis database."""

    def __init__(self, client: redis.Redis | None = None, prefix: str | None = None) -> None:
        super().__init__()
        settings = get_settings()
        self.prefix = settings.store_key_prefix if prefix is None else prefix
        self._client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot read {key}: {e}", details={"key": key}) from e

    def set(self, key: str, value: str) -> None:
        try:
            self._client.set(self._key(key), value)
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot write {key}: {e}", details={"key": key}) from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot delete {key}: {e}", details={"key": key}) from e

    def keys(self) -> list[str]:
        try:
            raw = self._client.scan_iter(match=f"{self.prefix}*")
            return sorted(k[len(self.prefix):] for k in raw)
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot list keys: {e}") from e

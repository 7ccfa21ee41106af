from app.storage.base import RecordStore


class MemoryStore(RecordStore):
    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        with self.lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self.lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self.lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self.lock:
            return list(self._data)

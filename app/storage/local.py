import os
import tempfile
from pathlib import Path

from app.core.config import get_settings
from app.core.exceptions import StoreUnavailableError
from app.storage.base import RecordStore


class LocalStore(RecordStore):
    """One file per slot under STORE_LOCAL_PATH."""

    SUFFIX = ".json"

    def __init__(self, root: str | Path | None = None) -> None:
        super().__init__()
        self.root = Path(root or get_settings().store_local_path)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        with self.lock:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StoreUnavailableError(f"Cannot read {key}: {e}", details={"key": key}) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        with self.lock:
            try:
                fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp, path)
            except OSError as e:
                raise StoreUnavailableError(f"Cannot write {key}: {e}", details={"key": key}) from e

    def delete(self, key: str) -> None:
        with self.lock:
            try:
                self._path(key).unlink(missing_ok=True)
            except OSError as e:
                raise StoreUnavailableError(f"Cannot delete {key}: {e}", details={"key": key}) from e

    def keys(self) -> list[str]:
        with self.lock:
            return sorted(p.name[: -len(self.SUFFIX)] for p in self.root.glob(f"*{self.SUFFIX}"))

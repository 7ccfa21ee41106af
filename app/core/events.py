"""In-process notifications for the UI layer: data_changed, users_recovered."""

import threading
from collections import defaultdict
from functools import lru_cache
from typing import Any, Callable

from app.core.logging import get_logger

log = get_logger(__name__)

DATA_CHANGED = "data_changed"
USERS_RECOVERED = "users_recovered"

Handler = Callable[..., None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register handler; return a callable that unsubscribes it."""
        with self._lock:
            self._handlers[name].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[name]:
                    self._handlers[name].remove(handler)

        return _unsubscribe

    def emit(self, name: str, **payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(name, ()))
        for handler in handlers:
            try:
                handler(**payload)
            except Exception:
                log.exception("event_handler_failed", event=name)


@lru_cache
def get_event_bus() -> EventBus:
    return EventBus()

import os
from decimal import Decimal
from typing import Any, Generator

import pytest

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("ADMIN_EMAIL", "admin@credox.com")
os.environ.setdefault("ADMIN_PASSWORD", "admin-pass")
os.environ.setdefault("MONITOR_STARTUP_DELAY_SECONDS", "0.05")

from app.core.config import Settings  # noqa: E402
from app.core.events import DATA_CHANGED, USERS_RECOVERED, EventBus  # noqa: E402
from app.models.user import UserRecord  # noqa: E402
from app.services.ledger import KYCLedger, TransactionLedger  # noqa: E402
from app.services.monitoring import UserIntegrityMonitor  # noqa: E402
from app.services.persistence import UserPersistenceManager  # noqa: E402
from app.storage.memory import MemoryStore  # noqa: E402


def _make_user(n: int = 1, **fields: Any) -> UserRecord:
    data = {
        "id": f"user-{n}",
        "name": f"User {n}",
        "email": f"user{n}@example.com",
        "account_id": f"CR-{100000 + n}",
        "cash_balance": Decimal("0"),
    }
    data.update(fields)
    return UserRecord(**data)


@pytest.fixture
def make_user():
    return _make_user


@pytest.fixture
def settings() -> Settings:
    return Settings(
        MAX_RECOVERY_ATTEMPTS=3,
        MONITOR_INTERVAL_SECONDS=0.05,
        CHANGE_CHECK_DELAY_SECONDS=0.01,
        BACKUP_INTERVAL_SECONDS=0.05,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def persistence(store: MemoryStore, settings: Settings) -> UserPersistenceManager:
    return UserPersistenceManager(store, settings)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def received(events: EventBus) -> list[tuple[str, dict]]:
    """Every event emitted on the bus, in order."""
    out: list[tuple[str, dict]] = []
    for name in (DATA_CHANGED, USERS_RECOVERED):
        events.subscribe(name, lambda _name=name, **payload: out.append((_name, payload)))
    return out


@pytest.fixture
def tx_ledger(persistence: UserPersistenceManager, events: EventBus) -> TransactionLedger:
    return TransactionLedger(persistence, events)


@pytest.fixture
def kyc_ledger(persistence: UserPersistenceManager, events: EventBus) -> KYCLedger:
    return KYCLedger(persistence, events)


@pytest.fixture
def monitor(persistence: UserPersistenceManager, events: EventBus, settings: Settings) -> UserIntegrityMonitor:
    return UserIntegrityMonitor(persistence, events, settings)


def _clear_singletons() -> None:
    from app.core.events import get_event_bus
    from app.services.ledger import get_kyc_ledger, get_transaction_ledger
    from app.services.monitoring import get_monitor
    from app.services.persistence import get_persistence
    from app.storage.base import get_store

    for cached in (get_store, get_persistence, get_monitor, get_transaction_ledger, get_kyc_ledger, get_event_bus):
        cached.cache_clear()


@pytest.fixture
def client() -> Generator:
    from fastapi.testclient import TestClient

    from app.main import app

    _clear_singletons()
    with TestClient(app) as c:
        yield c
    _clear_singletons()

"""User persistence with redundant backup copies and best-of-N reads."""

import asyncio
import time
from functools import lru_cache
from typing import Any

import orjson
from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import StoreUnavailableError, ValidationFailedError
from app.core.logging import get_logger
from app.models.user import UserRecord
from app.storage.base import RecordStore, get_store

log = get_logger(__name__)

USERS = "users"
BACKUP_SLOTS = ("users_backup", "users_backup_2", "users_backup_3")
USER_SLOTS = (USERS, *BACKUP_SLOTS)
USERS_TIMESTAMP = "users_timestamp"
USERS_COUNT = "users_count"

PENDING_TRANSACTIONS = "pendingTransactions"
TRANSACTIONS = "transactions"
PENDING_KYC = "pendingKYC"
COMPLETED_KYC = "completedKYC"


def parse_collection(raw: str | None) -> list[dict[str, Any]] | None:
    """Decode a slot value; None unless it is a JSON array of objects."""
    if not raw or raw in ("undefined", "null"):
        return None
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(data, list) or not all(isinstance(x, dict) for x in data):
        return None
    return data


def dump_collection(items: list[dict[str, Any]]) -> str:
    return orjson.dumps(items).decode()


def _dump_user(user: UserRecord) -> dict[str, Any]:
    return user.model_dump(mode="json", by_alias=True)


def _user_field_names() -> dict[str, str]:
    names = {}
    for name, field in UserRecord.model_fields.items():
        names[name] = name
        if field.alias:
            names[field.alias] = name
        if field.serialization_alias:
            names[field.serialization_alias] = name
    names["password"] = "password_hash"
    return names


class UserPersistenceManager:
    """Owns every read and write of the users collection and its backups.

    Reads never raise: store failures and corrupt slots degrade to the next
    copy, and finally to an empty list.
    """

    def __init__(self, store: RecordStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._backup_task: asyncio.Task | None = None

    # -- raw slot access ---------------------------------------------------

    def _get(self, key: str) -> str | None:
        try:
            return self.store.get(key)
        except StoreUnavailableError as e:
            log.error("store_read_failed", key=key, error=e.message)
            return None

    def _set(self, key: str, value: str) -> bool:
        try:
            self.store.set(key, value)
            return True
        except StoreUnavailableError as e:
            log.error("store_write_failed", key=key, error=e.message)
            return False

    def _write_slots(self, slots: tuple[str, ...], data: str) -> list[str]:
        """Write data to each slot independently; return the slots that failed."""
        failed = [slot for slot in slots if not self._set(slot, data)]
        self._set(USERS_TIMESTAMP, str(int(time.time() * 1000)))
        return failed

    def read_best_copy(self, include_canonical: bool = True) -> tuple[str | None, list[dict[str, Any]]]:
        """Return (slot, records) of the longest valid copy; (None, []) if none."""
        slots = USER_SLOTS if include_canonical else BACKUP_SLOTS
        best_slot, best = None, []
        for slot in slots:
            data = parse_collection(self._get(slot))
            if data is not None and len(data) > len(best):
                best_slot, best = slot, data
        return best_slot, best

    def read_canonical(self) -> list[dict[str, Any]]:
        return parse_collection(self._get(USERS)) or []

    def write_backups(self, records: list[dict[str, Any]]) -> list[str]:
        """Rewrite every backup slot (not the canonical one) from records."""
        with self.store.lock:
            failed = self._write_slots(BACKUP_SLOTS, dump_collection(records))
        if failed:
            log.warning("backup_write_partial", failed=failed)
        return failed

    def restore_users(self, records: list[dict[str, Any]]) -> list[str]:
        """Overwrite canonical and backup slots with records (recovery path)."""
        with self.store.lock:
            data = dump_collection(records)
            failed = self._write_slots(USER_SLOTS, data)
            self._set(USERS_COUNT, str(len(records)))
        return failed

    # -- users -------------------------------------------------------------

    def _valid_users(self, slot: str, data: list[dict[str, Any]]) -> list[UserRecord]:
        users = []
        for item in data:
            try:
                users.append(UserRecord.model_validate(item))
            except ValidationError as e:
                log.warning("user_record_invalid", slot=slot, id=item.get("id"), errors=e.error_count())
        return users

    def read_users(self) -> tuple[list[dict[str, Any]], list[UserRecord]]:
        """Return (records, users): every stored record and the valid ones among them.

        The canonical copy is used while it holds at least one valid user.
        Otherwise the backup with the most valid users wins (first wins ties)
        and the canonical slot is rewritten from it. Records that fail
        validation stay in ``records`` so writes carry them through.
        """
        with self.store.lock:
            canonical = parse_collection(self._get(USERS))
            if canonical:
                users = self._valid_users(USERS, canonical)
                if users:
                    return canonical, users

            best_slot, best_raw, best_records, best_users = None, None, [], []
            for slot in BACKUP_SLOTS:
                raw = self._get(slot)
                data = parse_collection(raw)
                if not data:
                    continue
                users = self._valid_users(slot, data)
                if len(users) > len(best_users):
                    best_slot, best_raw, best_records, best_users = slot, raw, data, users

            if best_slot is None:
                if canonical:
                    log.error("users_slot_invalid", slot=USERS, count=len(canonical))
                    return canonical, []
                log.debug("users_empty")
                return [], []
            log.warning("users_loaded_from_backup", slot=best_slot, count=len(best_records))
            if self._set(USERS, best_raw):
                log.info("users_primary_restored", slot=best_slot, count=len(best_records))
            return best_records, best_users

    def load_users(self) -> list[UserRecord]:
        """Valid users of the best available copy; see ``read_users``."""
        return self.read_users()[1]

    def save_records(self, records: list[dict[str, Any]]) -> bool:
        """Write canonical then every backup; True when all slots were written."""
        with self.store.lock:
            failed = self._write_slots(USER_SLOTS, dump_collection(records))
            if not self._set(USERS_COUNT, str(len(records))):
                failed.append(USERS_COUNT)
        if failed:
            log.error("users_saved_partial", count=len(records), failed=failed)
            return False
        log.info("users_saved", count=len(records))
        return True

    def save_users(self, users: list[UserRecord]) -> bool:
        """Replace the whole collection with users."""
        return self.save_records([_dump_user(u) for u in users])

    def add_user(self, user: UserRecord) -> list[UserRecord]:
        """Append user and save. Duplicate emails are the caller's concern."""
        with self.store.lock:
            records, users = self.read_users()
            records.append(_dump_user(user))
            users.append(user)
            self.save_records(records)
        return users

    def update_user(self, user_id: str, updates: dict[str, Any]) -> list[UserRecord]:
        """Shallow-merge updates into the matching record; unknown id is a no-op."""
        names = _user_field_names()
        with self.store.lock:
            records, users = self.read_users()
            for i, user in enumerate(users):
                if user.id == user_id:
                    break
            else:
                log.warning("user_not_found_for_update", user_id=user_id)
                return users
            merged = user.model_dump()
            merged.update({names.get(k, k): v for k, v in updates.items()})
            merged["id"] = user.id
            try:
                users[i] = UserRecord.model_validate(merged)
            except ValidationError as e:
                raise ValidationFailedError(
                    "Invalid user update", details={"errors": e.errors(include_url=False, include_context=False)}
                ) from e
            j = next(j for j, r in enumerate(records) if r.get("id") == user_id)
            records[j] = _dump_user(users[i])
            self.save_records(records)
        return users

    def get_user(self, user_id: str) -> UserRecord | None:
        return next((u for u in self.load_users() if u.id == user_id), None)

    def find_user_by_email(self, email: str) -> UserRecord | None:
        email = email.strip().lower()
        return next((u for u in self.load_users() if u.normalized_email == email), None)

    def get_non_admin_users(self) -> list[UserRecord]:
        admin_email = self.settings.admin_email.lower()
        return [u for u in self.load_users() if u.email and not u.is_admin and u.normalized_email != admin_email]

    # -- other collections -------------------------------------------------

    def load_collection(self, slot: str) -> list[dict[str, Any]]:
        data = parse_collection(self._get(slot))
        if data is None:
            return []
        return data

    def save_collection(self, slot: str, items: list[dict[str, Any]]) -> bool:
        return self._set(slot, dump_collection(items))

    def read_value(self, key: str) -> str | None:
        return self._get(key)

    def write_value(self, key: str, value: str) -> bool:
        return self._set(key, value)

    # -- periodic re-sync --------------------------------------------------

    def run_periodic_backup(self) -> None:
        records, _ = self.read_users()
        if records:
            self.save_records(records)

    async def _periodic_backup_loop(self) -> None:
        interval = self.settings.backup_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                self.run_periodic_backup()
            except Exception:
                log.exception("periodic_backup_failed")

    def start_periodic_backup(self) -> None:
        if self._backup_task and not self._backup_task.done():
            return
        self._backup_task = asyncio.get_running_loop().create_task(self._periodic_backup_loop())
        log.info("periodic_backup_started", interval=self.settings.backup_interval_seconds)

    async def stop_periodic_backup(self) -> None:
        task, self._backup_task = self._backup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("periodic_backup_stopped")


@lru_cache
def get_persistence() -> UserPersistenceManager:
    return UserPersistenceManager(get_store())

"""Account registration, login and admin seeding on top of the persistence manager."""

import secrets
import uuid
from datetime import date

from app.core.config import get_settings
from app.core.events import DATA_CHANGED, EventBus, get_event_bus
from app.core.exceptions import ConflictError, UnauthorizedError, ValidationFailedError
from app.core.logging import get_logger
from app.core.security import hash_password, verify_password
from app.models.user import UserRecord
from app.services.persistence import UserPersistenceManager, get_persistence

log = get_logger(__name__)


def _account_id() -> str:
    return f"CR-{100000 + secrets.randbelow(900000)}"


def register_user(
    name: str,
    email: str,
    password: str,
    *,
    is_admin: bool = False,
    persistence: UserPersistenceManager | None = None,
    events: EventBus | None = None,
) -> UserRecord:
    """Create an account with a zero balance. Emails are unique case-insensitively."""
    persistence = persistence or get_persistence()
    events = events or get_event_bus()
    name, email = (name or "").strip(), (email or "").strip()
    if not name or not email or not password:
        raise ValidationFailedError("All fields are required")
    if "@" not in email:
        raise ValidationFailedError("Invalid email address", details={"email": email})

    with persistence.store.lock:
        if persistence.find_user_by_email(email):
            raise ConflictError("Email is already in use", details={"email": email})
        user = UserRecord(
            id=f"user-{uuid.uuid4().hex}",
            name=name,
            email=email,
            password_hash=hash_password(password),
            account_id=_account_id(),
            join_date=date.today(),
            is_admin=is_admin,
        )
        persistence.add_user(user)
    log.info("user_created", user_id=user.id, email=user.email)
    events.emit(DATA_CHANGED, source="user", id=user.id, status="created")
    return user


def authenticate_user(
    email: str,
    password: str,
    persistence: UserPersistenceManager | None = None,
) -> UserRecord:
    persistence = persistence or get_persistence()
    user = persistence.find_user_by_email(email or "")
    if user is None or not verify_password(password or "", user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    log.info("user_login", user_id=user.id)
    return user


def seed_admin(persistence: UserPersistenceManager | None = None) -> UserRecord | None:
    """Create the configured admin account if a password is set and it is missing."""
    settings = get_settings()
    if not settings.admin_password:
        return None
    persistence = persistence or get_persistence()
    existing = persistence.find_user_by_email(settings.admin_email)
    if existing:
        if not existing.is_admin:
            persistence.update_user(existing.id, {"is_admin": True})
        return existing
    user = register_user("Admin", settings.admin_email, settings.admin_password, is_admin=True, persistence=persistence)
    log.info("admin_seeded", user_id=user.id)
    return user


def session_payload_for_user(user: UserRecord) -> dict:
    return {"user_id": user.id}

"""Shared FastAPI dependencies."""

from fastapi import Request

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import load_session_cookie
from app.models.user import UserRecord
from app.services.ledger import KYCLedger, TransactionLedger, get_kyc_ledger, get_transaction_ledger
from app.services.monitoring import UserIntegrityMonitor, get_monitor
from app.services.persistence import UserPersistenceManager, get_persistence

SESSION_COOKIE_NAME = "credox_session"


def persistence_dep() -> UserPersistenceManager:
    return get_persistence()


def transactions_dep() -> TransactionLedger:
    return get_transaction_ledger()


def kyc_dep() -> KYCLedger:
    return get_kyc_ledger()


def monitor_dep() -> UserIntegrityMonitor:
    return get_monitor()


def get_current_user(request: Request) -> UserRecord:
    """Dependency: load session from cookie and return the stored user."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = get_persistence().get_user(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    return user


def require_admin(request: Request) -> UserRecord:
    """Dependency: require current user to be an admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise ForbiddenError("Admin only")
    return user

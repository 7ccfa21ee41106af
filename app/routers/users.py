from typing import Any

from fastapi import APIRouter, Body, Depends

from app.core.events import DATA_CHANGED, get_event_bus
from app.core.exceptions import NotFoundError
from app.deps import persistence_dep, require_admin
from app.models.user import UserRecord
from app.services.persistence import UserPersistenceManager

router = APIRouter()

# Fields an admin may not overwrite through the generic update
_PROTECTED = {"id", "password", "passwordHash", "password_hash"}


@router.get("")
def users_list(
    _admin: UserRecord = Depends(require_admin),
    persistence: UserPersistenceManager = Depends(persistence_dep),
):
    """Admin: list non-admin accounts."""
    return {"users": [u.public_dict() for u in persistence.get_non_admin_users()]}


@router.patch("/{user_id}")
def users_update(
    user_id: str,
    updates: dict[str, Any] = Body(...),
    _admin: UserRecord = Depends(require_admin),
    persistence: UserPersistenceManager = Depends(persistence_dep),
):
    """Admin: shallow-merge fields into a user record."""
    if persistence.get_user(user_id) is None:
        raise NotFoundError(f"User {user_id} not found")
    clean = {k: v for k, v in updates.items() if k not in _PROTECTED}
    persistence.update_user(user_id, clean)
    get_event_bus().emit(DATA_CHANGED, source="user", id=user_id, status="updated")
    return persistence.get_user(user_id).public_dict()

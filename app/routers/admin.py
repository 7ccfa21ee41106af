from fastapi import APIRouter, Depends

from app.core.exceptions import RecoveryExhaustedError
from app.deps import monitor_dep, require_admin
from app.models.user import UserRecord
from app.services.monitoring import UserIntegrityMonitor

router = APIRouter()


@router.get("/monitor/status")
def admin_monitor_status(
    _admin: UserRecord = Depends(require_admin),
    monitor: UserIntegrityMonitor = Depends(monitor_dep),
):
    """Admin: integrity monitor diagnostics."""
    return monitor.get_status()


@router.post("/monitor/recover")
def admin_force_recovery(
    _admin: UserRecord = Depends(require_admin),
    monitor: UserIntegrityMonitor = Depends(monitor_dep),
):
    """Admin: reset the attempt budget and restore users from the best backup."""
    if not monitor.force_recovery():
        raise RecoveryExhaustedError("No usable backup found", details=monitor.get_status())
    return monitor.get_status()

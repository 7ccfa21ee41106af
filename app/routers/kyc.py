from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_user, kyc_dep, require_admin
from app.models.kyc import KYCDocument
from app.models.user import UserRecord
from app.services.ledger import KYCLedger

router = APIRouter()


class KYCSubmitRequest(BaseModel):
    level: int | str
    documents: list[KYCDocument] = []


@router.post("", status_code=201)
def kyc_submit(
    body: KYCSubmitRequest,
    user: UserRecord = Depends(get_current_user),
    ledger: KYCLedger = Depends(kyc_dep),
):
    documents = [d.model_dump(exclude_none=True) for d in body.documents]
    return ledger.submit(user.id, body.level, documents).model_dump(mode="json", by_alias=True)


@router.get("/status")
def kyc_status(
    user: UserRecord = Depends(get_current_user),
    ledger: KYCLedger = Depends(kyc_dep),
):
    """verified | pending | none for the current user."""
    if user.kyc_verified:
        return {"status": "verified", "level": user.kyc_level}
    if ledger.pending_for_user(user.id):
        return {"status": "pending"}
    return {"status": "none"}


@router.get("/pending")
def kyc_pending(
    _admin: UserRecord = Depends(require_admin),
    ledger: KYCLedger = Depends(kyc_dep),
):
    return {"requests": [k.model_dump(mode="json", by_alias=True) for k in ledger.list_pending()]}


@router.post("/{request_id}/approve")
def kyc_approve(
    request_id: str,
    _admin: UserRecord = Depends(require_admin),
    ledger: KYCLedger = Depends(kyc_dep),
):
    return ledger.approve(request_id).model_dump(mode="json", by_alias=True)


@router.post("/{request_id}/reject")
def kyc_reject(
    request_id: str,
    _admin: UserRecord = Depends(require_admin),
    ledger: KYCLedger = Depends(kyc_dep),
):
    ledger.reject(request_id)
    return {"id": request_id, "status": "rejected"}

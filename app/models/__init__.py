from app.models.user import UserRecord
from app.models.transaction import CompletedTransaction, PendingTransaction
from app.models.kyc import CompletedKYCRequest, KYCDocument, PendingKYCRequest

__all__ = [
    "UserRecord",
    "PendingTransaction",
    "CompletedTransaction",
    "KYCDocument",
    "PendingKYCRequest",
    "CompletedKYCRequest",
]

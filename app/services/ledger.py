"""Pending transaction and KYC request lifecycle: submit, approve, reject.

Approval is not one atomic commit. The user update, the completed-log append
and the pending removal are separate store writes, in that order, so a crash
in between can apply a balance effect without consuming the pending entry.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, ClassVar, Generic, Literal, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.events import DATA_CHANGED, EventBus, get_event_bus
from app.core.exceptions import ConflictError, NotFoundError, ValidationFailedError
from app.core.logging import get_logger
from app.models.kyc import CompletedKYCRequest, PendingKYCRequest
from app.models.transaction import CompletedTransaction, PendingTransaction
from app.models.user import UserRecord
from app.services.persistence import (
    COMPLETED_KYC,
    PENDING_KYC,
    PENDING_TRANSACTIONS,
    TRANSACTIONS,
    UserPersistenceManager,
    get_persistence,
)

log = get_logger(__name__)

P = TypeVar("P", bound=BaseModel)
C = TypeVar("C", bound=BaseModel)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _errors(e: ValidationError) -> list[dict[str, Any]]:
    return e.errors(include_url=False, include_context=False)


class PendingLedger(ABC, Generic[P, C]):
    """State machine Pending -> Completed | Rejected over one pending slot.

    Both terminal states are absorbing: a consumed id is gone from the
    pending slot, so a second approve/reject raises NotFoundError.
    """

    kind: ClassVar[str]
    id_prefix: ClassVar[str]
    pending_slot: ClassVar[str]
    completed_slot: ClassVar[str]
    pending_model: ClassVar[type[BaseModel]]
    completed_model: ClassVar[type[BaseModel]]

    def __init__(self, persistence: UserPersistenceManager, events: EventBus) -> None:
        self.persistence = persistence
        self.events = events

    def new_id(self) -> str:
        return f"{self.id_prefix}-{uuid.uuid4().hex}"

    def _require_user(self, user_id: str) -> UserRecord:
        user = self.persistence.get_user(user_id)
        if user is None:
            raise ValidationFailedError("Unknown user", details={"user_id": user_id})
        return user

    def _parse(self, model: type[BaseModel], items: list[dict[str, Any]], slot: str) -> list:
        out = []
        for item in items:
            try:
                out.append(model.model_validate(item))
            except ValidationError as e:
                log.warning("collection_entry_invalid", slot=slot, id=item.get("id"), errors=e.error_count())
        return out

    def list_pending(self) -> list[P]:
        return self._parse(self.pending_model, self.persistence.load_collection(self.pending_slot), self.pending_slot)

    def list_completed(self) -> list[C]:
        return self._parse(
            self.completed_model, self.persistence.load_collection(self.completed_slot), self.completed_slot
        )

    def pending_for_user(self, user_id: str) -> list[P]:
        return [p for p in self.list_pending() if p.user_id == user_id]

    def _add_pending(self, entity: P) -> P:
        with self.persistence.store.lock:
            items = self.persistence.load_collection(self.pending_slot)
            items.insert(0, entity.model_dump(mode="json", by_alias=True))
            self.persistence.save_collection(self.pending_slot, items)
        log.info(f"{self.kind}_submitted", id=entity.id, user_id=entity.user_id)
        self.events.emit(DATA_CHANGED, source=self.kind, id=entity.id, status="pending")
        return entity

    def _append_completed(self, entity: C) -> None:
        items = self.persistence.load_collection(self.completed_slot)
        items.insert(0, entity.model_dump(mode="json", by_alias=True))
        self.persistence.save_collection(self.completed_slot, items)

    def _complete(self, entity: P, status: str, at: datetime) -> C:
        data = entity.model_dump()
        data.update(status=status, completed_date=at)
        return self.completed_model.model_validate(data)

    @abstractmethod
    def _apply_approval(self, entity: P, at: datetime) -> None:
        """Apply the approved entry to its user."""
        ...

    @abstractmethod
    def _record_rejection(self, entity: P, at: datetime) -> C | None:
        """Log a rejected entry; return the logged record, if any."""
        ...

    def _consume(self, entity_id: str, approve: bool) -> C | None:
        action = "approve" if approve else "reject"
        with self.persistence.store.lock:
            items = self.persistence.load_collection(self.pending_slot)
            raw = next((x for x in items if x.get("id") == entity_id), None)
            if raw is None:
                log.info(f"{self.kind}_not_pending", id=entity_id, action=action)
                raise NotFoundError(f"{self.kind.capitalize()} {entity_id} not found", details={"id": entity_id})
            try:
                entity = self.pending_model.model_validate(raw)
            except ValidationError as e:
                raise ValidationFailedError(
                    f"Pending {self.kind} {entity_id} is malformed", details={"errors": _errors(e)}
                ) from e
            at = _now()
            if approve:
                self._apply_approval(entity, at)
                result = self._complete(entity, "completed", at)
                self._append_completed(result)
            else:
                result = self._record_rejection(entity, at)
            remaining = [x for x in self.persistence.load_collection(self.pending_slot) if x.get("id") != entity_id]
            self.persistence.save_collection(self.pending_slot, remaining)
        status = "completed" if approve else "rejected"
        log.info(f"{self.kind}_{status}", id=entity_id, user_id=entity.user_id)
        self.events.emit(DATA_CHANGED, source=self.kind, id=entity_id, status=status)
        return result

    def approve(self, entity_id: str) -> C:
        return self._consume(entity_id, approve=True)

    def reject(self, entity_id: str) -> C | None:
        return self._consume(entity_id, approve=False)


class TransactionLedger(PendingLedger[PendingTransaction, CompletedTransaction]):
    kind = "transaction"
    id_prefix = "transaction"
    pending_slot = PENDING_TRANSACTIONS
    completed_slot = TRANSACTIONS
    pending_model = PendingTransaction
    completed_model = CompletedTransaction

    def submit(
        self,
        user_id: str,
        type: Literal["deposit", "withdrawal"],
        amount: Decimal | float | str,
        **extra: Any,
    ) -> PendingTransaction:
        """Queue a deposit or withdrawal request for admin review.

        Withdrawals larger than the current balance are accepted here; the
        balance is clamped at zero on approval.
        """
        user = self._require_user(user_id)
        try:
            entity = PendingTransaction.model_validate(
                {
                    **extra,
                    "id": self.new_id(),
                    "user_id": user.id,
                    "user_name": user.name,
                    "type": type,
                    "amount": amount,
                    "date": _now(),
                }
            )
        except ValidationError as e:
            raise ValidationFailedError("Invalid transaction request", details={"errors": _errors(e)}) from e
        return self._add_pending(entity)

    def _apply_approval(self, entity: PendingTransaction, at: datetime) -> None:
        user = self.persistence.get_user(entity.user_id)
        if user is None:
            log.warning("transaction_user_missing", id=entity.id, user_id=entity.user_id)
            return
        delta = entity.amount if entity.type == "deposit" else -entity.amount
        new_balance = max(user.cash_balance + delta, Decimal("0"))
        self.persistence.update_user(user.id, {"cash_balance": new_balance})
        log.info("balance_updated", user_id=user.id, old=str(user.cash_balance), new=str(new_balance))

    def _record_rejection(self, entity: PendingTransaction, at: datetime) -> CompletedTransaction:
        result = self._complete(entity, "rejected", at)
        self._append_completed(result)
        return result

    def adjust_balance(self, user_id: str, delta: Decimal | float | str) -> CompletedTransaction:
        """Admin balance change applied directly, logged as a completed transaction."""
        try:
            delta = Decimal(str(delta))
        except ArithmeticError as e:
            raise ValidationFailedError("Amount must be a number") from e
        if not delta.is_finite() or delta == 0:
            raise ValidationFailedError("Amount must be a non-zero number")
        with self.persistence.store.lock:
            user = self.persistence.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
            new_balance = max(user.cash_balance + delta, Decimal("0"))
            self.persistence.update_user(user.id, {"cash_balance": new_balance})
            at = _now()
            record = CompletedTransaction(
                id=self.new_id(),
                user_id=user.id,
                user_name=user.name,
                type="deposit" if delta > 0 else "withdrawal",
                amount=abs(delta),
                status="completed",
                date=at,
                completed_date=at,
            )
            self._append_completed(record)
        log.info("balance_adjusted", user_id=user.id, delta=str(delta), new=str(new_balance))
        self.events.emit(DATA_CHANGED, source="balance", id=record.id, status="completed")
        return record


class KYCLedger(PendingLedger[PendingKYCRequest, CompletedKYCRequest]):
    kind = "kyc"
    id_prefix = "kyc"
    pending_slot = PENDING_KYC
    completed_slot = COMPLETED_KYC
    pending_model = PendingKYCRequest
    completed_model = CompletedKYCRequest

    def submit(self, user_id: str, level: int | str, documents: list[dict[str, Any]], **extra: Any) -> PendingKYCRequest:
        user = self._require_user(user_id)
        if self.pending_for_user(user.id):
            raise ConflictError("A KYC request is already pending for this user", details={"user_id": user.id})
        try:
            entity = PendingKYCRequest.model_validate(
                {
                    **extra,
                    "id": self.new_id(),
                    "user_id": user.id,
                    "user_name": user.name,
                    "user_email": user.email,
                    "level": level,
                    "documents": documents,
                    "date": _now(),
                }
            )
        except ValidationError as e:
            raise ValidationFailedError("Invalid KYC request", details={"errors": _errors(e)}) from e
        return self._add_pending(entity)

    def _apply_approval(self, entity: PendingKYCRequest, at: datetime) -> None:
        users = self.persistence.update_user(
            entity.user_id,
            {"kyc_verified": True, "kyc_level": entity.level, "kyc_approved_date": at},
        )
        if not any(u.id == entity.user_id for u in users):
            log.warning("kyc_user_missing", id=entity.id, user_id=entity.user_id)

    def _record_rejection(self, entity: PendingKYCRequest, at: datetime) -> None:
        return None


@lru_cache
def get_transaction_ledger() -> TransactionLedger:
    return TransactionLedger(get_persistence(), get_event_bus())


@lru_cache
def get_kyc_ledger() -> KYCLedger:
    return KYCLedger(get_persistence(), get_event_bus())

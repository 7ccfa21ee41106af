"""Transaction and KYC approval lifecycle."""

from decimal import Decimal

import pytest

from app.core.events import DATA_CHANGED
from app.core.exceptions import ConflictError, NotFoundError, ValidationFailedError
from app.services.ledger import PendingLedger
from app.services.persistence import COMPLETED_KYC, PENDING_KYC, PENDING_TRANSACTIONS, TRANSACTIONS

DOCS = [{"type": "Passport", "number": "X123"}, {"type": "Utility Bill"}]


@pytest.fixture
def user(persistence, make_user):
    persistence.save_users([make_user(1), make_user(2, cash_balance=Decimal("30"))])
    return persistence.get_user("user-1")


def test_deposit_approval_credits_balance(tx_ledger, persistence, user):
    tx = tx_ledger.submit(user.id, "deposit", 100)
    assert tx.status == "pending"
    assert tx.user_name == user.name
    assert persistence.get_user(user.id).cash_balance == Decimal("0")

    done = tx_ledger.approve(tx.id)

    assert persistence.get_user(user.id).cash_balance == Decimal("100")
    assert tx_ledger.list_pending() == []
    [entry] = tx_ledger.list_completed()
    assert entry.id == tx.id
    assert entry.status == "completed"
    assert entry.completed_date == done.completed_date


@pytest.mark.usefixtures("user")
def test_withdrawal_approval_clamps_at_zero(tx_ledger, persistence):
    tx = tx_ledger.submit("user-2", "withdrawal", "50")
    tx_ledger.approve(tx.id)
    assert persistence.get_user("user-2").cash_balance == Decimal("0")


@pytest.mark.usefixtures("user")
def test_withdrawal_within_balance(tx_ledger, persistence):
    tx = tx_ledger.submit("user-2", "withdrawal", Decimal("12.25"))
    tx_ledger.approve(tx.id)
    assert persistence.get_user("user-2").cash_balance == Decimal("17.75")


@pytest.mark.usefixtures("user")
def test_reject_logs_without_balance_change(tx_ledger, persistence):
    tx = tx_ledger.submit("user-2", "deposit", 10)
    rejected = tx_ledger.reject(tx.id)
    assert rejected.status == "rejected"
    assert persistence.get_user("user-2").cash_balance == Decimal("30")
    assert tx_ledger.list_pending() == []
    assert [t.status for t in tx_ledger.list_completed()] == ["rejected"]


@pytest.mark.parametrize("first", ["approve", "reject"])
@pytest.mark.parametrize("second", ["approve", "reject"])
def test_consumed_transaction_is_terminal(tx_ledger, persistence, user, first, second):
    tx = tx_ledger.submit(user.id, "deposit", 40)
    getattr(tx_ledger, first)(tx.id)
    balance = persistence.get_user(user.id).cash_balance
    completed = tx_ledger.list_completed()

    with pytest.raises(NotFoundError):
        getattr(tx_ledger, second)(tx.id)

    assert persistence.get_user(user.id).cash_balance == balance
    assert tx_ledger.list_completed() == completed


def test_unknown_id_is_not_found_and_mutates_nothing(tx_ledger, persistence, store, user):
    tx_ledger.submit(user.id, "deposit", 5)
    snapshot = {k: store.get(k) for k in store.keys()}
    with pytest.raises(NotFoundError):
        tx_ledger.approve("transaction-missing")
    assert {k: store.get(k) for k in store.keys()} == snapshot


@pytest.mark.parametrize("amount", [0, -5, "abc", None])
def test_submit_rejects_bad_amount(tx_ledger, store, user, amount):
    with pytest.raises(ValidationFailedError):
        tx_ledger.submit(user.id, "deposit", amount)
    assert store.get(PENDING_TRANSACTIONS) is None


def test_submit_rejects_bad_type(tx_ledger, user):
    with pytest.raises(ValidationFailedError):
        tx_ledger.submit(user.id, "transfer", 10)


def test_submit_rejects_unknown_user(tx_ledger):
    with pytest.raises(ValidationFailedError):
        tx_ledger.submit("user-404", "deposit", 10)


def test_submit_keeps_extra_fields_and_orders_newest_first(tx_ledger, user, persistence):
    first = tx_ledger.submit(user.id, "deposit", 1)
    second = tx_ledger.submit(user.id, "withdrawal", 2, withdrawal_method="bank", account_details="IBAN")
    raw = persistence.load_collection(PENDING_TRANSACTIONS)
    assert [t["id"] for t in raw] == [second.id, first.id]
    assert raw[0]["withdrawal_method"] == "bank"
    assert raw[0]["userId"] == user.id
    assert first.id != second.id


def test_balance_never_negative_over_sequence(tx_ledger, persistence, user):
    steps = [("deposit", 20), ("withdrawal", 50), ("deposit", 5), ("withdrawal", 5), ("withdrawal", 1)]
    for kind, amount in steps:
        tx = tx_ledger.submit(user.id, kind, amount)
        tx_ledger.approve(tx.id)
        assert persistence.get_user(user.id).cash_balance >= 0
    assert persistence.get_user(user.id).cash_balance == Decimal("0")


def test_approval_for_missing_user_still_consumes(tx_ledger, persistence, store, user):
    tx = tx_ledger.submit(user.id, "deposit", 10)
    persistence.save_users([u for u in persistence.load_users() if u.id != user.id])
    tx_ledger.approve(tx.id)
    assert tx_ledger.list_pending() == []
    assert persistence.load_collection(TRANSACTIONS)[0]["status"] == "completed"


def test_ledger_emits_data_changed(tx_ledger, user, received):
    tx = tx_ledger.submit(user.id, "deposit", 10)
    tx_ledger.approve(tx.id)
    assert [(name, p["status"]) for name, p in received] == [
        (DATA_CHANGED, "pending"),
        (DATA_CHANGED, "completed"),
    ]


@pytest.mark.usefixtures("user")
def test_adjust_balance(tx_ledger, persistence):
    record = tx_ledger.adjust_balance("user-2", "-45")
    assert record.type == "withdrawal"
    assert record.amount == Decimal("45")
    assert persistence.get_user("user-2").cash_balance == Decimal("0")
    tx_ledger.adjust_balance("user-2", 15)
    assert persistence.get_user("user-2").cash_balance == Decimal("15")
    assert [t.type for t in tx_ledger.list_completed()] == ["deposit", "withdrawal"]


@pytest.mark.parametrize("delta", [0, "nope", "NaN"])
def test_adjust_balance_rejects_bad_amount(tx_ledger, delta):
    with pytest.raises(ValidationFailedError):
        tx_ledger.adjust_balance("user-2", delta)


def test_adjust_balance_unknown_user(tx_ledger):
    with pytest.raises(NotFoundError):
        tx_ledger.adjust_balance("user-404", 10)


# -- KYC ---------------------------------------------------------------------


def test_kyc_approval_verifies_user(kyc_ledger, persistence, user):
    req = kyc_ledger.submit(user.id, "2", DOCS)
    assert req.level == 2
    assert req.user_email == user.email

    done = kyc_ledger.approve(req.id)

    updated = persistence.get_user(user.id)
    assert updated.kyc_verified is True
    assert updated.kyc_level == 2
    assert updated.kyc_approved_date == done.completed_date
    assert kyc_ledger.list_pending() == []
    assert [k.id for k in kyc_ledger.list_completed()] == [req.id]


def test_kyc_rejection_leaves_user_untouched(kyc_ledger, persistence, store, user):
    req = kyc_ledger.submit(user.id, 2, DOCS)
    assert kyc_ledger.reject(req.id) is None
    updated = persistence.get_user(user.id)
    assert updated.kyc_verified is False
    assert updated.kyc_level is None
    assert kyc_ledger.list_pending() == []
    assert store.get(COMPLETED_KYC) is None


@pytest.mark.parametrize("first", ["approve", "reject"])
def test_consumed_kyc_is_terminal(kyc_ledger, persistence, user, first):
    req = kyc_ledger.submit(user.id, 1, DOCS)
    getattr(kyc_ledger, first)(req.id)
    before = persistence.get_user(user.id)
    with pytest.raises(NotFoundError):
        kyc_ledger.approve(req.id)
    with pytest.raises(NotFoundError):
        kyc_ledger.reject(req.id)
    assert persistence.get_user(user.id) == before


@pytest.mark.parametrize(
    "level, documents",
    [(2, []), (4, DOCS), ("x", DOCS), (1, [{"number": "123"}])],
)
def test_kyc_submit_validation(kyc_ledger, store, user, level, documents):
    with pytest.raises(ValidationFailedError):
        kyc_ledger.submit(user.id, level, documents)
    assert store.get(PENDING_KYC) is None


def test_kyc_one_pending_request_per_user(kyc_ledger, user):
    kyc_ledger.submit(user.id, 1, DOCS)
    with pytest.raises(ConflictError):
        kyc_ledger.submit(user.id, 3, DOCS)
    assert len(kyc_ledger.pending_for_user(user.id)) == 1
    assert kyc_ledger.pending_for_user("user-2") == []


def test_malformed_pending_entry_is_skipped_in_listing(kyc_ledger, persistence, user):
    persistence.save_collection(PENDING_KYC, [{"id": "kyc-bad"}])
    kyc_ledger.submit(user.id, 1, DOCS)
    assert len(kyc_ledger.list_pending()) == 1
    with pytest.raises(ValidationFailedError):
        kyc_ledger.approve("kyc-bad")


def test_pending_ledger_requires_approval_hooks(persistence, events):
    with pytest.raises(TypeError):
        PendingLedger(persistence, events)

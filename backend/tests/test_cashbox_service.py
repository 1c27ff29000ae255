"""
Cash box tests: charge, refund, expense and reconciliation keep the box,
its entries and the member balances consistent.
"""

import pytest

from labstore.errors import ConflictError, InsufficientFunds, ValidationError
from labstore.models import CashBox, CashBoxEntry
from labstore.services import cashbox_service


@pytest.fixture(autouse=True)
def no_notifications(monkeypatch):
    sent = []
    monkeypatch.setattr(
        cashbox_service.notification_service,
        "notify_charge",
        lambda name, amount, box: sent.append((name, amount, box)),
    )
    return sent


def _box(db_session):
    db_session.expire_all()
    return db_session.get(CashBox, cashbox_service.CASH_BOX_ID)


def test_charge_credits_member_and_box(db_session, cash_box, make_member, balance_of, no_notifications):
    member = make_member(name="Sato", balance=80)

    entry = cashbox_service.charge_member(member.id, 1000, note="cash")

    assert entry.entry_type == "CHARGE"
    assert entry.amount == 1000
    assert entry.member_balance_after == 1080
    assert balance_of(member.id) == 1080
    assert _box(db_session).balance == 1000
    assert no_notifications == [("Sato", 1000, 1000)]


def test_charge_creates_cash_box_when_missing(db_session, make_member):
    member = make_member()
    entry = cashbox_service.charge_member(member.id, 500)
    assert entry.balance_after == 500
    assert _box(db_session).balance == 500


def test_charge_rejects_inactive_member_and_bad_amounts(db_session, cash_box, make_member):
    inactive = make_member(is_active=False)
    active = make_member()
    with pytest.raises(ConflictError):
        cashbox_service.charge_member(inactive.id, 100)
    for amount in (0, -5, 1.5, "abc"):
        with pytest.raises(ValidationError):
            cashbox_service.charge_member(active.id, amount)
    assert db_session.query(CashBoxEntry).count() == 0


def test_refund_cannot_go_negative_without_override(db_session, cash_box, make_member, balance_of):
    member = make_member(balance=100)
    cashbox_service.charge_member(member.id, 400)

    with pytest.raises(InsufficientFunds):
        cashbox_service.refund_member(member.id, 600)
    assert balance_of(member.id) == 500

    entry = cashbox_service.refund_member(member.id, 600, allow_negative=True)
    assert entry.amount == -600
    assert balance_of(member.id) == -100
    assert _box(db_session).balance == -200


def test_expense_and_reconcile(db_session, cash_box, make_member):
    member = make_member()
    cashbox_service.charge_member(member.id, 1000)

    with pytest.raises(ConflictError):
        cashbox_service.record_expense(5000, "Costco run")

    cashbox_service.record_expense(700, "Costco run")
    assert _box(db_session).balance == 300

    adjustment = cashbox_service.reconcile(250, note="Counted Friday")
    assert adjustment.entry_type == "ADJUSTMENT"
    assert adjustment.amount == -50
    assert _box(db_session).balance == 250

    matched = cashbox_service.reconcile(250)
    assert matched.amount == 0


def test_summary_has_no_variance(db_session, cash_box, make_member):
    a = make_member(balance=0)
    b = make_member(balance=0)
    cashbox_service.charge_member(a.id, 1000)
    cashbox_service.charge_member(b.id, 500)
    cashbox_service.refund_member(b.id, 200)
    cashbox_service.record_expense(300, "Snacks")

    summary = cashbox_service.reconciliation_summary()

    assert summary["cash_box_balance"] == 1000
    assert summary["entries_total"] == 1000
    assert summary["variance"] == 0
    assert summary["totals_by_type"] == {"ADJUSTMENT": 0, "CHARGE": 1500, "EXPENSE": -300, "REFUND": -200}
    assert summary["member_balance_total"] == 1300


def test_list_entries_filters_by_type(db_session, cash_box, make_member):
    member = make_member()
    cashbox_service.charge_member(member.id, 100)
    cashbox_service.record_expense(50, "Cups")

    assert [e.entry_type for e in cashbox_service.list_entries("expense")] == ["EXPENSE"]
    assert len(cashbox_service.list_entries()) == 2
    with pytest.raises(ValidationError):
        cashbox_service.list_entries("BOGUS")

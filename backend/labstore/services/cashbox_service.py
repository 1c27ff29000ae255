"""
Cash-Box Service - member top-ups, refunds, expenses and reconciliation

WHY: The cash box is the physical money behind the prepaid balances. A
charge moves money into the box AND credit onto a member; both sides, plus
the CashBoxEntry row, are written in ONE unit of work so the box and the
member balances can never drift apart from a half-applied charge.

DESIGN PRINCIPLES:
- CashBox.balance == SUM(CashBoxEntry.amount) at all times
- Entries are append-only; corrections are new ADJUSTMENT entries
- Member balances only go negative on an explicit admin override
- Charge notifications are sent after commit, best-effort
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import ConflictError, InsufficientFunds, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashBox, CashBoxEntry, Member, MemberBalance
from ..validation import optional_text, require_non_negative_int, require_positive_int, require_text
from . import notification_service
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)

CASH_BOX_ID = 1

ENTRY_CHARGE = "CHARGE"
ENTRY_REFUND = "REFUND"
ENTRY_EXPENSE = "EXPENSE"
ENTRY_ADJUSTMENT = "ADJUSTMENT"
VALID_ENTRY_TYPES = {ENTRY_CHARGE, ENTRY_REFUND, ENTRY_EXPENSE, ENTRY_ADJUSTMENT}


def _locked_cash_box() -> CashBox:
    box = lock_for_update(db.session.query(CashBox).filter_by(id=CASH_BOX_ID)).first()
    if box is None:
        box = CashBox(id=CASH_BOX_ID, balance=0)
        db.session.add(box)
        db.session.flush()
    return box


def _locked_member_balance(member_id: int) -> tuple[Member, MemberBalance]:
    member = lock_for_update(db.session.query(Member).filter_by(id=member_id)).first()
    if member is None:
        raise NotFoundError("Member not found", details={"member_id": member_id})
    row = lock_for_update(db.session.query(MemberBalance).filter_by(member_id=member_id)).first()
    if row is None:
        row = MemberBalance(member_id=member_id, balance=0)
        db.session.add(row)
        db.session.flush()
    return member, row


def _append_entry(box: CashBox, entry_type: str, amount: int, **kwargs) -> CashBoxEntry:
    box.balance += amount
    entry = CashBoxEntry(entry_type=entry_type, amount=amount, balance_after=box.balance, **kwargs)
    db.session.add(entry)
    db.session.flush()
    return entry


def ensure_cash_box() -> CashBox:
    box = db.session.get(CashBox, CASH_BOX_ID)
    if box is None:
        box = CashBox(id=CASH_BOX_ID, balance=0)
        db.session.add(box)
        db.session.commit()
    return box


def get_cash_box() -> CashBox:
    return ensure_cash_box()


def charge_member(member_id: int, amount, note: str | None = None) -> CashBoxEntry:
    """Top up a member's balance with cash put into the box."""
    value = require_positive_int(amount, "amount")
    note = optional_text(note, "note")

    def _op():
        member, row = _locked_member_balance(member_id)
        if not member.is_active:
            raise ConflictError("Member is inactive", details={"member_id": member_id})
        box = _locked_cash_box()
        row.balance += value
        return _append_entry(
            box,
            ENTRY_CHARGE,
            value,
            member_id=member.id,
            member_name=member.name,
            member_balance_after=row.balance,
            description=note,
        )

    entry = atomic(_op)
    logger.info("Charged member %s: %d (cash box %d)", entry.member_id, value, entry.balance_after)

    try:
        notification_service.notify_charge(entry.member_name, value, entry.balance_after)
    except Exception:
        logger.exception("Charge notification failed")
    return entry


def refund_member(
    member_id: int,
    amount,
    *,
    allow_negative: bool = False,
    note: str | None = None,
) -> CashBoxEntry:
    """
    Hand cash back to a member and reduce their balance.

    allow_negative is the admin override that lets the member balance go
    below zero (e.g. correcting a purchase recorded outside the kiosk).
    """
    value = require_positive_int(amount, "amount")
    note = optional_text(note, "note")

    def _op():
        member, row = _locked_member_balance(member_id)
        if row.balance - value < 0 and not allow_negative:
            raise InsufficientFunds(row.balance, value)
        box = _locked_cash_box()
        row.balance -= value
        return _append_entry(
            box,
            ENTRY_REFUND,
            -value,
            member_id=member.id,
            member_name=member.name,
            member_balance_after=row.balance,
            description=note,
        )

    return atomic(_op)


def record_expense(amount, description, *, allow_negative: bool = False) -> CashBoxEntry:
    """Record a purchase (shopping trip) paid out of the cash box."""
    value = require_positive_int(amount, "amount")
    text = require_text(description, "description")

    def _op():
        box = _locked_cash_box()
        if box.balance - value < 0 and not allow_negative:
            raise ConflictError(
                "Cash box balance too low for this expense",
                details={"cash_box_balance": box.balance, "amount": value},
            )
        return _append_entry(box, ENTRY_EXPENSE, -value, description=text)

    return atomic(_op)


def reconcile(counted_amount, note: str | None = None) -> CashBoxEntry:
    """
    Set the cash box to a physically counted amount.

    Always appends an ADJUSTMENT entry (amount 0 when the count matched) so
    each count is on record.
    """
    counted = require_non_negative_int(counted_amount, "counted_amount")
    note = optional_text(note, "note")

    def _op():
        box = _locked_cash_box()
        return _append_entry(box, ENTRY_ADJUSTMENT, counted - box.balance, description=note or "Cash count")

    return atomic(_op)


def list_entries(entry_type: str | None = None, limit: int = 50) -> list[CashBoxEntry]:
    query = db.session.query(CashBoxEntry)
    if entry_type:
        entry_type = entry_type.upper()
        if entry_type not in VALID_ENTRY_TYPES:
            raise ValidationError(f"entry_type must be one of {sorted(VALID_ENTRY_TYPES)}")
        query = query.filter(CashBoxEntry.entry_type == entry_type)
    limit = max(1, min(limit, 500))
    return query.order_by(CashBoxEntry.created_at.desc(), CashBoxEntry.id.desc()).limit(limit).all()


def reconciliation_summary() -> dict:
    """
    Compare the cash box against its own entries and the member balances.

    variance != 0 means the box was written outside this service.
    """
    box = ensure_cash_box()
    rows = (
        db.session.query(CashBoxEntry.entry_type, func.coalesce(func.sum(CashBoxEntry.amount), 0))
        .group_by(CashBoxEntry.entry_type)
        .all()
    )
    by_type = {entry_type: 0 for entry_type in sorted(VALID_ENTRY_TYPES)}
    for entry_type, total in rows:
        by_type[entry_type] = int(total or 0)
    entries_total = sum(by_type.values())

    member_balance_total = int(
        db.session.query(func.coalesce(func.sum(MemberBalance.balance), 0)).scalar() or 0
    )

    return {
        "cash_box_balance": box.balance,
        "entries_total": entries_total,
        "variance": box.balance - entries_total,
        "totals_by_type": by_type,
        "member_balance_total": member_balance_total,
    }

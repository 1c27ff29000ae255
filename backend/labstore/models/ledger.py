from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Transaction(db.Model):
    """
    Immutable purchase record, one row per settled line item.

    Member and product fields are denormalized snapshots taken at sale time
    so history display survives renames. Rows written by the same settlement
    share batch_id and created_at. Only is_archived is ever updated (period
    close).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_archived_created", "is_archived", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.String(36), nullable=False, index=True)

    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    member_name = db.Column(db.String(128), nullable=False)
    member_grade = db.Column(db.String(32), nullable=False, default="")
    product_name = db.Column(db.String(255), nullable=False)
    product_category = db.Column(db.String(64), nullable=False, default="")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)

    kiosk_id = db.Column(db.Integer, nullable=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "member_grade": self.member_grade,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_category": self.product_category,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_amount": self.total_amount,
            "kiosk_id": self.kiosk_id,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
        }


class CashBox(db.Model):
    """Single aggregate cash-box balance (row id 1)."""
    __tablename__ = "cash_box"

    id = db.Column(db.Integer, primary_key=True)
    balance = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "updated_at": to_utc_z(self.updated_at),
        }


class CashBoxEntry(db.Model):
    """
    Append-only cash-box movement.

    ENTRY TYPES:
    - CHARGE: member top-up, cash goes in (amount > 0)
    - REFUND: cash handed back to a member (amount < 0)
    - EXPENSE: shopping trip paid from the box (amount < 0)
    - ADJUSTMENT: manual reconciliation to a counted amount (either sign)

    Invariant: CashBox.balance == SUM(CashBoxEntry.amount).
    """
    __tablename__ = "cash_box_entries"
    __table_args__ = (
        db.Index("ix_cash_box_entries_type_created", "entry_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=True, index=True)
    member_name = db.Column(db.String(128), nullable=True)
    member_balance_after = db.Column(db.Integer, nullable=True)

    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_type": self.entry_type,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "member_balance_after": self.member_balance_after,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }

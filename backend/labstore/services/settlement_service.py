"""
Settlement Service - atomic cart checkout

WHY: Two kiosks selling the last unit, or one member settling twice at once,
must never both succeed. The whole check-and-apply runs as ONE server-side
unit of work under the write lock; the client never orchestrates
read-then-write itself.

Settlement invariants (authoritative)

- Prices come from the current product rows; client prices are ignored.
- Funds are checked before stock; a debit that would make the balance
  negative is refused (no override on this path).
- Purchasable quantities are re-resolved under lock, line by line, against
  stock already consumed by earlier lines of the same cart, so lines sharing
  an ingredient pool cannot oversell it together.
- Each line's pooled demand on simple products is checked against what is
  left before it is applied; stock is never written below zero.
- All-or-nothing: any failure rolls back every stock, balance and
  transaction write of the call.
- Composite products decrement their (recursively resolved) simple
  ingredients; the composite's own stock column is never touched.
- One Transaction row per line item; rows of one call share batch_id and
  created_at.
- Low-stock notifications go out after commit and can never fail the
  settlement.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from flask import current_app

from ..errors import (
    ConflictError,
    InsufficientFunds,
    InsufficientStock,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Member, MemberBalance, Transaction
from ..time_utils import utcnow
from ..validation import MAX_QUANTITY, coerce_int, require_positive_int
from . import catalog_service, notification_service, recipe_resolver
from .concurrency import begin_write, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

MAX_CART_LINES = 50


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int


@dataclass
class SettlementResult:
    member_id: int
    new_balance: int
    total: int
    batch_id: str
    transactions: list[Transaction] = field(default_factory=list)
    low_stock: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "member_id": self.member_id,
            "new_balance": self.new_balance,
            "total": self.total,
            "batch_id": self.batch_id,
            "transactions": [tx.to_dict() for tx in self.transactions],
        }


def normalize_items(items) -> list[LineItem]:
    """
    Validate a cart payload and merge repeated product ids (first-seen order).

    Accepts dicts with product_id (or productId) and quantity, or LineItem.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > MAX_CART_LINES:
        raise ValidationError(f"At most {MAX_CART_LINES} items per settlement")

    merged: dict[int, int] = {}
    for raw in items:
        if isinstance(raw, LineItem):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            product_id = raw.get("product_id", raw.get("productId"))
            quantity = raw.get("quantity")
        else:
            raise ValidationError("Each item needs product_id and quantity")
        if product_id is None or quantity is None:
            raise ValidationError("Each item needs product_id and quantity")
        pid = coerce_int(product_id, "product_id")
        qty = require_positive_int(quantity, "quantity", maximum=MAX_QUANTITY)
        merged[pid] = merged.get(pid, 0) + qty

    return [LineItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def _settle_locked(member_id: int, lines: list[LineItem], kiosk_id: int | None) -> SettlementResult:
    member = lock_for_update(db.session.query(Member).filter_by(id=member_id)).first()
    if member is None:
        raise NotFoundError("Member not found", details={"member_id": member_id})
    if not member.is_active:
        raise ConflictError("Member is inactive", details={"member_id": member_id})

    balance_row = lock_for_update(
        db.session.query(MemberBalance).filter_by(member_id=member_id)
    ).first()
    if balance_row is None:
        balance_row = MemberBalance(member_id=member_id, balance=0)
        db.session.add(balance_row)
        db.session.flush()

    lookup = catalog_service.load_lookup([line.product_id for line in lines], lock=True)

    # 1-2. Price every line from the current product row
    total = 0
    for line in lines:
        product = lookup.get(line.product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": line.product_id})
        if not product.is_sellable:
            raise ValidationError("Product is not for sale", details={"product_id": product.id})
        total += product.price * line.quantity

    # 3. Funds
    if balance_row.balance - total < 0:
        raise InsufficientFunds(balance_row.balance, total)

    # 4. Stock, resolved against what earlier lines already consumed
    remaining = {pid: p.stock for pid, p in lookup.items() if not p.recipe_map}
    for line in lines:
        available = recipe_resolver.purchasable_quantity(
            line.product_id, lookup, stock_override=remaining
        )
        if line.quantity > available:
            raise InsufficientStock(
                line.product_id, line.quantity, available, lookup[line.product_id].name
            )
        demand = recipe_resolver.ingredient_demand(line.product_id, line.quantity, lookup)
        for leaf_id, units in demand.items():
            if remaining.get(leaf_id, 0) < units:
                raise InsufficientStock(
                    line.product_id, line.quantity, available, lookup[line.product_id].name
                )
        for leaf_id, units in demand.items():
            remaining[leaf_id] -= units

    # 5. Decrement simple-product stock
    for leaf_id, stock in remaining.items():
        product = lookup[leaf_id]
        if product.stock != stock:
            product.stock = stock

    # 6. Debit
    balance_row.balance -= total

    # 7. Ledger rows, one per line, one logical event
    occurred_at = utcnow()
    batch_id = str(uuid.uuid4())
    transactions = []
    for line in lines:
        product = lookup[line.product_id]
        tx = Transaction(
            batch_id=batch_id,
            member_id=member.id,
            product_id=product.id,
            member_name=member.name,
            member_grade=member.grade or "",
            product_name=product.name,
            product_category=product.category or "",
            quantity=line.quantity,
            unit_price=product.price,
            total_amount=product.price * line.quantity,
            kiosk_id=kiosk_id,
            is_archived=False,
            created_at=occurred_at,
        )
        db.session.add(tx)
        transactions.append(tx)
    db.session.flush()

    threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 3))
    memo: dict[int, int] = {}
    low_stock = []
    for line in lines:
        left = recipe_resolver.purchasable_quantity(line.product_id, lookup, _memo=memo)
        if left <= threshold:
            low_stock.append((lookup[line.product_id].name, left))

    return SettlementResult(
        member_id=member.id,
        new_balance=balance_row.balance,
        total=total,
        batch_id=batch_id,
        transactions=transactions,
        low_stock=low_stock,
    )


def settle(member_id, items, *, kiosk_id: int | None = None) -> SettlementResult:
    """
    Settle a cart for a member: check funds and stock, decrement stock, debit
    the balance and append transaction rows, atomically.

    Raises InsufficientFunds / InsufficientStock (user-facing, never retried
    here), NotFoundError / ValidationError / ConflictError for bad input, and
    StorageUnavailable when the store stayed locked or unreachable; in every
    failure case nothing was applied.
    """
    mid = coerce_int(member_id, "member_id")
    lines = normalize_items(items)

    def _op():
        begin_write()
        result = _settle_locked(mid, lines, kiosk_id)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info(
        "Settled batch %s for member %s: %d line(s), total %d, new balance %d",
        result.batch_id, result.member_id, len(lines), result.total, result.new_balance,
    )

    for product_name, left in result.low_stock:
        try:
            notification_service.notify_low_stock(product_name, left)
        except Exception:
            logger.exception("Low-stock notification for %s failed", product_name)

    return result

"""
Transaction history and period close.

Transaction rows are immutable; archiving (period close) is the only update.
"""

from __future__ import annotations

import logging

from sqlalchemy import update

from ..extensions import db
from ..models import Transaction
from .concurrency import atomic

logger = logging.getLogger(__name__)


def list_transactions(
    *,
    include_archived: bool = False,
    member_id: int | None = None,
    limit: int = 200,
) -> list[Transaction]:
    query = db.session.query(Transaction)
    if not include_archived:
        query = query.filter(Transaction.is_archived.is_(False))
    if member_id is not None:
        query = query.filter(Transaction.member_id == member_id)
    limit = max(1, min(limit, 1000))
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()


def archive_transactions() -> int:
    """Close the period: mark every live transaction archived. Returns rows archived."""
    def _op():
        result = db.session.execute(
            update(Transaction)
            .where(Transaction.is_archived.is_(False))
            .values(is_archived=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    count = atomic(_op)
    db.session.expire_all()
    logger.info("Archived %d transaction(s)", count)
    return count

"""
Kiosk session state - the card currently on each kiosk's reader.

Written by the card-reader relay, read by presence handling. Every change
that actually alters current_uid is published on the change feed after
commit, on topic kiosk_topic(kiosk_id).
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import KioskStatus
from ..realtime import change_feed, kiosk_topic
from ..validation import normalize_card_uid
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)


def get_status(kiosk_id: int) -> KioskStatus:
    status = db.session.get(KioskStatus, kiosk_id)
    if status is None:
        status = KioskStatus(id=kiosk_id, current_uid=None)
        db.session.add(status)
        db.session.commit()
    return status


def set_current_uid(kiosk_id: int, uid) -> KioskStatus:
    """
    Record the card now on the reader (None/blank = removed).

    Publishes only real transitions; repeated writes of the same value are
    silent.
    """
    card_uid = normalize_card_uid(uid)

    def _op():
        status = lock_for_update(db.session.query(KioskStatus).filter_by(id=kiosk_id)).first()
        if status is None:
            status = KioskStatus(id=kiosk_id, current_uid=None)
            db.session.add(status)
            db.session.flush()
        previous = status.current_uid
        status.current_uid = card_uid
        return status, previous

    status, previous = atomic(_op)
    if previous != card_uid:
        logger.info("Kiosk %s card %s", kiosk_id, "presented" if card_uid else "removed")
        change_feed.publish(
            kiosk_topic(kiosk_id),
            {"id": kiosk_id, "current_uid": card_uid, "previous_uid": previous},
        )
    return status

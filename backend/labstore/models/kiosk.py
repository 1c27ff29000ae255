from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class KioskStatus(db.Model):
    """
    Live session state of one kiosk: the card currently on the reader.

    current_uid is NULL when no card is presented. Not historical; the row is
    overwritten on every scan/removal.
    """
    __tablename__ = "kiosk_status"

    id = db.Column(db.Integer, primary_key=True)
    current_uid = db.Column(db.String(64), nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "current_uid": self.current_uid,
            "updated_at": to_utc_z(self.updated_at),
        }

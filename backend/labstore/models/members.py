from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

# Display order of grade labels on the kiosk home screen
GRADE_ORDER = ("D3", "D2", "D1", "M2", "M1", "B4", "研究生")


class Member(db.Model):
    """
    Store member (buyer).

    Members are deactivated, never deleted, so transaction history keeps
    resolving. card_uid is unique across members; NULL means no card bound.
    """
    __tablename__ = "members"
    __table_args__ = (
        db.Index("ix_members_active_grade", "is_active", "grade"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    grade = db.Column(db.String(32), nullable=False, default="")

    card_uid = db.Column(db.String(64), nullable=True, unique=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    balance_row = db.relationship("MemberBalance", uselist=False, back_populates="member")

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.name!r} grade={self.grade!r}>"

    @property
    def balance(self) -> int:
        return self.balance_row.balance if self.balance_row else 0

    def to_dict(self, *, include_card: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "grade": self.grade,
            "is_active": self.is_active,
            "has_card": self.card_uid is not None,
            "balance": self.balance,
            "created_at": to_utc_z(self.created_at),
        }
        if include_card:
            data["card_uid"] = self.card_uid
        return data


class MemberBalance(db.Model):
    """
    Prepaid balance, one row per member.

    Mutated only by the settlement procedure and by admin charge/refund,
    both under a row lock. version_id guards against lost updates on
    backends that ignore SELECT ... FOR UPDATE.
    """
    __tablename__ = "member_balances"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False, unique=True)
    balance = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    member = db.relationship("Member", back_populates="balance_row")
    __mapper_args__ = {"version_id_col": version_id}

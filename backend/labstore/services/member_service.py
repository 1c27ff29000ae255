"""
Member Service - member records and card bindings

DESIGN PRINCIPLES:
- Members are soft-deactivated, never deleted (transactions reference them)
- Every member has exactly one MemberBalance row, created with the member
- A card UID is bound to at most one member; a conflicting bind is rejected
  here, at registration time, so presence can trust UID -> member lookups
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateCardBinding, NotFoundError, ValidationError
from ..extensions import db
from ..models import Member, MemberBalance, GRADE_ORDER
from ..validation import normalize_card_uid, optional_text, require_text
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)


def _get_member(member_id: int, *, lock: bool = False) -> Member:
    query = db.session.query(Member).filter_by(id=member_id)
    if lock:
        query = lock_for_update(query)
    member = query.first()
    if member is None:
        raise NotFoundError("Member not found", details={"member_id": member_id})
    return member


def get_member(member_id: int) -> Member:
    return _get_member(member_id)


def create_member(data: dict) -> Member:
    name = require_text(data.get("name"), "name", max_length=128)
    grade = optional_text(data.get("grade"), "grade", max_length=32) or ""
    card_uid = normalize_card_uid(data.get("card_uid"))

    def _op():
        if card_uid is not None:
            owner = db.session.query(Member).filter_by(card_uid=card_uid).first()
            if owner is not None:
                raise DuplicateCardBinding(card_uid, owner.id)
        member = Member(name=name, grade=grade, card_uid=card_uid, is_active=True)
        db.session.add(member)
        db.session.flush()
        db.session.add(MemberBalance(member_id=member.id, balance=0))
        return member

    member = atomic(_op)
    logger.info("Created member %s (%s)", member.id, member.name)
    return member


def update_member(member_id: int, data: dict) -> Member:
    patch = {}
    if "name" in data:
        patch["name"] = require_text(data.get("name"), "name", max_length=128)
    if "grade" in data:
        patch["grade"] = optional_text(data.get("grade"), "grade", max_length=32) or ""
    if not patch:
        raise ValidationError("No updatable fields provided")

    def _op():
        member = _get_member(member_id, lock=True)
        for key, value in patch.items():
            setattr(member, key, value)
        return member

    return atomic(_op)


def set_active(member_id: int, is_active: bool) -> Member:
    """Soft (de)activation. Deactivated members keep their card, balance and history."""
    def _op():
        member = _get_member(member_id, lock=True)
        member.is_active = bool(is_active)
        return member

    return atomic(_op)


def list_members(*, include_inactive: bool = False) -> list[Member]:
    query = db.session.query(Member)
    if not include_inactive:
        query = query.filter(Member.is_active.is_(True))
    return query.order_by(Member.id).all()


def group_by_grade(members: list[Member]) -> list[dict]:
    """Kiosk home layout: known grades in fixed order, then the rest alphabetically."""
    groups: dict[str, list[Member]] = {}
    for member in members:
        groups.setdefault(member.grade or "", []).append(member)

    extra = sorted(g for g in groups if g not in GRADE_ORDER)
    ordered = [g for g in GRADE_ORDER if g in groups] + extra
    return [
        {"grade": grade, "members": [m.to_dict() for m in groups[grade]]}
        for grade in ordered
    ]


def find_by_card(uid) -> Member | None:
    """Member bound to uid, active or not. None for blank or unknown UIDs."""
    card_uid = normalize_card_uid(uid)
    if card_uid is None:
        return None
    return db.session.query(Member).filter_by(card_uid=card_uid).first()


def bind_card(member_id: int, uid) -> Member:
    """
    Bind a card UID to a member.

    Rebinding the same UID to the same member is a no-op. A UID bound to a
    different member raises DuplicateCardBinding and leaves both members
    untouched. Binding replaces any previous card of this member.
    """
    card_uid = normalize_card_uid(uid)
    if card_uid is None:
        raise ValidationError("uid required")

    def _op():
        member = _get_member(member_id, lock=True)
        if not member.is_active:
            raise ValidationError("Cannot bind a card to an inactive member")

        owner = db.session.query(Member).filter_by(card_uid=card_uid).first()
        if owner is not None and owner.id != member.id:
            raise DuplicateCardBinding(card_uid, owner.id)

        member.card_uid = card_uid
        db.session.flush()
        return member

    try:
        member = atomic(_op)
    except IntegrityError:
        # Lost a race against another bind of the same UID
        owner = db.session.query(Member).filter_by(card_uid=card_uid).first()
        raise DuplicateCardBinding(card_uid, owner.id if owner else -1)

    logger.info("Bound card to member %s", member.id)
    return member


def unbind_card(member_id: int) -> Member:
    def _op():
        member = _get_member(member_id, lock=True)
        member.card_uid = None
        return member

    return atomic(_op)

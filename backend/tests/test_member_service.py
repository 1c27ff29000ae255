import pytest

from labstore.errors import DuplicateCardBinding, NotFoundError, ValidationError
from labstore.models import Member, MemberBalance
from labstore.services import member_service


def test_create_member_starts_with_zero_balance(db_session):
    member = member_service.create_member({"name": "  Tanaka ", "grade": "D1"})

    assert member.name == "Tanaka"
    assert member.grade == "D1"
    row = db_session.query(MemberBalance).filter_by(member_id=member.id).one()
    assert row.balance == 0


def test_create_member_requires_name(db_session):
    with pytest.raises(ValidationError):
        member_service.create_member({"grade": "M1"})


def test_duplicate_card_binding_keeps_first_owner(db_session, make_member):
    a = make_member(name="A")
    b = make_member(name="B")

    member_service.bind_card(a.id, "X")
    with pytest.raises(DuplicateCardBinding) as exc:
        member_service.bind_card(b.id, "X")

    assert exc.value.bound_member_id == a.id
    db_session.expire_all()
    assert db_session.get(Member, a.id).card_uid == "X"
    assert db_session.get(Member, b.id).card_uid is None


def test_rebinding_same_card_is_noop(db_session, make_member):
    member = make_member(card_uid="card-123")
    again = member_service.bind_card(member.id, "card-123")
    assert again.card_uid == "card-123"


def test_bind_replaces_previous_card(db_session, make_member):
    member = make_member(card_uid="old")
    member_service.bind_card(member.id, "new")
    assert member_service.find_by_card("old") is None
    assert member_service.find_by_card("new").id == member.id


def test_bind_rejects_inactive_member_and_blank_uid(db_session, make_member):
    inactive = make_member(is_active=False)
    active = make_member()
    with pytest.raises(ValidationError):
        member_service.bind_card(inactive.id, "card-9")
    with pytest.raises(ValidationError):
        member_service.bind_card(active.id, "   ")


def test_create_with_taken_card_is_rejected(db_session, make_member):
    owner = make_member(card_uid="card-1")
    with pytest.raises(DuplicateCardBinding) as exc:
        member_service.create_member({"name": "Copycat", "card_uid": "card-1"})
    assert exc.value.bound_member_id == owner.id


def test_unbind_card(db_session, make_member):
    member = make_member(card_uid="card-5")
    member_service.unbind_card(member.id)
    assert member_service.find_by_card("card-5") is None


def test_find_by_card_compares_verbatim(db_session, make_member):
    member = make_member(card_uid="card-123")
    assert member_service.find_by_card(" card-123 ").id == member.id
    assert member_service.find_by_card("CARD-123") is None
    assert member_service.find_by_card(None) is None


def test_deactivate_keeps_history_fields(db_session, make_member):
    member = make_member(card_uid="c", balance=300)
    member_service.set_active(member.id, False)

    assert member_service.list_members() == []
    listed = member_service.list_members(include_inactive=True)
    assert [m.id for m in listed] == [member.id]
    assert listed[0].card_uid == "c"
    assert listed[0].balance == 300


def test_group_by_grade_uses_fixed_order(db_session, make_member):
    make_member(name="Bachelor", grade="B4")
    make_member(name="Doctor", grade="D3")
    make_member(name="Grad", grade="研究生")
    make_member(name="Master", grade="M1")
    make_member(name="Guest", grade="Staff")

    groups = member_service.group_by_grade(member_service.list_members())

    assert [g["grade"] for g in groups] == ["D3", "M1", "B4", "研究生", "Staff"]
    assert groups[0]["members"][0]["name"] == "Doctor"


def test_update_member(db_session, make_member):
    member = make_member(name="Old", grade="M1")
    updated = member_service.update_member(member.id, {"name": "New", "grade": "M2"})
    assert (updated.name, updated.grade) == ("New", "M2")

    with pytest.raises(ValidationError):
        member_service.update_member(member.id, {})
    with pytest.raises(NotFoundError):
        member_service.update_member(999, {"name": "x"})

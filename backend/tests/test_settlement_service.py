"""
Settlement tests: pricing, funds, stock, composites and all-or-nothing.
"""

import pytest
from sqlalchemy.exc import OperationalError

from labstore.errors import (
    ConflictError,
    InsufficientFunds,
    InsufficientStock,
    NotFoundError,
    StorageUnavailable,
    ValidationError,
)
from labstore.extensions import db
from labstore.models import Transaction
from labstore.services import catalog_service, concurrency, settlement_service


def test_sato_cart_settles_in_one_batch(db_session, make_member, make_product, balance_of, stock_of):
    sato = make_member(name="Sato", grade="M1", balance=500)
    make_product(name="Onigiri", price=150, stock=10, product_id=7)
    make_product(name="Tea", price=120, stock=10, product_id=9)

    result = settlement_service.settle(
        sato.id,
        [{"productId": 7, "quantity": 2}, {"product_id": 9, "quantity": 1}],
    )

    assert result.total == 420
    assert result.new_balance == 80
    assert balance_of(sato.id) == 80
    assert stock_of(7) == 8
    assert stock_of(9) == 9

    rows = db_session.query(Transaction).order_by(Transaction.product_id).all()
    assert [(r.product_id, r.quantity, r.unit_price, r.total_amount) for r in rows] == [
        (7, 2, 150, 300),
        (9, 1, 120, 120),
    ]
    assert {r.batch_id for r in rows} == {result.batch_id}
    assert len({r.created_at for r in rows}) == 1
    assert rows[0].member_name == "Sato"
    assert rows[0].member_grade == "M1"


def test_single_unit_debits_exact_price(db_session, make_member, make_product, balance_of, stock_of):
    member = make_member(balance=300)
    product = make_product(price=120, stock=4)

    settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])

    assert balance_of(member.id) == 180
    assert stock_of(product.id) == 3


def test_client_price_is_ignored(db_session, make_member, make_product, balance_of):
    member = make_member(balance=1000)
    product = make_product(price=250, stock=5)

    result = settlement_service.settle(
        member.id, [{"product_id": product.id, "quantity": 2, "price": 1}]
    )

    assert result.total == 500
    assert balance_of(member.id) == 500


def test_insufficient_funds_changes_nothing(db_session, make_member, make_product, balance_of, stock_of):
    member = make_member(balance=100)
    product = make_product(price=150, stock=5)

    with pytest.raises(InsufficientFunds) as exc:
        settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])

    assert exc.value.details == {"balance": 100, "total": 150, "shortfall": 50}
    assert balance_of(member.id) == 100
    assert stock_of(product.id) == 5
    assert db_session.query(Transaction).count() == 0


def test_exact_balance_reaches_zero(db_session, make_member, make_product, balance_of):
    member = make_member(balance=150)
    product = make_product(price=150, stock=1)

    result = settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])

    assert result.new_balance == 0
    assert balance_of(member.id) == 0


def test_one_short_line_rolls_back_whole_cart(db_session, make_member, make_product, balance_of, stock_of):
    member = make_member(balance=1000)
    plenty = make_product(name="Plenty", price=10, stock=50)
    scarce = make_product(name="Scarce", price=10, stock=1)

    with pytest.raises(InsufficientStock) as exc:
        settlement_service.settle(
            member.id,
            [{"product_id": plenty.id, "quantity": 3}, {"product_id": scarce.id, "quantity": 2}],
        )

    assert exc.value.product_id == scarce.id
    assert exc.value.details["available_quantity"] == 1
    assert balance_of(member.id) == 1000
    assert stock_of(plenty.id) == 50
    assert stock_of(scarce.id) == 1
    assert db_session.query(Transaction).count() == 0


def test_composite_consumes_ingredients(db_session, make_member, make_product, stock_of):
    member = make_member(balance=1000)
    a = make_product(name="Rice", price=0, stock=5, is_sellable=False)
    b = make_product(name="Seaweed", price=0, stock=2, is_sellable=False)
    combo = make_product(name="Onigiri set", price=100, recipe={a.id: 2, b.id: 1})

    assert catalog_service.get_product(combo.id)["purchasable_quantity"] == 2

    settlement_service.settle(member.id, [{"product_id": combo.id, "quantity": 2}])

    assert stock_of(a.id) == 1
    assert stock_of(b.id) == 0
    assert stock_of(combo.id) == 0
    assert catalog_service.get_product(combo.id)["purchasable_quantity"] == 0


def test_lines_sharing_an_ingredient_cannot_oversell(db_session, make_member, make_product, stock_of):
    member = make_member(balance=1000)
    milk = make_product(name="Milk", price=50, stock=3)
    latte = make_product(name="Latte", price=200, recipe={milk.id: 2})

    # Each line alone fits (3 milk), together they need 4
    with pytest.raises(InsufficientStock) as exc:
        settlement_service.settle(
            member.id,
            [{"product_id": latte.id, "quantity": 1}, {"product_id": milk.id, "quantity": 2}],
        )

    assert exc.value.product_id == milk.id
    assert exc.value.details["available_quantity"] == 1
    assert stock_of(milk.id) == 3


def test_ingredient_shared_through_a_sub_recipe_cannot_oversell(db_session, make_member, make_product,
                                                                 balance_of, stock_of):
    member = make_member(balance=5000)
    milk = make_product(name="Milk", price=0, stock=3, is_sellable=False)
    foam = make_product(name="Foam", price=0, recipe={milk.id: 1}, is_sellable=False)
    cappuccino = make_product(name="Cappuccino", price=300, recipe={milk.id: 1, foam.id: 1})

    assert catalog_service.get_product(cappuccino.id)["purchasable_quantity"] == 1

    with pytest.raises(InsufficientStock) as exc:
        settlement_service.settle(member.id, [{"product_id": cappuccino.id, "quantity": 3}])
    assert exc.value.details["available_quantity"] == 1
    assert stock_of(milk.id) == 3
    assert balance_of(member.id) == 5000

    settlement_service.settle(member.id, [{"product_id": cappuccino.id, "quantity": 1}])
    assert stock_of(milk.id) == 1
    assert catalog_service.get_product(cappuccino.id)["purchasable_quantity"] == 0


def test_duplicate_lines_are_merged(db_session, make_member, make_product):
    member = make_member(balance=1000)
    product = make_product(price=100, stock=5)

    result = settlement_service.settle(
        member.id,
        [{"product_id": product.id, "quantity": 1}, {"product_id": product.id, "quantity": 2}],
    )

    assert len(result.transactions) == 1
    assert result.transactions[0].quantity == 3


def test_inactive_product_is_out_of_stock(db_session, make_member, make_product):
    member = make_member(balance=1000)
    product = make_product(price=100, stock=5, is_active=False)

    with pytest.raises(InsufficientStock):
        settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])


def test_internal_product_is_not_for_sale(db_session, make_member, make_product):
    member = make_member(balance=1000)
    product = make_product(price=100, stock=5, is_sellable=False)

    with pytest.raises(ValidationError):
        settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])


def test_unknown_member_and_product(db_session, make_member, make_product):
    member = make_member(balance=1000)
    product = make_product(stock=1)

    with pytest.raises(NotFoundError):
        settlement_service.settle(999, [{"product_id": product.id, "quantity": 1}])
    with pytest.raises(NotFoundError):
        settlement_service.settle(member.id, [{"product_id": 999, "quantity": 1}])


def test_inactive_member_cannot_settle(db_session, make_member, make_product):
    member = make_member(balance=1000, is_active=False)
    product = make_product(stock=1)

    with pytest.raises(ConflictError):
        settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])


@pytest.mark.parametrize("items", [
    [],
    None,
    [{"product_id": 1}],
    [{"product_id": 1, "quantity": 0}],
    [{"product_id": 1, "quantity": 1.5}],
    [{"product_id": "x", "quantity": 1}],
])
def test_malformed_carts_are_rejected(db_session, make_member, items):
    member = make_member(balance=1000)
    with pytest.raises(ValidationError):
        settlement_service.settle(member.id, items)


def test_low_stock_notification_after_commit(db_session, make_member, make_product, monkeypatch):
    sent = []
    monkeypatch.setattr(
        settlement_service.notification_service,
        "notify_low_stock",
        lambda name, left: sent.append((name, left)),
    )
    member = make_member(balance=1000)
    product = make_product(name="Pudding", price=100, stock=4)

    settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 2}])

    assert sent == [("Pudding", 2)]


def test_notification_failure_does_not_fail_settlement(db_session, make_member, make_product,
                                                       monkeypatch, balance_of):
    def _boom(name, left):
        raise RuntimeError("webhook down")

    monkeypatch.setattr(settlement_service.notification_service, "notify_low_stock", _boom)
    member = make_member(balance=1000)
    product = make_product(price=100, stock=1)

    result = settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 1}])

    assert result.new_balance == 900
    assert balance_of(member.id) == 900


def test_storage_failure_applies_nothing_and_is_retryable(db_session, make_member, make_product,
                                                         monkeypatch, balance_of, stock_of):
    member = make_member(balance=500)
    product = make_product(price=100, stock=5)
    commits = []
    sleeps = []

    def _locked_commit():
        commits.append(1)
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(concurrency.time, "sleep", sleeps.append)
    with monkeypatch.context() as m:
        m.setattr(db.session, "commit", _locked_commit)
        with pytest.raises(StorageUnavailable):
            settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 2}])

    assert len(commits) == 3
    assert sleeps == [0.1, 0.2]
    assert balance_of(member.id) == 500
    assert stock_of(product.id) == 5
    assert db_session.query(Transaction).count() == 0

    # Same request again once storage is back
    result = settlement_service.settle(member.id, [{"product_id": product.id, "quantity": 2}])
    assert result.new_balance == 300
    assert stock_of(product.id) == 3

"""
Kiosk cart and checkout controller.

The cart is an immutable productId -> quantity mapping; its total is always
recomputed from current prices, never carried across async boundaries.
Cart and displayed balance change only after the server confirms a
settlement, and a second checkout tap while one is in flight is ignored.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from ..errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cart:
    items: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        object.__setattr__(self, "items", MappingProxyType(dict(self.items)))

    @property
    def is_empty(self) -> bool:
        return not self.items

    def quantity(self, product_id: int) -> int:
        return self.items.get(product_id, 0)

    def add(self, product_id: int, quantity: int = 1, *, limit: int | None = None) -> "Cart":
        current = self.quantity(product_id)
        new_qty = current + quantity
        if limit is not None:
            new_qty = min(new_qty, limit)
        if new_qty <= current:
            return self
        items = dict(self.items)
        items[product_id] = new_qty
        return Cart(items)

    def remove(self, product_id: int, quantity: int = 1) -> "Cart":
        current = self.quantity(product_id)
        if current <= 0:
            return self
        items = dict(self.items)
        if current - quantity <= 0:
            del items[product_id]
        else:
            items[product_id] = current - quantity
        return Cart(items)

    def total(self, prices: Mapping[int, int]) -> int:
        return sum(prices.get(pid, 0) * qty for pid, qty in self.items.items())

    def lines(self) -> list[dict]:
        return [{"product_id": pid, "quantity": qty} for pid, qty in sorted(self.items.items())]


@dataclass(frozen=True)
class CheckoutOutcome:
    success: bool
    new_balance: Optional[int] = None
    error: Optional[StoreError] = None


class CheckoutController:
    def __init__(
        self,
        member_id: int,
        balance: int,
        settle: Callable[[int, list[dict]], dict],
        *,
        prices: Mapping[int, int] | None = None,
        purchasable: Mapping[int, int] | None = None,
    ):
        self.member_id = member_id
        self.balance = balance
        self._settle = settle
        self.prices = dict(prices or {})
        self.purchasable = dict(purchasable or {})
        self.cart = Cart()
        self._in_flight = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    @property
    def total(self) -> int:
        return self.cart.total(self.prices)

    def add(self, product_id: int) -> Cart:
        if not self.in_flight:
            self.cart = self.cart.add(product_id, limit=self.purchasable.get(product_id))
        return self.cart

    def remove(self, product_id: int) -> Cart:
        if not self.in_flight:
            self.cart = self.cart.remove(product_id)
        return self.cart

    def checkout(self) -> Optional[CheckoutOutcome]:
        """
        Settle the current cart. Returns None when ignored (empty cart or a
        settlement already in flight).
        """
        if self.cart.is_empty:
            return None
        if not self._in_flight.acquire(blocking=False):
            logger.info("Checkout already in flight; tap ignored")
            return None
        try:
            result = self._settle(self.member_id, self.cart.lines())
        except StoreError as exc:
            logger.info("Checkout failed: %s", exc)
            return CheckoutOutcome(success=False, error=exc)
        finally:
            self._in_flight.release()

        self.cart = Cart()
        self.balance = int(result["new_balance"])
        return CheckoutOutcome(success=True, new_balance=self.balance)

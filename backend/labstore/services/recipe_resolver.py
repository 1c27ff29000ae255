# Overview: Effective-stock resolution for simple and composite products.

"""
Recipe resolution rules (authoritative)

- Simple product (no recipe): purchasable = max(stock, 0).
- Composite product: the recipe is flattened to per-unit demand on simple
  products, and purchasable = min over those of
  floor(available(simple) / per_unit_demand). An ingredient reached by two
  recipe paths counts its demand once per path. The composite's own stock
  column is never read.
- For tree-shaped recipes this equals min over direct ingredients of
  floor(purchasable(ingredient) / required_per_unit).
- Inactive products (simple or composite), and ingredient ids that do not
  resolve, count as zero.
- Consumption of a composite ingredient is pushed down to its simple
  ingredients, through any depth of composite-of-composite chains.
- The recipe graph is a DAG (enforced at edit time). Demand expansion still
  tracks the current path and raises RecipeCycleDetected instead of
  recursing forever if a cycle slipped into storage.

All functions here are pure: they take a lookup (product id -> Product-like
object exposing id, stock, is_active, recipe_map) and never touch the session.
"""

from __future__ import annotations

from typing import Mapping, Protocol

from ..errors import RecipeCycleDetected


class StockNode(Protocol):
    id: int
    stock: int
    is_active: bool

    @property
    def recipe_map(self) -> dict[int, int]: ...


def purchasable_quantity(
    product_id: int,
    lookup: Mapping[int, StockNode],
    *,
    stock_override: Mapping[int, int] | None = None,
    _memo: dict[int, int] | None = None,
) -> int:
    """
    Quantity of product_id that can be sold right now.

    stock_override replaces stored stock for simple products (used to resolve
    against stock already consumed earlier in the same settlement).
    """
    memo = _memo if _memo is not None else {}
    if product_id in memo:
        return memo[product_id]

    product = lookup.get(product_id)
    if product is None or not product.is_active:
        memo[product_id] = 0
        return 0

    if not product.recipe_map:
        result = _leaf_available(product_id, lookup, stock_override)
    else:
        result = None
        demand = ingredient_demand(product_id, 1, lookup, stop_at_inactive=True)
        for leaf_id, per_unit in demand.items():
            available = _leaf_available(leaf_id, lookup, stock_override)
            units = available // per_unit if per_unit > 0 else 0
            result = units if result is None else min(result, units)
        result = result or 0

    memo[product_id] = result
    return result


def _leaf_available(
    product_id: int,
    lookup: Mapping[int, StockNode],
    stock_override: Mapping[int, int] | None,
) -> int:
    product = lookup.get(product_id)
    if product is None or not product.is_active:
        return 0
    stock = product.stock
    if stock_override is not None and product_id in stock_override:
        stock = stock_override[product_id]
    return max(int(stock), 0)


def ingredient_demand(
    product_id: int,
    quantity: int,
    lookup: Mapping[int, StockNode],
    *,
    stop_at_inactive: bool = False,
    _path: tuple[int, ...] = (),
) -> dict[int, int]:
    """
    Simple-product stock consumed by selling `quantity` units of product_id.

    Returns {simple_product_id: units}. A simple product consumes itself.
    With stop_at_inactive, an inactive composite is returned as a leaf
    instead of being expanded.
    """
    if product_id in _path:
        raise RecipeCycleDetected(list(_path) + [product_id])

    product = lookup.get(product_id)
    recipe = product.recipe_map if product is not None else {}
    if not recipe or (stop_at_inactive and not product.is_active):
        return {product_id: quantity}

    demand: dict[int, int] = {}
    path = _path + (product_id,)
    for ingredient_id, required in recipe.items():
        sub = ingredient_demand(
            ingredient_id, required * quantity, lookup,
            stop_at_inactive=stop_at_inactive, _path=path,
        )
        for leaf_id, units in sub.items():
            demand[leaf_id] = demand.get(leaf_id, 0) + units
    return demand


def reachable_ids(product_ids, recipes: Mapping[int, Mapping[int, int]]) -> set[int]:
    """Every product id reachable from product_ids through recipe edges (inclusive)."""
    seen: set[int] = set()
    stack = list(product_ids)
    while stack:
        pid = stack.pop()
        if pid in seen:
            continue
        seen.add(pid)
        stack.extend(recipes.get(pid, {}).keys())
    return seen


def find_cycle(
    product_id: int,
    new_recipe: Mapping[int, int],
    recipes: Mapping[int, Mapping[int, int]],
) -> list[int] | None:
    """
    Path product_id -> ... -> product_id created by giving product_id new_recipe,
    or None when the graph stays acyclic.

    recipes holds the currently stored recipe of every other product.
    """
    graph = dict(recipes)
    graph[product_id] = dict(new_recipe)

    def _walk(node: int, path: list[int], visiting: set[int]) -> list[int] | None:
        for child in graph.get(node, {}):
            if child == product_id:
                return path + [child]
            if child in visiting:
                continue
            visiting.add(child)
            found = _walk(child, path + [child], visiting)
            if found:
                return found
        return None

    return _walk(product_id, [product_id], set())

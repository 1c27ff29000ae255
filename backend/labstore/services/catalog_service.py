"""
Catalog Service - products, recipes and admin stock overrides

WHY: Stock is one of the two transactionally protected resources. Outside the
settlement procedure, only the admin override paths here may write it, and
they take the same write lock the settlement does.

Every admin product change appends a ProductLog row in the same transaction.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import select

from ..errors import NotFoundError, ValidationError, RecipeCycleDetected
from ..extensions import db
from ..models import Product, RecipeComponent, ProductLog
from ..validation import (
    MAX_QUANTITY,
    coerce_int,
    optional_text,
    require_non_negative_int,
    require_positive_int,
    require_text,
)
from .concurrency import atomic, lock_for_update
from . import recipe_resolver

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"name", "category", "price", "cost", "is_active", "is_sellable"}


def _log(product: Product, action: str, detail: dict | None = None) -> ProductLog:
    entry = ProductLog(
        product_id=product.id,
        product_name=product.name,
        action=action,
        detail=json.dumps(detail, ensure_ascii=False, sort_keys=True) if detail else None,
    )
    db.session.add(entry)
    return entry


def _clean_patch(data: dict, *, creating: bool) -> dict:
    patch: dict = {}
    if creating or "name" in data:
        patch["name"] = require_text(data.get("name"), "name")
    if "category" in data:
        patch["category"] = optional_text(data.get("category"), "category", max_length=64) or ""
    if creating or "price" in data:
        patch["price"] = require_non_negative_int(data.get("price"), "price")
    if "cost" in data:
        cost = data.get("cost")
        patch["cost"] = None if cost is None else require_non_negative_int(cost, "cost")
    for flag in ("is_active", "is_sellable"):
        if flag in data:
            if not isinstance(data[flag], bool):
                raise ValidationError(f"{flag} must be a boolean")
            patch[flag] = data[flag]
    return patch


def _clean_recipe(raw) -> dict[int, int]:
    """Accept {ingredient_id: qty} or [{"ingredient_id", "quantity"}]."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        pairs = raw.items()
    elif isinstance(raw, list):
        try:
            pairs = [(item["ingredient_id"], item["quantity"]) for item in raw]
        except (KeyError, TypeError):
            raise ValidationError("recipe items need ingredient_id and quantity")
    else:
        raise ValidationError("recipe must be an object or a list")

    recipe: dict[int, int] = {}
    for ingredient_id, quantity in pairs:
        iid = coerce_int(ingredient_id, "ingredient_id")
        qty = require_positive_int(quantity, "quantity", maximum=MAX_QUANTITY)
        recipe[iid] = recipe.get(iid, 0) + qty
    return recipe


def _stored_recipes() -> dict[int, dict[int, int]]:
    recipes: dict[int, dict[int, int]] = {}
    for row in db.session.query(RecipeComponent).all():
        recipes.setdefault(row.product_id, {})[row.ingredient_id] = row.quantity
    return recipes


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def load_lookup(product_ids=None, *, lock: bool = False) -> dict[int, Product]:
    """
    Load products keyed by id.

    With product_ids, loads those products and every ingredient reachable
    from them. lock=True takes row locks (inside an open write transaction).
    """
    if product_ids is None:
        stmt = select(Product)
    else:
        ids = recipe_resolver.reachable_ids(product_ids, _stored_recipes())
        if not ids:
            return {}
        stmt = select(Product).where(Product.id.in_(ids)).order_by(Product.id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return {p.id: p for p in db.session.execute(stmt).scalars().all()}


def purchasable_map(lookup: dict[int, Product]) -> dict[int, int]:
    memo: dict[int, int] = {}
    return {
        pid: recipe_resolver.purchasable_quantity(pid, lookup, _memo=memo)
        for pid in lookup
    }


def list_catalog(*, include_inactive: bool = False, include_internal: bool = False) -> list[dict]:
    """
    Products with their purchasable quantity.

    The quantity is advisory (display only); settlement re-resolves it under
    lock at commit time.
    """
    lookup = load_lookup()
    available = purchasable_map(lookup)

    items = []
    for product in sorted(lookup.values(), key=lambda p: p.id):
        if not include_inactive and not product.is_active:
            continue
        if not include_internal and not product.is_sellable:
            continue
        data = product.to_dict()
        data["purchasable_quantity"] = available[product.id]
        items.append(data)
    return items


def get_product(product_id: int) -> dict:
    product = _get_product(product_id)
    lookup = load_lookup([product_id])
    data = product.to_dict()
    data["purchasable_quantity"] = recipe_resolver.purchasable_quantity(product_id, lookup)
    return data


def create_product(data: dict) -> Product:
    patch = _clean_patch(data, creating=True)
    stock = require_non_negative_int(data.get("stock", 0), "stock")
    recipe = _clean_recipe(data.get("recipe"))

    def _op():
        product = Product(stock=stock, **patch)
        db.session.add(product)
        db.session.flush()
        if recipe:
            _apply_recipe(product, recipe)
        _log(product, "CREATE", {"price": product.price, "stock": stock, "recipe": recipe or None})
        return product

    product = atomic(_op)
    logger.info("Created product %s (%s)", product.id, product.name)
    return product


def update_product(product_id: int, data: dict) -> Product:
    patch = _clean_patch(data, creating=False)
    if not patch:
        raise ValidationError("No updatable fields provided")

    def _op():
        product = _get_product(product_id, lock=True)
        changes = {}
        for key, value in patch.items():
            if key in PRODUCT_MUTABLE_FIELDS and getattr(product, key) != value:
                changes[key] = {"from": getattr(product, key), "to": value}
                setattr(product, key, value)
        if changes:
            _log(product, "UPDATE", changes)
        return product

    return atomic(_op)


def deactivate_product(product_id: int) -> Product:
    def _op():
        product = _get_product(product_id, lock=True)
        if product.is_active:
            product.is_active = False
            _log(product, "DEACTIVATE")
        return product

    return atomic(_op)


def set_stock(product_id: int, stock, note: str | None = None) -> Product:
    """Admin override: set counted stock of a simple product."""
    new_stock = require_non_negative_int(stock, "stock")

    def _op():
        product = _get_product(product_id, lock=True)
        if product.is_composite:
            raise ValidationError("Composite product stock is derived from its ingredients")
        old = product.stock
        product.stock = new_stock
        _log(product, "STOCK_SET", {"from": old, "to": new_stock, "note": note})
        return product

    return atomic(_op)


def restock(product_id: int, quantity, note: str | None = None) -> Product:
    """Admin override: add delivered units to a simple product."""
    qty = require_positive_int(quantity, "quantity")

    def _op():
        product = _get_product(product_id, lock=True)
        if product.is_composite:
            raise ValidationError("Restock the ingredients of a composite product instead")
        old = product.stock
        product.stock = old + qty
        _log(product, "RESTOCK", {"from": old, "to": product.stock, "quantity": qty, "note": note})
        return product

    return atomic(_op)


def _apply_recipe(product: Product, recipe: dict[int, int]) -> None:
    if product.id in recipe:
        raise RecipeCycleDetected([product.id, product.id])

    if recipe:
        existing = {
            pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(list(recipe))).all()
        }
        missing = sorted(set(recipe) - existing)
        if missing:
            raise ValidationError("Unknown ingredient products", details={"ingredient_ids": missing})

    stored = _stored_recipes()
    stored.pop(product.id, None)
    cycle = recipe_resolver.find_cycle(product.id, recipe, stored)
    if cycle:
        raise RecipeCycleDetected(cycle)

    product.recipe.clear()
    db.session.flush()
    for ingredient_id, quantity in sorted(recipe.items()):
        product.recipe.append(RecipeComponent(ingredient_id=ingredient_id, quantity=quantity))


def set_recipe(product_id: int, raw_recipe) -> Product:
    """
    Replace a product's recipe. An empty recipe turns it back into a simple product.

    Rejects self references and any edit that would close a cycle in the
    ingredient graph.
    """
    recipe = _clean_recipe(raw_recipe)

    def _op():
        product = _get_product(product_id, lock=True)
        old = product.recipe_map
        _apply_recipe(product, recipe)
        _log(product, "RECIPE", {"from": old or None, "to": recipe or None})
        return product

    return atomic(_op)


def list_product_logs(limit: int = 50) -> list[ProductLog]:
    limit = max(1, min(limit, 500))
    return (
        db.session.query(ProductLog)
        .order_by(ProductLog.created_at.desc(), ProductLog.id.desc())
        .limit(limit)
        .all()
    )

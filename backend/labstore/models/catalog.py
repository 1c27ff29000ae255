from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable (or purely internal) product.

    A product with recipe rows is a composite: its own stock column is
    ignored and its purchasable quantity is derived from its ingredients.
    Prices and costs are integer store currency units.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_category", "is_active", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False, default="")

    price = db.Column(db.Integer, nullable=False, default=0)
    cost = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Internal products (ingredients only) are hidden from the kiosk catalog
    is_sellable = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    recipe = db.relationship(
        "RecipeComponent",
        foreign_keys="RecipeComponent.product_id",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RecipeComponent.ingredient_id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    @property
    def recipe_map(self) -> dict[int, int]:
        return {c.ingredient_id: c.quantity for c in self.recipe}

    @property
    def is_composite(self) -> bool:
        return bool(self.recipe)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "cost": self.cost,
            "stock": None if self.is_composite else self.stock,
            "is_active": self.is_active,
            "is_sellable": self.is_sellable,
            "recipe": [c.to_dict() for c in self.recipe],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RecipeComponent(db.Model):
    """One ingredient requirement of a composite product (per unit sold)."""
    __tablename__ = "recipe_components"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_recipe_product_ingredient"),
        db.CheckConstraint("quantity > 0", name="ck_recipe_quantity_positive"),
        db.CheckConstraint("product_id != ingredient_id", name="ck_recipe_not_self"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"ingredient_id": self.ingredient_id, "quantity": self.quantity}


class ProductLog(db.Model):
    """
    Append-only audit of admin product operations.

    Product name is snapshotted so the log survives renames.
    """
    __tablename__ = "product_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    # CREATE, UPDATE, DEACTIVATE, STOCK_SET, RESTOCK, RECIPE
    action = db.Column(db.String(32), nullable=False, index=True)
    detail = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "action": self.action,
            "detail": self.detail,
            "created_at": to_utc_z(self.created_at),
        }

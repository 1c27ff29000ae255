# Overview: Flask API routes for the catalog, recipes and stock overrides.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..errors import StoreError
from ..services import catalog_service

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """Kiosk catalog: active sellable products with advisory purchasable quantity."""
    return jsonify({"items": catalog_service.list_catalog()}), 200


@products_bp.get("/admin")
@require_admin
def admin_list_products_route():
    items = catalog_service.list_catalog(include_inactive=True, include_internal=True)
    return jsonify({"items": items}), 200


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("")
@require_admin
def create_product_route():
    try:
        product = catalog_service.create_product(request.get_json(silent=True) or {})
        return jsonify({"product": catalog_service.get_product(product.id)}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_admin
def update_product_route(product_id: int):
    try:
        catalog_service.update_product(product_id, request.get_json(silent=True) or {})
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/deactivate")
@require_admin
def deactivate_product_route(product_id: int):
    try:
        catalog_service.deactivate_product(product_id)
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.put("/<int:product_id>/recipe")
@require_admin
def set_recipe_route(product_id: int):
    """
    Replace a product's recipe.

    Body: {"recipe": {"<ingredient_id>": qty, ...}} or a list of
    {"ingredient_id", "quantity"}. 409 RecipeCycleDetected on cycles.
    """
    data = request.get_json(silent=True) or {}
    try:
        catalog_service.set_recipe(product_id, data.get("recipe"))
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to set recipe")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/stock")
@require_admin
def set_stock_route(product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        catalog_service.set_stock(product_id, data.get("stock"), note=data.get("note"))
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.post("/<int:product_id>/restock")
@require_admin
def restock_route(product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        catalog_service.restock(product_id, data.get("quantity"), note=data.get("note"))
        return jsonify({"product": catalog_service.get_product(product_id)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@products_bp.get("/logs")
@require_admin
def product_logs_route():
    limit = request.args.get("limit", default=50, type=int)
    logs = catalog_service.list_product_logs(limit)
    return jsonify({"items": [log.to_dict() for log in logs]}), 200

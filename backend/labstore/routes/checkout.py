# Overview: Settlement RPC exposed to the kiosk UI.

from flask import Blueprint, current_app, jsonify, request

from ..errors import StoreError
from ..services import settlement_service

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/settle")
def settle_route():
    """
    Settle a cart atomically.

    Body: {"member_id": int, "items": [{"product_id": int, "quantity": int}], "kiosk_id"?: int}
    Any client-supplied price is ignored.

    200 {"success": true, "new_balance": ...}
    4xx/503 {"success": false, "error": ..., "code": ..., "details": ...}
    """
    data = request.get_json(silent=True) or {}
    try:
        result = settlement_service.settle(
            data.get("member_id"),
            data.get("items"),
            kiosk_id=data.get("kiosk_id") if isinstance(data.get("kiosk_id"), int) else None,
        )
        return jsonify(result.to_dict()), 200
    except StoreError as e:
        body = e.to_dict()
        body["success"] = False
        return jsonify(body), e.http_status
    except Exception:
        current_app.logger.exception("Failed to settle cart")
        return jsonify({"success": False, "error": "Internal server error"}), 500

# Overview: Transaction history and period close.

from flask import Blueprint, jsonify, request

from ..decorators import require_admin
from ..services import transaction_service

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_admin
def list_transactions_route():
    limit = request.args.get("limit", default=200, type=int)
    member_id = request.args.get("member_id", type=int)
    include_archived = request.args.get("include_archived", "false").lower() == "true"
    rows = transaction_service.list_transactions(
        include_archived=include_archived, member_id=member_id, limit=limit
    )
    return jsonify({"items": [tx.to_dict() for tx in rows]}), 200


@transactions_bp.post("/archive")
@require_admin
def archive_route():
    count = transaction_service.archive_transactions()
    return jsonify({"success": True, "archived": count}), 200

# Overview: Flask API routes for the cash box (charges, refunds, expenses, reconciliation).

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..errors import StoreError
from ..services import cashbox_service, member_service

cashbox_bp = Blueprint("cashbox", __name__, url_prefix="/api/cashbox")


@cashbox_bp.get("")
@require_admin
def get_cash_box_route():
    box = cashbox_service.get_cash_box()
    return jsonify({"cash_box": box.to_dict()}), 200


@cashbox_bp.get("/entries")
@require_admin
def list_entries_route():
    limit = request.args.get("limit", default=50, type=int)
    try:
        entries = cashbox_service.list_entries(request.args.get("type"), limit)
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"items": [entry.to_dict() for entry in entries]}), 200


@cashbox_bp.get("/summary")
@require_admin
def summary_route():
    return jsonify(cashbox_service.reconciliation_summary()), 200


@cashbox_bp.post("/charge")
@require_admin
def charge_route():
    """Top up a member. Body: {"member_id", "amount", "note"?}"""
    data = request.get_json(silent=True) or {}
    try:
        member_id = data.get("member_id")
        if not isinstance(member_id, int):
            return jsonify({"error": "member_id required"}), 400
        entry = cashbox_service.charge_member(member_id, data.get("amount"), note=data.get("note"))
        member = member_service.get_member(member_id)
        return jsonify({"entry": entry.to_dict(), "member": member.to_dict()}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to charge member")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.post("/refund")
@require_admin
def refund_route():
    """Body: {"member_id", "amount", "allow_negative"?, "note"?}"""
    data = request.get_json(silent=True) or {}
    try:
        member_id = data.get("member_id")
        if not isinstance(member_id, int):
            return jsonify({"error": "member_id required"}), 400
        entry = cashbox_service.refund_member(
            member_id,
            data.get("amount"),
            allow_negative=data.get("allow_negative") is True,
            note=data.get("note"),
        )
        member = member_service.get_member(member_id)
        return jsonify({"entry": entry.to_dict(), "member": member.to_dict()}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund member")
        return jsonify({"error": "Internal server error"}), 500


@cashbox_bp.post("/expenses")
@require_admin
def expense_route():
    """Body: {"amount", "description", "allow_negative"?}"""
    data = request.get_json(silent=True) or {}
    try:
        entry = cashbox_service.record_expense(
            data.get("amount"),
            data.get("description"),
            allow_negative=data.get("allow_negative") is True,
        )
        return jsonify({"entry": entry.to_dict()}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@cashbox_bp.post("/reconcile")
@require_admin
def reconcile_route():
    """Body: {"counted_amount", "note"?}"""
    data = request.get_json(silent=True) or {}
    try:
        entry = cashbox_service.reconcile(data.get("counted_amount"), note=data.get("note"))
        return jsonify({"entry": entry.to_dict()}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status

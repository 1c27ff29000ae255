# Overview: Flask API routes for members and card bindings; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin
from ..errors import StoreError, UnknownOrInactiveCard
from ..services import member_service

members_bp = Blueprint("members", __name__, url_prefix="/api/members")


@members_bp.get("")
def list_members_route():
    """Kiosk select screen: active members grouped by grade."""
    members = member_service.list_members()
    return jsonify({"groups": member_service.group_by_grade(members)}), 200


@members_bp.get("/by-card")
def member_by_card_route():
    """Resolve a presented card to an active member (404 for unknown or inactive cards)."""
    try:
        member = member_service.find_by_card(request.args.get("uid"))
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    if member is None or not member.is_active:
        e = UnknownOrInactiveCard(request.args.get("uid") or "")
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"member": member.to_dict()}), 200


@members_bp.get("/<int:member_id>")
def get_member_route(member_id: int):
    try:
        member = member_service.get_member(member_id)
        return jsonify({"member": member.to_dict()}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@members_bp.get("/admin")
@require_admin
def admin_list_members_route():
    include_inactive = request.args.get("include_inactive", "true").lower() == "true"
    members = member_service.list_members(include_inactive=include_inactive)
    return jsonify({"items": [m.to_dict(include_card=True) for m in members]}), 200


@members_bp.post("")
@require_admin
def create_member_route():
    try:
        member = member_service.create_member(request.get_json(silent=True) or {})
        return jsonify({"member": member.to_dict(include_card=True)}), 201
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.patch("/<int:member_id>")
@require_admin
def update_member_route(member_id: int):
    try:
        member = member_service.update_member(member_id, request.get_json(silent=True) or {})
        return jsonify({"member": member.to_dict(include_card=True)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.post("/<int:member_id>/deactivate")
@require_admin
def deactivate_member_route(member_id: int):
    try:
        member = member_service.set_active(member_id, False)
        return jsonify({"member": member.to_dict(include_card=True)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@members_bp.post("/<int:member_id>/reactivate")
@require_admin
def reactivate_member_route(member_id: int):
    try:
        member = member_service.set_active(member_id, True)
        return jsonify({"member": member.to_dict(include_card=True)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status


@members_bp.post("/<int:member_id>/card")
@require_admin
def bind_card_route(member_id: int):
    """
    Bind a card UID to a member.

    409 DuplicateCardBinding when the UID already belongs to another member.
    """
    data = request.get_json(silent=True) or {}
    try:
        member = member_service.bind_card(member_id, data.get("uid"))
        return jsonify({"member": member.to_dict(include_card=True)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to bind card")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.delete("/<int:member_id>/card")
@require_admin
def unbind_card_route(member_id: int):
    try:
        member = member_service.unbind_card(member_id)
        return jsonify({"member": member.to_dict(include_card=True)}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status

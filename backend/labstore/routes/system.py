# backend/labstore/routes/system.py
"""
System health endpoint and kiosk password check.
"""

import hmac
import time

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import Member, Product

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        member_count = db.session.query(Member).count()
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"members": member_count, "products": product_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({"status": database["status"], "database": database}), status_code


@system_bp.post("/api/auth/kiosk-password")
def verify_kiosk_password_route():
    """Unlock check for the kiosk's admin corner."""
    data = request.get_json(silent=True) or {}
    supplied = data.get("password")
    if not isinstance(supplied, str):
        return jsonify({"error": "password required"}), 400
    expected = current_app.config.get("KIOSK_PASSWORD") or "admin"
    valid = hmac.compare_digest(supplied.encode(), expected.encode())
    return jsonify({"valid": valid}), 200

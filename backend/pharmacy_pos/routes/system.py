# backend/pharmacy_pos/routes/system.py
"""
System health endpoint.

Reports database reachability and row counts for the core tables.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import InventoryItem, Invoice, PurchaseOrder, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "lots": db.session.query(InventoryItem).count(),
            "invoices": db.session.query(Invoice).count(),
            "purchase_orders": db.session.query(PurchaseOrder).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503

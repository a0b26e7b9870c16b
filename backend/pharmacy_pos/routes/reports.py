# Overview: Flask API routes for reports; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_user
from ..errors import PharmacyError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
@require_user
def summary_route():
    """Query: start?, end? (ISO-8601, inclusive)."""
    try:
        report = reporting_service.summary(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build summary report")
        return jsonify({"error": "Internal server error"}), 500

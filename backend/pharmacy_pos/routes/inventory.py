# Overview: Flask API routes for inventory lots; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_user
from ..errors import PharmacyError
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/receive")
@require_user
def receive_route():
    """
    Stock adjustment outside a purchase order.

    Body: product_id, product_unit_id, quantity, batch_number?, expiry_date?
    """
    try:
        data = request.get_json(silent=True) or {}
        lot = inventory_service.receive_stock(
            product_id=data.get("product_id"),
            product_unit_id=data.get("product_unit_id"),
            quantity=data.get("quantity"),
            batch_number=data.get("batch_number"),
            expiry_date=data.get("expiry_date"),
        )
        return jsonify({"lot": lot.to_dict()}), 201

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/lots")
@require_user
def list_lots_route():
    """Query: product_id?, product_unit_id?, include_empty? (1/true)."""
    try:
        product_id = request.args.get("product_id", type=int)
        product_unit_id = request.args.get("product_unit_id", type=int)
        include_empty = request.args.get("include_empty", "").lower() in {"1", "true", "yes"}

        lots = inventory_service.list_lots(
            product_id=product_id,
            product_unit_id=product_unit_id,
            include_empty=include_empty,
        )
        return jsonify({"items": [lot.to_dict() for lot in lots], "count": len(lots)}), 200

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list lots")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/total")
@require_user
def product_total_route(product_id: int):
    try:
        return jsonify({
            "product_id": product_id,
            "total_quantity": inventory_service.total_quantity(product_id),
        }), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to compute product total")
        return jsonify({"error": "Internal server error"}), 500

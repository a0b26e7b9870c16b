# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_user
from ..errors import PharmacyError
from ..services import purchase_service


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


def _order_payload(order) -> dict:
    data = order.to_dict(include_items=True)
    summary = purchase_service.get_payment_summary(order.id)
    data["total_paid"] = summary["total_paid"]
    data["remaining"] = summary["remaining"]
    return data


@purchase_orders_bp.post("/")
@require_user
def create_purchase_order_route():
    """
    Create an order and receive its items.

    Body: code, supplier_id, payment_method, items[{product_id,
    product_unit_id, quantity, cost_price, batch_number?, expiry_date?}],
    order_date?, notes?, payment_status?, initial_payment?
    """
    try:
        data = request.get_json(silent=True) or {}
        order = purchase_service.create_purchase_order(
            code=data.get("code"),
            supplier_id=data.get("supplier_id"),
            user_id=g.current_user.id,
            payment_method=data.get("payment_method"),
            items=data.get("items"),
            order_date=data.get("order_date"),
            notes=data.get("notes"),
            payment_status=data.get("payment_status"),
            initial_payment=data.get("initial_payment"),
        )
        return jsonify({"purchase_order": _order_payload(order)}), 201

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("/<int:order_id>")
@require_user
def get_purchase_order_route(order_id: int):
    try:
        order = purchase_service.get_purchase_order(order_id)
        return jsonify({"purchase_order": _order_payload(order)}), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/items")
@require_user
def add_item_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        item = purchase_service.add_item(order_id, data)
        order = purchase_service.get_purchase_order(order_id)
        return jsonify({"item": item.to_dict(), "purchase_order": _order_payload(order)}), 201

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add purchase order item")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_user
def remove_item_route(order_id: int, item_id: int):
    try:
        order = purchase_service.remove_item(order_id, item_id)
        return jsonify({"purchase_order": _order_payload(order)}), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove purchase order item")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/payments")
@require_user
def record_payment_route(order_id: int):
    """Body: amount, payment_method, description?"""
    try:
        data = request.get_json(silent=True) or {}
        tx = purchase_service.record_payment(
            order_id,
            amount=data.get("amount"),
            payment_method=data.get("payment_method"),
            user_id=g.current_user.id,
            description=data.get("description"),
        )
        return jsonify({
            "transaction": tx.to_dict(),
            "summary": purchase_service.get_payment_summary(order_id),
        }), 201

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record purchase order payment")
        return jsonify({"error": "Internal server error"}), 500

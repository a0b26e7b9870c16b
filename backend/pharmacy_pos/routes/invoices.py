# Overview: Flask API routes for invoices; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_user
from ..errors import PharmacyError, ValidationError
from ..services import code_service, sales_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _parse_restock(value):
    """JSON boolean, or "1"/"true"/"yes" and "0"/"false"/"no" strings; None keeps the configured default."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        flag = value.strip().lower()
        if flag in {"1", "true", "yes"}:
            return True
        if flag in {"0", "false", "no", ""}:
            return False
    raise ValidationError("restock must be a boolean", {"field": "restock"})


@invoices_bp.post("/")
@require_user
def create_invoice_route():
    """
    Record a sale.

    Body: code, payment_method, lines[{product_id, product_unit_id, quantity,
    unit_price, lot_id?, batch_number?, expiry_date?}], discount?,
    customer_name?, customer_phone?, invoice_date?, notes?
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = sales_service.create_invoice(
            code=data.get("code"),
            user_id=g.current_user.id,
            payment_method=data.get("payment_method"),
            lines=data.get("lines"),
            discount=data.get("discount", 0),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            invoice_date=data.get("invoice_date"),
            notes=data.get("notes"),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 201

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/next-code")
@require_user
def next_code_route():
    try:
        return jsonify({"code": code_service.next_invoice_code()}), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to allocate invoice code")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_user
def get_invoice_route(invoice_id: int):
    try:
        invoice = sales_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_user
def cancel_invoice_route(invoice_id: int):
    """Body: reason?, restock? (defaults to INVOICE_CANCEL_RESTOCK)."""
    try:
        data = request.get_json(silent=True) or {}
        invoice = sales_service.cancel_invoice(
            invoice_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
            restock=_parse_restock(data.get("restock")),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200

    except PharmacyError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500

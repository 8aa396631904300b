# Overview: Flask API routes for order fulfillment; parses input and returns JSON responses.

# backend/marketpay/routes/orders.py
"""Order API routes: customer order history and fulfillment transitions."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import WorkflowError
from ..services import fulfillment_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/mine")
@require_actor
def list_my_orders_route():
    """Paginated list of the caller's orders (?status=&page=&limit=)."""
    try:
        result = fulfillment_service.list_customer_orders(
            g.actor_id,
            status=request.args.get("status") or None,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 10, type=int),
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/mine/stats")
@require_actor
def my_order_stats_route():
    try:
        return jsonify(fulfillment_service.customer_order_stats(g.actor_id)), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute order stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_actor
def update_order_status_route(order_id: int):
    """
    Move an order along its fulfillment path.

    Body: {"status": "shipped" | "delivered" | "completed" | "cancelled"}
    """
    try:
        data = request.get_json() or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        result = fulfillment_service.update_order_status(order_id, g.actor_id, status)
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm-receipt")
@require_actor
def confirm_receipt_route(order_id: int):
    try:
        result = fulfillment_service.confirm_receipt(order_id, g.actor_id)
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm receipt")
        return jsonify({"error": "Internal server error"}), 500

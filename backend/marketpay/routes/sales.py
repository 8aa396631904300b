# Overview: Flask API routes for tenant sales reporting; parses input and returns JSON responses.

# backend/marketpay/routes/sales.py
"""Sales API routes. Tenant operators of verified tenants and super-admins only."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import WorkflowError
from ..services import fulfillment_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_actor
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - tenant_id: super-admins only
    - status: filter by status
    - search: matches sale number or customer name
    - page, limit
    """
    try:
        result = fulfillment_service.list_tenant_sales(
            g.actor_id,
            tenant_id=request.args.get("tenant_id", type=int),
            status=request.args.get("status") or None,
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/stats")
@require_actor
def sales_stats_route():
    try:
        stats = fulfillment_service.tenant_sales_stats(
            g.actor_id, tenant_id=request.args.get("tenant_id", type=int)
        )
        return jsonify(stats), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute sales stats")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = fulfillment_service.get_sale(sale_id, g.actor_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500

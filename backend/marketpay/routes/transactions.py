# Overview: Flask API routes for payment transactions; parses input and returns JSON responses.

# backend/marketpay/routes/transactions.py
"""
Transaction API routes.

Customer side: checkout, submit the mobile-money id, view own payments.
Tenant side: verification queue, verify, reject, mark viewed.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import WorkflowError
from ..services import transaction_service, verification_service


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


@transactions_bp.post("")
@require_actor
def create_transaction_route():
    """
    Create a pending transaction from a checkout.

    Body:
        tenant_id, items [{product_id, quantity}], customer_name,
        customer_phone, customer_email (optional), delivery_type,
        shipping_address {line1, city, country} (delivery only), notes
    """
    try:
        data = request.get_json() or {}
        tenant_id = data.get("tenant_id")
        if not isinstance(tenant_id, int):
            return jsonify({"error": "tenant_id required"}), 400

        txn = transaction_service.create_transaction(
            customer_id=g.actor_id,
            tenant_id=tenant_id,
            items=data.get("items"),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            customer_email=data.get("customer_email"),
            delivery_type=data.get("delivery_type", "direct"),
            shipping_address=data.get("shipping_address"),
            notes=data.get("notes"),
        )
        return jsonify({"transaction": txn.to_dict()}), 201

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/mine")
@require_actor
def list_my_transactions_route():
    """Paginated list of the caller's transactions (?page=&limit=)."""
    try:
        result = transaction_service.list_customer_transactions(
            g.actor_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 10, type=int),
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/queue")
@require_actor
def verification_queue_route():
    """
    Tenant verification queue with each transaction's orders.

    Query params:
    - tenant_id: super-admins only; omit for every tenant
    - status: filter by transaction status
    - include_expired: true to include expired transactions
    """
    try:
        transactions = transaction_service.list_tenant_transactions(
            g.actor_id,
            tenant_id=request.args.get("tenant_id", type=int),
            status=request.args.get("status") or None,
            include_expired=_flag("include_expired"),
        )
        return jsonify({"transactions": transactions, "count": len(transactions)}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list verification queue")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/queue/unviewed-count")
@require_actor
def unviewed_count_route():
    try:
        count = transaction_service.count_unviewed(
            g.actor_id, tenant_id=request.args.get("tenant_id", type=int)
        )
        return jsonify({"count": count}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to count unviewed transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
@require_actor
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id, g.actor_id)
        return jsonify({"transaction": txn.to_dict()}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/submit")
@require_actor
def submit_payment_route(transaction_id: int):
    """
    Customer reports the mobile-money transaction id.

    Body: {"instrument_id": "..."}
    """
    try:
        data = request.get_json() or {}
        result = transaction_service.submit_payment_instrument(
            transaction_id, g.actor_id, data.get("instrument_id")
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit payment")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/verify")
@require_actor
def verify_transaction_route(transaction_id: int):
    """
    Tenant confirms the payment; creates one order and sale per line item.

    409 with code "already_processed" means another operator got there first.
    """
    try:
        result = verification_service.verify_transaction(transaction_id, g.actor_id)
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/reject")
@require_actor
def reject_transaction_route(transaction_id: int):
    """
    Tenant declines the payment.

    Body: {"reason": "..."} (at least 10 characters)
    """
    try:
        data = request.get_json() or {}
        result = verification_service.reject_transaction(
            transaction_id, g.actor_id, data.get("reason")
        )
        return jsonify(result), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/viewed")
@require_actor
def mark_viewed_route(transaction_id: int):
    try:
        txn = transaction_service.mark_viewed(transaction_id, g.actor_id)
        return jsonify({"id": txn.id, "viewed_by_tenant": txn.viewed_by_tenant}), 200

    except WorkflowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark transaction viewed")
        return jsonify({"error": "Internal server error"}), 500

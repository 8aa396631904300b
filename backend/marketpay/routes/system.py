# backend/marketpay/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the payment queue for
deployment monitoring.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Tenant, Transaction
from ..models.transactions import OPEN_TRANSACTION_STATUSES
from marketpay.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        tenant_count = db.session.query(Tenant).count()
        transaction_count = db.session.query(Transaction).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "tenants": tenant_count,
                "transactions": transaction_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_payment_queue_health() -> dict:
    """
    Count open transactions whose payment window has closed.

    A growing number means the expiry sweep is not running; the workflow
    still expires them lazily, so this is only ever "degraded".
    """
    start_time = time.time()
    try:
        overdue = db.session.query(Transaction).filter(
            Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
            Transaction.expires_at < utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "degraded" if overdue > 100 else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "overdue_pending_sweep": overdue,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Payment queue health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Payment queue error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    queue_health = check_payment_queue_health()

    all_checks = [database_health, queue_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "payment_queue": queue_health,
        }
    }

    return response, http_status

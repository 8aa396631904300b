# Overview: Service-layer operations for order fulfillment, sale mirroring, and order/sale reporting.

"""
Fulfillment Tracker

WHY: After verification each line item becomes an Order that moves through
fulfillment independently. The tenant's Sale record mirrors the Order's
status at all times.

TRANSITIONS (new status <- from, by role):

    direct:    pending -> completed     customer, tenant, super_admin
               pending -> cancelled     tenant, super_admin
    delivery:  pending -> shipped       tenant, super_admin
               shipped -> delivered     tenant, super_admin
               delivered -> completed   customer, super_admin
               pending -> cancelled     tenant, super_admin

completed and cancelled are terminal.

Check order: NotFound, Forbidden (unrelated actor), InvalidFulfillmentTransition,
Forbidden (role not allowed for that edge). The Order write is conditional on
its current status; the Sale is updated in the same DB transaction.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_, update

from ..errors import ConcurrentModification, Forbidden, InvalidFulfillmentTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Order, Sale, Tenant
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_SHIPPED,
    VALID_ORDER_STATUSES,
)
from ..models.transactions import DELIVERY_TYPE_DELIVERY, DELIVERY_TYPE_DIRECT
from marketpay.time_utils import utcnow
from .concurrency import begin_write, compare_and_set_status, lock_for_update, run_with_retry
from .verification_gate import (
    can_receive_orders,
    get_actor,
    is_tenant_operator,
    require_tenant_access,
    resolve_tenant_scope,
)


ROLE_CUSTOMER = "customer"
ROLE_TENANT = "tenant"
ROLE_SUPER_ADMIN = "super_admin"

_STAFF = frozenset({ROLE_TENANT, ROLE_SUPER_ADMIN})

ORDER_TRANSITIONS = {
    DELIVERY_TYPE_DIRECT: {
        (ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED): frozenset({ROLE_CUSTOMER, ROLE_TENANT, ROLE_SUPER_ADMIN}),
        (ORDER_STATUS_PENDING, ORDER_STATUS_CANCELLED): _STAFF,
    },
    DELIVERY_TYPE_DELIVERY: {
        (ORDER_STATUS_PENDING, ORDER_STATUS_SHIPPED): _STAFF,
        (ORDER_STATUS_SHIPPED, ORDER_STATUS_DELIVERED): _STAFF,
        (ORDER_STATUS_DELIVERED, ORDER_STATUS_COMPLETED): frozenset({ROLE_CUSTOMER, ROLE_SUPER_ADMIN}),
        (ORDER_STATUS_PENDING, ORDER_STATUS_CANCELLED): _STAFF,
    },
}

# Timestamp column stamped when an order enters each status
STATUS_TIMESTAMPS = {
    ORDER_STATUS_SHIPPED: "shipped_at",
    ORDER_STATUS_DELIVERED: "delivered_at",
    ORDER_STATUS_COMPLETED: "completed_at",
    ORDER_STATUS_CANCELLED: "cancelled_at",
}

OPEN_ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_SHIPPED)
MAX_PAGE_SIZE = 50


def _actor_roles(actor, order: Order) -> set[str]:
    roles: set[str] = set()
    if actor.is_super_admin:
        roles.add(ROLE_SUPER_ADMIN)
    if order.customer_id == actor.id:
        roles.add(ROLE_CUSTOMER)
    if is_tenant_operator(actor, order.tenant_id):
        if can_receive_orders(db.session.get(Tenant, order.tenant_id)):
            roles.add(ROLE_TENANT)
        elif not roles:
            # Operator of an unverified tenant; raises with the gate's message
            require_tenant_access(actor, order.tenant_id, action="manage orders")
    return roles


def allowed_roles(delivery_type: str, current_status: str, new_status: str) -> frozenset[str] | None:
    """Roles allowed to move an order along this edge, or None if the edge does not exist."""
    return ORDER_TRANSITIONS.get(delivery_type, {}).get((current_status, new_status))


def update_order_status(order_id: int, actor_id: int, new_status: str) -> dict:
    """
    Move an order along its fulfillment path and mirror the change to its Sale.

    Returns:
        {"status": new_status}

    Raises:
        ValidationError: unknown status
        NotFound, Forbidden
        InvalidFulfillmentTransition: edge not in the table for this delivery type
        ConcurrentModification: the order changed between read and write
    """
    if new_status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"status must be one of {list(VALID_ORDER_STATUSES)}")

    def _op() -> str:
        begin_write()
        order = (
            lock_for_update(db.session.query(Order).filter(Order.id == order_id))
            .populate_existing()
            .first()
        )
        if order is None:
            raise NotFound("Order not found")

        actor = get_actor(actor_id)
        roles = _actor_roles(actor, order)
        if not roles:
            current_app.logger.warning("Actor %s denied on order %s", actor.id, order.id)
            raise Forbidden("Access denied")

        current_status = order.status
        allowed = allowed_roles(order.delivery_type, current_status, new_status)
        if allowed is None:
            raise InvalidFulfillmentTransition(
                f"Cannot change {order.delivery_type} order from {current_status} to {new_status}",
                current_status,
                new_status,
            )
        acting_roles = roles & allowed
        if not acting_roles:
            raise Forbidden(f"Not allowed to mark this order as {new_status}")

        now = utcnow()
        values = {"status": new_status, STATUS_TIMESTAMPS[new_status]: now}
        if new_status == ORDER_STATUS_COMPLETED and ROLE_CUSTOMER in acting_roles:
            values["received"] = True
            values["confirmed_at"] = now

        if not compare_and_set_status(Order, order.id, current_status, values):
            db.session.rollback()
            raise ConcurrentModification("Order was updated by someone else", {"order_id": order_id})

        result = db.session.execute(
            update(Sale)
            .where(Sale.order_id == order.id)
            .values(status=new_status, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise ConcurrentModification("Sale record for order is missing", {"order_id": order_id})

        db.session.commit()
        return current_status

    previous = run_with_retry(_op)
    current_app.logger.info(
        "Order %s %s -> %s by user %s", order_id, previous, new_status, actor_id
    )
    return {"status": new_status}


def confirm_receipt(order_id: int, actor_id: int) -> dict:
    """Customer confirms they have the item; completes the order."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    actor = get_actor(actor_id)
    if order.customer_id != actor.id:
        raise Forbidden("Only the customer can confirm receipt")
    return update_order_status(order_id, actor_id, ORDER_STATUS_COMPLETED)


# =============================================================================
# READS
# =============================================================================

def _page(query, page: int, limit: int) -> dict:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if page < 1:
        raise ValidationError("page must be >= 1")

    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total + limit - 1) // limit
    return {
        "docs": [row.to_dict() for row in rows],
        "total_docs": total,
        "total_pages": total_pages,
        "page": page,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def _check_status_filter(status: str | None) -> None:
    if status is not None and status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"status must be one of {list(VALID_ORDER_STATUSES)}")


def list_customer_orders(actor_id: int, status: str | None = None, page: int = 1, limit: int = 10) -> dict:
    actor = get_actor(actor_id)
    _check_status_filter(status)

    query = db.session.query(Order).filter(Order.customer_id == actor.id)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return _page(query, page, limit)


def customer_order_stats(actor_id: int) -> dict:
    """
    Order counts and spend for the customer dashboard.

    pending_orders counts orders not yet delivered (pending or shipped).
    total_spent excludes cancelled orders.
    """
    actor = get_actor(actor_id)
    rows = (
        db.session.query(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.customer_id == actor.id)
        .group_by(Order.status)
        .all()
    )
    counts = {status: count for status, count, _ in rows}
    total_spent = sum(int(amount) for status, _, amount in rows if status != ORDER_STATUS_CANCELLED)

    return {
        "total_orders": sum(counts.values()),
        "pending_orders": sum(counts.get(s, 0) for s in OPEN_ORDER_STATUSES),
        "delivered_orders": counts.get(ORDER_STATUS_DELIVERED, 0),
        "completed_orders": counts.get(ORDER_STATUS_COMPLETED, 0),
        "cancelled_orders": counts.get(ORDER_STATUS_CANCELLED, 0),
        "total_spent": total_spent,
        "currency": current_app.config.get("CURRENCY", "RWF"),
    }


def list_tenant_sales(
    actor_id: int,
    *,
    tenant_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Sales for the tenant's dashboard, newest first; search matches sale number or customer name."""
    actor = get_actor(actor_id)
    scope = resolve_tenant_scope(actor, tenant_id, action="view sales")
    _check_status_filter(status)

    query = db.session.query(Sale)
    if scope is not None:
        query = query.filter(Sale.tenant_id == scope)
    if status:
        query = query.filter(Sale.status == status)
    search = (search or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Sale.sale_number.ilike(pattern), Sale.customer_name.ilike(pattern)))

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    return _page(query, page, limit)


def get_sale(sale_id: int, actor_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found")
    actor = get_actor(actor_id)
    require_tenant_access(actor, sale.tenant_id, action="view sales")
    return sale


def tenant_sales_stats(actor_id: int, tenant_id: int | None = None) -> dict:
    """
    Sales totals for a tenant.

    Revenue and average exclude cancelled sales; by_status counts every status.
    """
    actor = get_actor(actor_id)
    scope = resolve_tenant_scope(actor, tenant_id, action="view sales")

    query = db.session.query(Sale.status, func.count(Sale.id), func.coalesce(func.sum(Sale.total_amount), 0))
    if scope is not None:
        query = query.filter(Sale.tenant_id == scope)
    rows = query.group_by(Sale.status).all()

    by_status = {status: 0 for status in VALID_ORDER_STATUSES}
    revenue = 0
    counted = 0
    for status, count, amount in rows:
        by_status[status] = count
        if status != ORDER_STATUS_CANCELLED:
            revenue += int(amount)
            counted += count

    return {
        "total_sales": sum(by_status.values()),
        "total_revenue": revenue,
        "average_order_value": round(revenue / counted, 2) if counted else 0,
        "by_status": by_status,
        "currency": current_app.config.get("CURRENCY", "RWF"),
    }

# Overview: Service-layer operations for tenant payment verification and rejection.

"""
Verification Engine

WHY: The tenant checks their mobile-money statement and either confirms the
payment (verify) or declines it (reject). Verification fans out one Order
and one Sale per line item, and must do so exactly once no matter how many
operators click "verify" at the same time.

ATOMICITY:
1. Take the write lock (begin_write)
2. Conditional status flip awaiting_verification -> verified is the FIRST write
3. Zero rows changed: someone else won; roll back and report AlreadyProcessed
4. Fan-out runs in the same DB transaction as the flip
5. Any exception before commit rolls back the flip and every created row

Notifications are handed off only after commit. Their failure never affects
the outcome.
"""

from __future__ import annotations

from flask import current_app

from ..errors import AlreadyProcessed, InvalidStateTransition, NotFound, ValidationError
from ..extensions import db, notifications
from ..models import Order, Sale, Transaction
from ..models.orders import ORDER_STATUS_PENDING
from ..models.transactions import (
    TRANSACTION_STATUS_AWAITING_VERIFICATION,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUS_VERIFIED,
)
from marketpay.time_utils import utcnow
from .concurrency import begin_write, compare_and_set_status, lock_for_update, run_with_retry
from .numbering_service import next_order_number, next_sale_number
from .transaction_service import expire_if_overdue
from .verification_gate import get_actor, require_tenant_access


PROCESSED_STATUSES = (TRANSACTION_STATUS_VERIFIED, TRANSACTION_STATUS_REJECTED)


def _status_error(status: str) -> InvalidStateTransition:
    if status in PROCESSED_STATUSES:
        return AlreadyProcessed("Transaction already processed", status)
    return InvalidStateTransition(
        f"Transaction must be awaiting verification (currently {status})", status
    )


def _load_authorized(transaction_id: int, actor_id: int, action: str) -> Transaction:
    """
    Load the transaction under the write lock and run the tenant gate.

    Authorization runs before any input or state check so an outsider learns
    nothing about the transaction.
    """
    txn = (
        lock_for_update(db.session.query(Transaction).filter(Transaction.id == transaction_id))
        .populate_existing()
        .first()
    )
    if txn is None:
        raise NotFound("Transaction not found")

    actor = get_actor(actor_id)
    require_tenant_access(actor, txn.tenant_id, action=action)
    return txn


def _guard_awaiting(txn: Transaction) -> None:
    if expire_if_overdue(txn):
        raise InvalidStateTransition("Transaction expired before verification", "expired")

    if txn.status != TRANSACTION_STATUS_AWAITING_VERIFICATION:
        raise _status_error(txn.status)


def _lost_race(transaction_id: int) -> InvalidStateTransition:
    db.session.rollback()
    current = db.session.get(Transaction, transaction_id, populate_existing=True)
    return _status_error(current.status)


def _fan_out(txn: Transaction) -> list[Order]:
    """Create one pending Order and its Sale per line item, in position order."""
    order_numbers: set[str] = set()
    sale_numbers: set[str] = set()
    orders: list[Order] = []

    for item in txn.items:
        order = Order(
            order_number=next_order_number(order_numbers),
            customer_id=txn.customer_id,
            tenant_id=txn.tenant_id,
            product_id=item.product_id,
            product_name=item.product_name,
            transaction_id=txn.id,
            transaction_item_id=item.id,
            quantity=item.quantity,
            price_at_purchase=item.unit_price,
            total_amount=item.quantity * item.unit_price,
            status=ORDER_STATUS_PENDING,
            delivery_type=txn.delivery_type,
            shipping_line1=txn.shipping_line1,
            shipping_city=txn.shipping_city,
            shipping_country=txn.shipping_country,
        )
        db.session.add(order)

        sale = Sale(
            sale_number=next_sale_number(sale_numbers),
            tenant_id=txn.tenant_id,
            product_id=item.product_id,
            product_name=item.product_name,
            order=order,
            customer_id=txn.customer_id,
            customer_name=txn.customer_name,
            customer_email=txn.customer_email,
            quantity=item.quantity,
            price_per_unit=item.unit_price,
            total_amount=order.total_amount,
            status=ORDER_STATUS_PENDING,
        )
        db.session.add(sale)
        orders.append(order)

    db.session.flush()
    return orders


def verify_transaction(transaction_id: int, actor_id: int) -> dict:
    """
    Confirm a customer's payment and create its orders and sales.

    Returns:
        {"orders_created": N, "order_ids": [...]} with ids in line-item order

    Raises:
        NotFound, Forbidden
        InvalidStateTransition: not awaiting verification, or expired
        AlreadyProcessed: already verified/rejected, including by a concurrent caller
    """
    def _op() -> tuple[Transaction, list[int]]:
        begin_write()
        txn = _load_authorized(transaction_id, actor_id, "verify payments")
        _guard_awaiting(txn)

        if not compare_and_set_status(
            Transaction,
            txn.id,
            TRANSACTION_STATUS_AWAITING_VERIFICATION,
            {
                "status": TRANSACTION_STATUS_VERIFIED,
                "verified_at": utcnow(),
                "verified_by_user_id": actor_id,
            },
        ):
            raise _lost_race(transaction_id)

        orders = _fan_out(txn)
        order_ids = [order.id for order in orders]
        db.session.commit()
        return txn, order_ids

    txn, order_ids = run_with_retry(_op)

    current_app.logger.info(
        "Transaction %s verified by user %s (ref %s)", txn.id, actor_id, txn.payment_reference
    )
    current_app.logger.info("Created %s orders for transaction %s: %s", len(order_ids), txn.id, order_ids)

    notifications.notify_payment_verified(txn.tenant_id, txn.total_amount, txn.payment_reference)
    return {"orders_created": len(order_ids), "order_ids": order_ids}


def reject_transaction(transaction_id: int, actor_id: int, reason: str) -> dict:
    """
    Decline a customer's payment. No orders are ever created.

    Check order: NotFound, Forbidden, reason length, expiry and status. A
    short reason raises before any write so the transaction is left untouched.
    """
    reason = (reason or "").strip()
    min_length = current_app.config.get("REJECTION_REASON_MIN_LENGTH", 10)

    def _op() -> Transaction:
        begin_write()
        txn = _load_authorized(transaction_id, actor_id, "reject payments")

        if len(reason) < min_length:
            raise ValidationError(
                f"Please provide a detailed reason (at least {min_length} characters)",
                {"min_length": min_length},
            )
        _guard_awaiting(txn)

        if not compare_and_set_status(
            Transaction,
            txn.id,
            TRANSACTION_STATUS_AWAITING_VERIFICATION,
            {
                "status": TRANSACTION_STATUS_REJECTED,
                "rejected_at": utcnow(),
                "rejected_by_user_id": actor_id,
                "rejection_reason": reason,
            },
        ):
            raise _lost_race(transaction_id)

        db.session.commit()
        return txn

    txn = run_with_retry(_op)
    current_app.logger.info(
        "Transaction %s rejected by user %s (ref %s): %s",
        txn.id, actor_id, txn.payment_reference, reason,
    )
    return {"status": TRANSACTION_STATUS_REJECTED}

# Overview: Service-layer operations for the transaction ledger; creation, submission, reads, expiry.

"""
Transaction Ledger Service

WHY: A transaction records one customer payment attempt against one tenant
and owns the payment state machine:

    pending -> awaiting_verification -> verified | rejected
    pending | awaiting_verification -> expired   (now > expires_at)

DESIGN PRINCIPLES:
- Amounts and prices are snapshots taken at creation; never recomputed
- Every state change is a conditional write on the expected status
- Expiry is lazy: checked whenever a transaction is read or acted upon.
  expire_stale_transactions() is only a freshness sweep for list views
- Terminal states never move again; attempts raise InvalidStateTransition
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import and_, or_, update

from ..errors import (
    AlreadyProcessed,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from ..extensions import db, notifications
from ..models import Order, Product, Tenant, Transaction, TransactionItem
from ..models.transactions import (
    DELIVERY_TYPE_DIRECT,
    OPEN_TRANSACTION_STATUSES,
    TRANSACTION_STATUS_AWAITING_VERIFICATION,
    TRANSACTION_STATUS_EXPIRED,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUS_VERIFIED,
    VALID_DELIVERY_TYPES,
)
from marketpay.time_utils import as_utc_naive, utcnow
from .concurrency import begin_write, compare_and_set_status, run_with_retry
from .numbering_service import next_payment_reference
from .verification_gate import can_receive_orders, get_actor, require_tenant_access, resolve_tenant_scope


VALID_TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_AWAITING_VERIFICATION,
    TRANSACTION_STATUS_VERIFIED,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUS_EXPIRED,
)

MAX_PAGE_SIZE = 50
QUEUE_LIMIT = 100


# =============================================================================
# EXPIRY
# =============================================================================

def is_overdue(txn: Transaction, now: datetime | None = None) -> bool:
    """True when txn is still open but its payment window has closed."""
    now = now or utcnow()
    return txn.status in OPEN_TRANSACTION_STATUSES and now > as_utc_naive(txn.expires_at)


def effective_status(txn: Transaction, now: datetime | None = None) -> str:
    """Status as callers should see it, counting unflipped expiry."""
    return TRANSACTION_STATUS_EXPIRED if is_overdue(txn, now) else txn.status


def expire_if_overdue(txn: Transaction, now: datetime | None = None) -> bool:
    """
    Persist the expired transition for an overdue transaction.

    Must run inside the caller's write transaction. Commits on success so the
    flip survives the error the caller is about to raise.
    """
    now = now or utcnow()
    if not is_overdue(txn, now):
        return False

    if compare_and_set_status(
        Transaction,
        txn.id,
        OPEN_TRANSACTION_STATUSES,
        {"status": TRANSACTION_STATUS_EXPIRED, "expired_at": now},
    ):
        db.session.commit()
        current_app.logger.info("Transaction %s expired (ref %s)", txn.id, txn.payment_reference)
    return True


def _expired_error(txn: Transaction) -> InvalidStateTransition:
    return InvalidStateTransition(
        "Transaction expired. Please create a new order.",
        TRANSACTION_STATUS_EXPIRED,
    )


def expire_stale_transactions(now: datetime | None = None) -> int:
    """
    Flip every overdue open transaction to expired.

    Background freshness sweep for list views; correctness never depends on
    it having run.

    Returns:
        Number of transactions expired
    """
    now = now or utcnow()

    def _op() -> int:
        begin_write()
        stmt = (
            update(Transaction)
            .where(
                Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
                Transaction.expires_at < now,
            )
            .values(
                status=TRANSACTION_STATUS_EXPIRED,
                expired_at=now,
                version_id=Transaction.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount

    expired = run_with_retry(_op)
    if expired:
        current_app.logger.info("Expired %s stale transactions", expired)
    return expired


# =============================================================================
# CREATION (checkout)
# =============================================================================

def _normalize_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    normalized: list[tuple[int, int]] = []
    seen: set[int] = set()
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object with product_id and quantity")
        product_id = raw.get("product_id")
        quantity = raw.get("quantity", 1)
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ValidationError("product_id must be an integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("quantity must be a positive integer", {"product_id": product_id})
        if product_id in seen:
            raise ValidationError("Each product may appear only once", {"product_id": product_id})
        seen.add(product_id)
        normalized.append((product_id, quantity))
    return normalized


def _normalize_shipping(delivery_type: str, shipping_address: dict | None) -> dict:
    if delivery_type not in VALID_DELIVERY_TYPES:
        raise ValidationError(f"delivery_type must be one of {list(VALID_DELIVERY_TYPES)}")

    if delivery_type == DELIVERY_TYPE_DIRECT:
        return {"shipping_line1": None, "shipping_city": None, "shipping_country": None}

    shipping_address = shipping_address or {}
    fields = {}
    for key in ("line1", "city", "country"):
        value = (shipping_address.get(key) or "").strip()
        if not value:
            raise ValidationError("Shipping address is required for delivery orders", {"field": key})
        fields[f"shipping_{key}"] = value
    return fields


def create_transaction(
    *,
    customer_id: int,
    tenant_id: int,
    items: list[dict],
    customer_name: str,
    customer_phone: str,
    customer_email: str | None = None,
    delivery_type: str = DELIVERY_TYPE_DIRECT,
    shipping_address: dict | None = None,
    notes: str | None = None,
) -> Transaction:
    """
    Create a pending transaction from a checkout.

    Args:
        customer_id: Paying user
        tenant_id: Store receiving the payment
        items: [{"product_id": int, "quantity": int}, ...] in submission order
        customer_name / customer_phone / customer_email: snapshot for the tenant
        delivery_type: "direct" (pickup) or "delivery"
        shipping_address: {"line1", "city", "country"}; required for delivery

    Returns:
        The pending Transaction

    Raises:
        ValidationError, NotFound (tenant/products), Forbidden (unverified tenant)
    """
    normalized = _normalize_items(items)
    shipping = _normalize_shipping(delivery_type, shipping_address)

    customer_name = (customer_name or "").strip()
    customer_phone = (customer_phone or "").strip()
    if not customer_name:
        raise ValidationError("Full name is required")
    if not customer_phone:
        raise ValidationError("Phone number is required")

    def _op() -> Transaction:
        customer = get_actor(customer_id)

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        if not can_receive_orders(tenant):
            raise Forbidden("This store is not accepting orders yet")

        product_ids = [product_id for product_id, _ in normalized]
        products = (
            db.session.query(Product)
            .filter(
                Product.id.in_(product_ids),
                Product.tenant_id == tenant_id,
                Product.is_archived.is_(False),
            )
            .all()
        )
        by_id = {p.id: p for p in products}
        missing = [pid for pid in product_ids if pid not in by_id]
        if missing:
            raise NotFound("Some products not found", {"product_ids": missing})

        now = utcnow()
        txn = Transaction(
            payment_reference=next_payment_reference(),
            status=TRANSACTION_STATUS_PENDING,
            tenant_id=tenant_id,
            customer_id=customer.id,
            customer_name=customer_name,
            customer_email=(customer_email or "").strip() or customer.email,
            customer_phone=customer_phone,
            delivery_type=delivery_type,
            total_amount=0,
            created_at=now,
            expires_at=now + timedelta(hours=current_app.config.get("TRANSACTION_TTL_HOURS", 48)),
            notes=notes,
            **shipping,
        )

        total = 0
        for position, (product_id, quantity) in enumerate(normalized):
            product = by_id[product_id]
            line_total = product.price * quantity
            total += line_total
            txn.items.append(TransactionItem(
                position=position,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=product.price,
                line_total=line_total,
            ))
        txn.total_amount = total

        db.session.add(txn)
        db.session.commit()
        return txn

    txn = run_with_retry(_op)
    current_app.logger.info(
        "Transaction %s created for tenant %s (ref %s, total %s)",
        txn.id, txn.tenant_id, txn.payment_reference, txn.total_amount,
    )
    return txn


# =============================================================================
# CUSTOMER SUBMISSION
# =============================================================================

def submit_payment_instrument(transaction_id: int, actor_id: int, instrument_id: str) -> dict:
    """
    Customer reports the mobile-money transaction id: pending -> awaiting_verification.

    Returns:
        {"status": "awaiting_verification"}

    Raises:
        ValidationError: empty instrument id
        NotFound / Forbidden (not the originating customer)
        InvalidStateTransition: not pending, or expired (persisted first)
        AlreadyProcessed: a concurrent submission won
    """
    instrument_id = (instrument_id or "").strip()
    if not instrument_id:
        raise ValidationError("Transaction ID is required")

    def _op() -> Transaction:
        begin_write()
        txn = db.session.get(Transaction, transaction_id, populate_existing=True)
        if txn is None:
            raise NotFound("Transaction not found")

        actor = get_actor(actor_id)
        if txn.customer_id != actor.id:
            raise Forbidden("Access denied")

        if expire_if_overdue(txn):
            raise _expired_error(txn)

        if txn.status != TRANSACTION_STATUS_PENDING:
            raise InvalidStateTransition("Transaction already processed", txn.status)

        if not compare_and_set_status(
            Transaction,
            txn.id,
            TRANSACTION_STATUS_PENDING,
            {
                "status": TRANSACTION_STATUS_AWAITING_VERIFICATION,
                "instrument_id": instrument_id,
                "submitted_at": utcnow(),
            },
        ):
            db.session.rollback()
            current = db.session.get(Transaction, transaction_id, populate_existing=True)
            raise AlreadyProcessed("Transaction already processed", current.status)

        db.session.commit()
        return txn

    txn = run_with_retry(_op)
    current_app.logger.info(
        "Payment awaiting verification: %s (customer %s submitted %s)",
        txn.payment_reference, txn.customer_name, instrument_id,
    )
    notifications.notify_awaiting_verification(txn.tenant_id, txn.payment_reference, instrument_id)
    return {"status": TRANSACTION_STATUS_AWAITING_VERIFICATION}


# =============================================================================
# READS
# =============================================================================

def serialize_transaction(txn: Transaction, now: datetime | None = None, *, include_items: bool = True) -> dict:
    data = txn.to_dict(include_items=include_items)
    data["status"] = effective_status(txn, now)
    return data


def _apply_lazy_expiry(txn: Transaction) -> None:
    if not is_overdue(txn):
        return

    def _op() -> None:
        begin_write()
        current = db.session.get(Transaction, txn.id, populate_existing=True)
        expire_if_overdue(current)

    run_with_retry(_op)


def get_transaction(transaction_id: int, actor_id: int) -> Transaction:
    """
    Load a transaction for its customer, its (verified) tenant, or a super-admin.

    Applies lazy expiry before returning.
    """
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFound("Transaction not found")

    actor = get_actor(actor_id)
    if not actor.is_super_admin and txn.customer_id != actor.id:
        require_tenant_access(actor, txn.tenant_id, action="view transactions")

    _apply_lazy_expiry(txn)
    return db.session.get(Transaction, transaction_id, populate_existing=True)


def list_customer_transactions(actor_id: int, page: int = 1, limit: int = 10) -> dict:
    """The actor's own transactions, newest first."""
    actor = get_actor(actor_id)
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if page < 1:
        raise ValidationError("page must be >= 1")

    query = db.session.query(Transaction).filter(Transaction.customer_id == actor.id)
    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    now = utcnow()
    total_pages = (total + limit - 1) // limit
    return {
        "docs": [serialize_transaction(t, now) for t in rows],
        "total_docs": total,
        "total_pages": total_pages,
        "page": page,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def list_tenant_transactions(
    actor_id: int,
    *,
    tenant_id: int | None = None,
    status: str | None = None,
    include_expired: bool = False,
) -> list[dict]:
    """
    Verification queue: a tenant's transactions with the orders they produced.

    Overdue open transactions count as expired: they are hidden unless
    include_expired (or status="expired") is requested, and reported with
    status "expired" when shown.
    """
    actor = get_actor(actor_id)
    scope = resolve_tenant_scope(actor, tenant_id, action="view transactions")

    if status is not None and status not in VALID_TRANSACTION_STATUSES:
        raise ValidationError(f"status must be one of {list(VALID_TRANSACTION_STATUSES)}")

    now = utcnow()
    overdue = and_(
        Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
        Transaction.expires_at < now,
    )

    query = db.session.query(Transaction)
    if scope is not None:
        query = query.filter(Transaction.tenant_id == scope)

    if status == TRANSACTION_STATUS_EXPIRED:
        query = query.filter(or_(Transaction.status == TRANSACTION_STATUS_EXPIRED, overdue))
    elif status in OPEN_TRANSACTION_STATUSES:
        query = query.filter(Transaction.status == status, Transaction.expires_at >= now)
    elif status:
        query = query.filter(Transaction.status == status)
    elif not include_expired:
        query = query.filter(Transaction.status != TRANSACTION_STATUS_EXPIRED, ~overdue)

    transactions = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(QUEUE_LIMIT)
        .all()
    )

    orders_by_txn: dict[int, list[dict]] = {}
    if transactions:
        orders = (
            db.session.query(Order)
            .filter(Order.transaction_id.in_([t.id for t in transactions]))
            .order_by(Order.id)
            .all()
        )
        for order in orders:
            orders_by_txn.setdefault(order.transaction_id, []).append(order.to_dict())

    results = []
    for txn in transactions:
        data = serialize_transaction(txn, now)
        data["orders"] = orders_by_txn.get(txn.id, [])
        results.append(data)
    return results


# =============================================================================
# TENANT VIEW TRACKING
# =============================================================================

def mark_viewed(transaction_id: int, actor_id: int) -> Transaction:
    """Tenant operator opened the transaction; clears it from the unviewed count."""
    def _op() -> Transaction:
        txn = db.session.get(Transaction, transaction_id, populate_existing=True)
        if txn is None:
            raise NotFound("Transaction not found")

        actor = get_actor(actor_id)
        require_tenant_access(actor, txn.tenant_id, action="view transactions")

        if not txn.viewed_by_tenant:
            txn.viewed_by_tenant = True
            db.session.commit()
        return txn

    return run_with_retry(_op)


def count_unviewed(actor_id: int, tenant_id: int | None = None) -> int:
    """
    Number of payments waiting for the tenant's attention.

    Counts unexpired awaiting_verification transactions not yet viewed.
    """
    actor = get_actor(actor_id)
    scope = resolve_tenant_scope(actor, tenant_id, action="view transactions")

    query = db.session.query(Transaction).filter(
        Transaction.status == TRANSACTION_STATUS_AWAITING_VERIFICATION,
        Transaction.viewed_by_tenant.is_(False),
        Transaction.expires_at >= utcnow(),
    )
    if scope is not None:
        query = query.filter(Transaction.tenant_id == scope)
    return query.count()

# Overview: Generation of human-facing identifiers (payment references, order and sale numbers).

from __future__ import annotations

import secrets
import string
import time

from ..extensions import db
from ..models import Transaction, Order, Sale


PAYMENT_REFERENCE_PREFIX = "PAY"
PAYMENT_REFERENCE_LENGTH = 10
ORDER_NUMBER_PREFIX = "ORD"
SALE_NUMBER_PREFIX = "SALE"

ALPHABET = string.ascii_uppercase + string.digits
MAX_ATTEMPTS = 8


class NumberingError(Exception):
    """Raised when no unused identifier could be allocated."""
    pass


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def _timestamp_suffix() -> str:
    """Last 8 digits of the current epoch milliseconds."""
    return str(int(time.time() * 1000))[-8:]


def _allocate(column, make_candidate, reserved: set[str] | None) -> str:
    for _ in range(MAX_ATTEMPTS):
        candidate = make_candidate()
        if reserved is not None and candidate in reserved:
            continue
        taken = db.session.query(column).filter(column == candidate).first()
        if taken is None:
            if reserved is not None:
                reserved.add(candidate)
            return candidate
    raise NumberingError(f"Could not allocate a unique {column.key}")


def next_payment_reference() -> str:
    """Allocate a payment reference: 'PAY' + 10 random A-Z0-9 characters."""
    return _allocate(
        Transaction.payment_reference,
        lambda: PAYMENT_REFERENCE_PREFIX + _random_suffix(PAYMENT_REFERENCE_LENGTH),
        None,
    )


def next_order_number(reserved: set[str] | None = None) -> str:
    """
    Allocate an order number: 'ORD-<timestamp>-<random>'.

    reserved collects numbers handed out earlier in the same unflushed batch.
    """
    return _allocate(
        Order.order_number,
        lambda: f"{ORDER_NUMBER_PREFIX}-{_timestamp_suffix()}-{_random_suffix(4)}",
        reserved,
    )


def next_sale_number(reserved: set[str] | None = None) -> str:
    return _allocate(
        Sale.sale_number,
        lambda: f"{SALE_NUMBER_PREFIX}-{_timestamp_suffix()}-{_random_suffix(4)}",
        reserved,
    )

from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z


TRANSACTION_STATUS_PENDING = "pending"
TRANSACTION_STATUS_AWAITING_VERIFICATION = "awaiting_verification"
TRANSACTION_STATUS_VERIFIED = "verified"
TRANSACTION_STATUS_REJECTED = "rejected"
TRANSACTION_STATUS_EXPIRED = "expired"

OPEN_TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_AWAITING_VERIFICATION,
)
TERMINAL_TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_VERIFIED,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUS_EXPIRED,
)

DELIVERY_TYPE_DIRECT = "direct"
DELIVERY_TYPE_DELIVERY = "delivery"
VALID_DELIVERY_TYPES = (DELIVERY_TYPE_DIRECT, DELIVERY_TYPE_DELIVERY)


class Transaction(db.Model):
    """
    One customer payment attempt, verified manually by the receiving tenant.

    LIFECYCLE:
    1. pending: created at checkout, waiting for the customer to pay
    2. awaiting_verification: customer reported their mobile-money id
    3. verified: tenant confirmed the money arrived; orders/sales exist
    4. rejected: tenant could not match the payment (reason required)
    5. expired: expires_at passed before 3 or 4

    IMMUTABLE after creation: payment_reference, total_amount, expires_at,
    and the line items.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # Verification queue: tenant-scoped by status, newest first
        db.Index("ix_transactions_tenant_status_created", "tenant_id", "status", "created_at"),
        db.Index("ix_transactions_customer_created", "customer_id", "created_at"),
        db.CheckConstraint("total_amount >= 0", name="ck_transactions_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing reference the customer quotes when paying (e.g., "PAY1AB2C3D4E5")
    payment_reference = db.Column(db.String(32), nullable=False, unique=True, index=True)

    status = db.Column(db.String(32), nullable=False, default=TRANSACTION_STATUS_PENDING, index=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Customer snapshot taken at checkout (not a live lookup)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)

    delivery_type = db.Column(db.String(16), nullable=False, default=DELIVERY_TYPE_DIRECT)
    shipping_line1 = db.Column(db.String(255), nullable=True)
    shipping_city = db.Column(db.String(120), nullable=True)
    shipping_country = db.Column(db.String(120), nullable=True)

    total_amount = db.Column(db.Integer, nullable=False)

    # Mobile-money transaction id reported by the customer
    instrument_id = db.Column(db.String(128), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    viewed_by_tenant = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("transactions", lazy=True))
    customer = db.relationship("User", foreign_keys=[customer_id])
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.position",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def shipping_address(self) -> dict | None:
        if self.delivery_type != DELIVERY_TYPE_DELIVERY:
            return None
        return {
            "line1": self.shipping_line1,
            "city": self.shipping_city,
            "country": self.shipping_country,
        }

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "payment_reference": self.payment_reference,
            "status": self.status,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "delivery_type": self.delivery_type,
            "shipping_address": self.shipping_address,
            "total_amount": self.total_amount,
            "instrument_id": self.instrument_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "verified_by_user_id": self.verified_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejection_reason": self.rejection_reason,
            "expired_at": to_utc_z(self.expired_at) if self.expired_at else None,
            "viewed_by_tenant": self.viewed_by_tenant,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """Line item on a transaction: product, quantity and price snapshot."""
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "position", name="uq_transaction_items_position"),
        db.CheckConstraint("quantity >= 1", name="ck_transaction_items_quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="ck_transaction_items_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    # Submission order; fan-out creates orders in this order
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }

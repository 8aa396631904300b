from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)
TERMINAL_ORDER_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)


class Order(db.Model):
    """
    Fulfillment record for one line item of a verified transaction.

    WHY: A transaction can cover several products, each shipped and
    confirmed independently.

    DESIGN:
    - Created only by the verification fan-out, exactly once per line item
      (enforced by uq_orders_transaction_item)
    - total_amount = quantity * price_at_purchase, fixed at creation
    - Never deleted; cancellation is a status
    - Every status change is mirrored onto the paired Sale
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "transaction_item_id", name="uq_orders_transaction_item"),
        db.Index("ix_orders_customer_status_created", "customer_id", "status", "created_at"),
        db.Index("ix_orders_tenant_status", "tenant_id", "status"),
        db.CheckConstraint("quantity >= 1", name="ck_orders_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "ORD-48213377-K2QZ")
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    transaction_item_id = db.Column(db.Integer, db.ForeignKey("transaction_items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_purchase = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    delivery_type = db.Column(db.String(16), nullable=False)
    shipping_line1 = db.Column(db.String(255), nullable=True)
    shipping_city = db.Column(db.String(120), nullable=True)
    shipping_country = db.Column(db.String(120), nullable=True)

    # Customer confirmed they have the item
    received = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    transaction = db.relationship("Transaction", backref=db.backref("orders", lazy=True, order_by="Order.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        shipping = None
        if self.shipping_line1 or self.shipping_city or self.shipping_country:
            shipping = {
                "line1": self.shipping_line1,
                "city": self.shipping_city,
                "country": self.shipping_country,
            }
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "transaction_id": self.transaction_id,
            "transaction_item_id": self.transaction_item_id,
            "quantity": self.quantity,
            "price_at_purchase": self.price_at_purchase,
            "total_amount": self.total_amount,
            "status": self.status,
            "delivery_type": self.delivery_type,
            "shipping_address": shipping,
            "received": self.received,
            "created_at": to_utc_z(self.created_at),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }

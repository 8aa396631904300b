from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z

class Sale(db.Model):
    """
    Tenant-facing reporting mirror of an Order.

    WHY: Tenants report on what they sold without reading customer-owned
    order records.

    INVARIANT: exactly one Sale per Order (uq on order_id) and
    Sale.status == Order.status after every completed write. Status is only
    written by the fulfillment service, in the same DB transaction as the
    Order update.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "SALE-48213377-P0XA")
    sale_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    # Customer snapshot copied from the transaction
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_per_unit = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("sale", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "quantity": self.quantity,
            "price_per_unit": self.price_per_unit,
            "total_amount": self.total_amount,
            "status": self.status,
            "delivery_type": self.order.delivery_type if self.order else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

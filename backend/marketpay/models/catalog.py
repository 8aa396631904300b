from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog entry, owned by the listings collaborator.

    The payment workflow reads name and price once, at transaction creation,
    and stores them as snapshots on the line item.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_tenant_archived", "tenant_id", "is_archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "price": self.price,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
        }

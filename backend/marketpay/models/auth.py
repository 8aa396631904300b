from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z

class User(db.Model):
    """
    Marketplace account acting on the payment workflow.

    A user may operate one tenant (tenant_id) and may be a super-admin.
    Customers are plain users with no tenant. Authentication happens
    upstream; services only ever receive the acting user's id.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    # Tenant this user operates (nullable for customers and platform staff)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Platform staff: may act on any tenant's transactions and orders
    is_super_admin = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("operators", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "tenant_id": self.tenant_id,
            "is_active": self.is_active,
            "is_super_admin": self.is_super_admin,
            "created_at": to_utc_z(self.created_at),
        }

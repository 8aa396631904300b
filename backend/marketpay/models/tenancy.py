from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z


VERIFICATION_PENDING = "pending"
VERIFICATION_DOCUMENT_VERIFIED = "document_verified"
VERIFICATION_PHYSICALLY_VERIFIED = "physically_verified"
VERIFICATION_REJECTED = "rejected"

VALID_VERIFICATION_STATUSES = {
    VERIFICATION_PENDING,
    VERIFICATION_DOCUMENT_VERIFIED,
    VERIFICATION_PHYSICALLY_VERIFIED,
    VERIFICATION_REJECTED,
}


class Tenant(db.Model):
    """
    Seller/store account in the marketplace.

    OWNERSHIP: The payment workflow only reads this record. is_verified and
    verification_status are written exclusively by the admin verification
    flow, which lives outside this service.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verification_status = db.Column(
        db.String(32), nullable=False, default=VERIFICATION_PENDING, index=True
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r} status={self.verification_status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_verified": self.is_verified,
            "verification_status": self.verification_status,
            "created_at": to_utc_z(self.created_at),
        }

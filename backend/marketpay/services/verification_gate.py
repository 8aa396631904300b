"""
Tenant Verification Gate

WHY: Only tenants that passed document or physical verification may see
customer payments, verify or reject them, or receive orders. This module is
the single authorization primitive for every tenant-side read and write in
the payment workflow.

SECURITY INVARIANTS:
1. A tenant is verification-capable iff is_verified AND
   verification_status in {document_verified, physically_verified}
2. Tenant operators only ever act on their own tenant's records
3. Super-admins bypass the tenant checks, never the state machine
4. Denials are logged with the actor and tenant ids

USAGE:
    from marketpay.services.verification_gate import get_actor, require_tenant_access

    actor = get_actor(actor_id)
    require_tenant_access(actor, transaction.tenant_id, action="verify payments")
"""

from __future__ import annotations

from flask import current_app

from ..errors import Forbidden
from ..extensions import db
from ..models import Tenant, User
from ..models.tenancy import VERIFICATION_DOCUMENT_VERIFIED, VERIFICATION_PHYSICALLY_VERIFIED


VERIFIED_STATUSES = frozenset({
    VERIFICATION_DOCUMENT_VERIFIED,
    VERIFICATION_PHYSICALLY_VERIFIED,
})


def _is_verification_capable(tenant: Tenant | None) -> bool:
    if tenant is None:
        return False
    return bool(tenant.is_verified) and tenant.verification_status in VERIFIED_STATUSES


def can_access_transactions(tenant: Tenant | None) -> bool:
    """May this tenant view, verify and reject its customers' transactions?"""
    return _is_verification_capable(tenant)


def can_receive_orders(tenant: Tenant | None) -> bool:
    """May this tenant receive and fulfil orders? Same rule as transactions."""
    return _is_verification_capable(tenant)


def get_actor(actor_id: int) -> User:
    """
    Load the acting user.

    Unknown or deactivated actors are Forbidden (not NotFound) so the
    response never reveals which user ids exist.
    """
    actor = db.session.get(User, actor_id) if actor_id is not None else None
    if actor is None or not actor.is_active:
        current_app.logger.warning("Rejected unknown or inactive actor %s", actor_id)
        raise Forbidden("Access denied")
    return actor


def is_tenant_operator(actor: User, tenant_id: int) -> bool:
    return actor.tenant_id is not None and actor.tenant_id == tenant_id


def require_tenant_access(actor: User, tenant_id: int, *, action: str = "access transactions") -> None:
    """
    Require that actor may act for tenant_id.

    Raises:
        Forbidden if the actor does not operate the tenant, or the tenant
        fails the verification gate.
    """
    if actor.is_super_admin:
        return

    if not is_tenant_operator(actor, tenant_id):
        current_app.logger.warning(
            "Actor %s denied on tenant %s: not an operator (%s)", actor.id, tenant_id, action
        )
        raise Forbidden("Access denied")

    tenant = db.session.get(Tenant, tenant_id)
    if not can_access_transactions(tenant):
        current_app.logger.warning(
            "Actor %s denied on tenant %s: tenant not verified (%s)", actor.id, tenant_id, action
        )
        raise Forbidden(
            f"Tenant must be verified to {action}. Please complete the verification process."
        )


def resolve_tenant_scope(actor: User, tenant_id: int | None = None, *, action: str = "access transactions") -> int | None:
    """
    Work out which tenant a list query is scoped to.

    Super-admins get tenant_id as given (None = every tenant). Operators get
    their own tenant after the gate check; asking for another tenant is
    Forbidden.
    """
    if actor.is_super_admin:
        return tenant_id

    if actor.tenant_id is None:
        raise Forbidden("Not a tenant operator")

    if tenant_id is not None and tenant_id != actor.tenant_id:
        current_app.logger.warning(
            "Actor %s denied listing tenant %s (operates %s)", actor.id, tenant_id, actor.tenant_id
        )
        raise Forbidden("Access denied")

    require_tenant_access(actor, actor.tenant_id, action=action)
    return actor.tenant_id

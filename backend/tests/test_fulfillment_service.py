# Overview: Pytest coverage for order fulfillment transitions, sale mirroring and reporting.

import pytest

from marketpay.errors import ConcurrentModification, Forbidden, InvalidFulfillmentTransition, NotFound, ValidationError
from marketpay.models import Order, Sale
from marketpay.models.tenancy import VERIFICATION_REJECTED
from marketpay.services import fulfillment_service, verification_service


DELIVERY_ADDRESS = {"line1": "KN 3 Rd", "city": "Kigali", "country": "Rwanda"}


@pytest.fixture
def make_orders(db_session, make_transaction, owner):
    """Verify a fresh transaction and return its orders in line-item order."""
    def _make(delivery_type="direct"):
        txn = make_transaction(
            delivery_type=delivery_type,
            shipping_address=DELIVERY_ADDRESS if delivery_type == "delivery" else None,
        )
        result = verification_service.verify_transaction(txn.id, owner.id)
        return [db_session.get(Order, order_id) for order_id in result["order_ids"]]
    return _make


def _statuses(db_session, order_id):
    order = db_session.get(Order, order_id, populate_existing=True)
    sale = db_session.query(Sale).filter_by(order_id=order_id).populate_existing().one()
    return order, sale


# =============================================================================
# DIRECT (pickup) ORDERS
# =============================================================================


class TestDirectOrders:

    def test_customer_completes_and_confirms_receipt(self, db_session, make_orders, customer):
        order = make_orders()[0]

        result = fulfillment_service.update_order_status(order.id, customer.id, "completed")

        assert result == {"status": "completed"}
        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "completed"
        assert order.received is True
        assert order.confirmed_at is not None
        assert order.completed_at is not None

    def test_tenant_completion_is_not_a_receipt(self, db_session, make_orders, owner):
        order = make_orders()[0]
        fulfillment_service.update_order_status(order.id, owner.id, "completed")

        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "completed"
        assert order.received is False

    def test_tenant_cancels(self, db_session, make_orders, owner):
        order = make_orders()[0]
        fulfillment_service.update_order_status(order.id, owner.id, "cancelled")

        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "cancelled"
        assert order.cancelled_at is not None

    def test_customer_cannot_cancel(self, db_session, make_orders, customer):
        order = make_orders()[0]
        with pytest.raises(Forbidden):
            fulfillment_service.update_order_status(order.id, customer.id, "cancelled")
        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "pending"

    def test_direct_orders_are_never_shipped(self, db_session, make_orders, owner):
        order = make_orders()[0]
        with pytest.raises(InvalidFulfillmentTransition):
            fulfillment_service.update_order_status(order.id, owner.id, "shipped")


# =============================================================================
# DELIVERY ORDERS
# =============================================================================


class TestDeliveryOrders:

    def test_full_delivery_path(self, db_session, make_orders, owner, customer):
        order = make_orders("delivery")[0]

        fulfillment_service.update_order_status(order.id, owner.id, "shipped")
        order_row, sale = _statuses(db_session, order.id)
        assert order_row.status == sale.status == "shipped"
        assert order_row.shipped_at is not None

        fulfillment_service.update_order_status(order.id, owner.id, "delivered")
        order_row, sale = _statuses(db_session, order.id)
        assert order_row.status == sale.status == "delivered"

        fulfillment_service.confirm_receipt(order.id, customer.id)
        order_row, sale = _statuses(db_session, order.id)
        assert order_row.status == sale.status == "completed"
        assert order_row.received is True

    def test_cannot_skip_shipping(self, db_session, make_orders, owner):
        order = make_orders("delivery")[0]

        with pytest.raises(InvalidFulfillmentTransition) as exc:
            fulfillment_service.update_order_status(order.id, owner.id, "delivered")

        assert exc.value.current_status == "pending"
        assert exc.value.requested_status == "delivered"
        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "pending"

    def test_tenant_cannot_complete_delivery(self, db_session, make_orders, owner):
        order = make_orders("delivery")[0]
        fulfillment_service.update_order_status(order.id, owner.id, "shipped")
        fulfillment_service.update_order_status(order.id, owner.id, "delivered")

        with pytest.raises(Forbidden):
            fulfillment_service.update_order_status(order.id, owner.id, "completed")

    def test_customer_cannot_ship(self, db_session, make_orders, customer):
        order = make_orders("delivery")[0]
        with pytest.raises(Forbidden):
            fulfillment_service.update_order_status(order.id, customer.id, "shipped")

    def test_super_admin_drives_every_step(self, db_session, make_orders, super_admin):
        order = make_orders("delivery")[0]
        for status in ("shipped", "delivered", "completed"):
            fulfillment_service.update_order_status(order.id, super_admin.id, status)
        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "completed"
        assert order.received is False


# =============================================================================
# GUARDS
# =============================================================================


class TestTransitionGuards:

    def test_terminal_states_do_not_move(self, db_session, make_orders, owner):
        order = make_orders()[0]
        fulfillment_service.update_order_status(order.id, owner.id, "cancelled")

        for status in ("pending", "completed", "cancelled"):
            with pytest.raises(InvalidFulfillmentTransition):
                fulfillment_service.update_order_status(order.id, owner.id, status)

    def test_unknown_status(self, db_session, make_orders, owner):
        order = make_orders()[0]
        with pytest.raises(ValidationError):
            fulfillment_service.update_order_status(order.id, owner.id, "lost")

    def test_unknown_order(self, db_session, owner):
        with pytest.raises(NotFound):
            fulfillment_service.update_order_status(424242, owner.id, "completed")

    def test_unrelated_actor_forbidden_before_transition_check(self, db_session, make_orders, other_customer, other_owner):
        order = make_orders("delivery")[0]
        for actor in (other_customer, other_owner):
            with pytest.raises(Forbidden):
                fulfillment_service.update_order_status(order.id, actor.id, "delivered")

    def test_unverified_tenant_cannot_fulfil(self, db_session, make_orders, owner, tenant):
        order = make_orders()[0]
        tenant.is_verified = False
        tenant.verification_status = VERIFICATION_REJECTED
        db_session.commit()

        with pytest.raises(Forbidden):
            fulfillment_service.update_order_status(order.id, owner.id, "cancelled")

    def test_concurrent_change_detected(self, db_session, make_orders, owner, monkeypatch):
        order = make_orders()[0]
        monkeypatch.setattr(fulfillment_service, "compare_and_set_status", lambda *a, **kw: False)

        with pytest.raises(ConcurrentModification) as exc:
            fulfillment_service.update_order_status(order.id, owner.id, "cancelled")

        assert exc.value.to_dict()["refresh"] is True
        order, sale = _statuses(db_session, order.id)
        assert order.status == sale.status == "pending"

    def test_confirm_receipt_only_by_customer(self, db_session, make_orders, owner):
        order = make_orders()[0]
        with pytest.raises(Forbidden):
            fulfillment_service.confirm_receipt(order.id, owner.id)


# =============================================================================
# READS AND STATS
# =============================================================================


class TestCustomerOrders:

    def test_listing_and_stats(self, db_session, make_orders, customer, owner):
        basket_order, candle_order = make_orders()
        fulfillment_service.update_order_status(basket_order.id, customer.id, "completed")
        fulfillment_service.update_order_status(candle_order.id, owner.id, "cancelled")
        make_orders()

        listing = fulfillment_service.list_customer_orders(customer.id, limit=10)
        assert listing["total_docs"] == 4

        completed = fulfillment_service.list_customer_orders(customer.id, status="completed")
        assert [o["id"] for o in completed["docs"]] == [basket_order.id]

        stats = fulfillment_service.customer_order_stats(customer.id)
        assert stats["total_orders"] == 4
        assert stats["pending_orders"] == 2
        assert stats["completed_orders"] == 1
        assert stats["cancelled_orders"] == 1
        # 2000 completed + 2000 + 500 pending; the cancelled 500 is excluded
        assert stats["total_spent"] == 4500

    def test_other_customers_orders_hidden(self, db_session, make_orders, other_customer):
        make_orders()
        assert fulfillment_service.list_customer_orders(other_customer.id)["total_docs"] == 0


class TestTenantSales:

    def test_listing_search_and_stats(self, db_session, make_orders, owner):
        basket_order, candle_order = make_orders()
        fulfillment_service.update_order_status(candle_order.id, owner.id, "cancelled")

        listing = fulfillment_service.list_tenant_sales(owner.id)
        assert listing["total_docs"] == 2

        sale_number = listing["docs"][0]["sale_number"]
        found = fulfillment_service.list_tenant_sales(owner.id, search=sale_number)
        assert [s["sale_number"] for s in found["docs"]] == [sale_number]

        by_name = fulfillment_service.list_tenant_sales(owner.id, search="claire")
        assert by_name["total_docs"] == 2

        stats = fulfillment_service.tenant_sales_stats(owner.id)
        assert stats["total_sales"] == 2
        assert stats["total_revenue"] == 2000
        assert stats["average_order_value"] == 2000
        assert stats["by_status"]["cancelled"] == 1
        assert stats["by_status"]["pending"] == 1

    def test_get_sale_access(self, db_session, make_orders, owner, other_owner, customer):
        order = make_orders()[0]
        sale = db_session.query(Sale).filter_by(order_id=order.id).one()

        assert fulfillment_service.get_sale(sale.id, owner.id).order_id == order.id
        with pytest.raises(Forbidden):
            fulfillment_service.get_sale(sale.id, other_owner.id)
        with pytest.raises(Forbidden):
            fulfillment_service.get_sale(sale.id, customer.id)

    def test_foreign_tenant_sees_nothing(self, db_session, make_orders, other_owner):
        make_orders()
        assert fulfillment_service.list_tenant_sales(other_owner.id)["total_docs"] == 0
        assert fulfillment_service.tenant_sales_stats(other_owner.id)["total_sales"] == 0

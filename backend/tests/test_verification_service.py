# Overview: Pytest coverage for payment verification, rejection and the order fan-out.

"""
Verification Engine Tests

Covers the happy-path fan-out, all-or-nothing rollback, repeat attempts,
rejection rules, expiry precedence and notification isolation.
"""

from datetime import timedelta

import pytest

from marketpay.errors import AlreadyProcessed, InvalidStateTransition, ValidationError
from marketpay.models import Order, Sale, Transaction
from marketpay.services import verification_service
from marketpay.time_utils import utcnow


def _reload(db_session, txn_id):
    return db_session.get(Transaction, txn_id, populate_existing=True)


class TestVerifyHappyPath:

    def test_fans_out_one_order_and_sale_per_item(self, db_session, make_transaction, owner, customer):
        txn = make_transaction()

        result = verification_service.verify_transaction(txn.id, owner.id)

        assert result["orders_created"] == 2
        orders = db_session.query(Order).order_by(Order.id).all()
        assert result["order_ids"] == [o.id for o in orders]
        assert [o.total_amount for o in orders] == [2000, 500]
        assert [o.product_name for o in orders] == ["Woven Basket", "Beeswax Candle"]
        assert all(o.status == "pending" for o in orders)
        assert all(o.customer_id == customer.id for o in orders)

        sales = db_session.query(Sale).order_by(Sale.id).all()
        assert len(sales) == 2
        assert [s.order_id for s in sales] == [o.id for o in orders]
        assert all(s.status == "pending" for s in sales)
        assert all(s.customer_name == customer.name for s in sales)

        txn = _reload(db_session, txn.id)
        assert txn.status == "verified"
        assert txn.verified_by_user_id == owner.id
        assert txn.verified_at is not None

    def test_amounts_are_conserved(self, db_session, make_transaction, owner):
        txn = make_transaction()
        verification_service.verify_transaction(txn.id, owner.id)

        txn = _reload(db_session, txn.id)
        orders = db_session.query(Order).filter_by(transaction_id=txn.id).all()
        sales = db_session.query(Sale).all()
        assert sum(o.total_amount for o in orders) == txn.total_amount == 2500
        assert sum(s.total_amount for s in sales) == txn.total_amount
        for order in orders:
            assert order.total_amount == order.quantity * order.price_at_purchase

    def test_order_and_sale_numbers(self, db_session, make_transaction, owner):
        txn = make_transaction()
        verification_service.verify_transaction(txn.id, owner.id)

        order_numbers = [o.order_number for o in db_session.query(Order).all()]
        sale_numbers = [s.sale_number for s in db_session.query(Sale).all()]
        assert all(n.startswith("ORD-") for n in order_numbers)
        assert all(n.startswith("SALE-") for n in sale_numbers)
        assert len(set(order_numbers)) == 2
        assert len(set(sale_numbers)) == 2

    def test_delivery_address_copied_to_orders(self, db_session, make_transaction, owner):
        txn = make_transaction(
            delivery_type="delivery",
            shipping_address={"line1": "KG 7 Ave", "city": "Kigali", "country": "Rwanda"},
        )
        verification_service.verify_transaction(txn.id, owner.id)

        for order in db_session.query(Order).all():
            assert order.delivery_type == "delivery"
            assert order.shipping_city == "Kigali"

    def test_super_admin_may_verify(self, db_session, make_transaction, super_admin):
        txn = make_transaction()
        result = verification_service.verify_transaction(txn.id, super_admin.id)
        assert result["orders_created"] == 2


class TestVerifyAtomicity:

    def test_failure_mid_fan_out_leaves_nothing(self, db_session, make_transaction, owner, monkeypatch):
        txn = make_transaction()
        real_next_sale_number = verification_service.next_sale_number
        calls = []

        def flaky_next_sale_number(reserved=None):
            calls.append(reserved)
            if len(calls) == 2:
                raise RuntimeError("sale numbering unavailable")
            return real_next_sale_number(reserved)

        monkeypatch.setattr(verification_service, "next_sale_number", flaky_next_sale_number)

        with pytest.raises(RuntimeError):
            verification_service.verify_transaction(txn.id, owner.id)

        assert _reload(db_session, txn.id).status == "awaiting_verification"
        assert db_session.query(Order).count() == 0
        assert db_session.query(Sale).count() == 0

        # A later attempt starts from a clean slate
        monkeypatch.setattr(verification_service, "next_sale_number", real_next_sale_number)
        result = verification_service.verify_transaction(txn.id, owner.id)
        assert result["orders_created"] == 2
        assert db_session.query(Order).count() == 2

    def test_second_verify_reports_already_processed(self, db_session, make_transaction, owner):
        txn = make_transaction()
        verification_service.verify_transaction(txn.id, owner.id)

        with pytest.raises(AlreadyProcessed) as exc:
            verification_service.verify_transaction(txn.id, owner.id)

        assert exc.value.current_status == "verified"
        assert exc.value.to_dict()["refresh"] is True
        assert isinstance(exc.value, InvalidStateTransition)
        assert db_session.query(Order).count() == 2
        assert db_session.query(Sale).count() == 2

    def test_lost_race_aborts_without_fan_out(self, db_session, make_transaction, owner, monkeypatch):
        """A conditional write that changes zero rows aborts before any fan-out."""
        txn = make_transaction()
        monkeypatch.setattr(verification_service, "compare_and_set_status", lambda *a, **kw: False)

        with pytest.raises(InvalidStateTransition):
            verification_service.verify_transaction(txn.id, owner.id)
        assert db_session.query(Order).count() == 0


class TestVerifyStateGuards:

    def test_pending_cannot_be_verified(self, db_session, make_transaction, owner):
        txn = make_transaction(submit=False)
        with pytest.raises(InvalidStateTransition) as exc:
            verification_service.verify_transaction(txn.id, owner.id)
        assert not isinstance(exc.value, AlreadyProcessed)
        assert exc.value.current_status == "pending"

    def test_expired_awaiting_transaction_creates_nothing(self, db_session, make_transaction, owner):
        txn = make_transaction()
        stored = _reload(db_session, txn.id)
        stored.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        with pytest.raises(InvalidStateTransition) as exc:
            verification_service.verify_transaction(txn.id, owner.id)

        assert exc.value.current_status == "expired"
        assert _reload(db_session, txn.id).status == "expired"
        assert db_session.query(Order).count() == 0
        assert db_session.query(Sale).count() == 0


class TestReject:

    def test_reject_records_reason(self, db_session, make_transaction, owner):
        txn = make_transaction()
        result = verification_service.reject_transaction(txn.id, owner.id, "  No payment received on MoMo  ")

        assert result == {"status": "rejected"}
        txn = _reload(db_session, txn.id)
        assert txn.status == "rejected"
        assert txn.rejection_reason == "No payment received on MoMo"
        assert txn.rejected_by_user_id == owner.id
        assert db_session.query(Order).count() == 0
        assert db_session.query(Sale).count() == 0

    def test_short_reason_leaves_transaction_untouched(self, db_session, make_transaction, owner):
        txn = make_transaction()
        with pytest.raises(ValidationError):
            verification_service.reject_transaction(txn.id, owner.id, "too short")

        txn = _reload(db_session, txn.id)
        assert txn.status == "awaiting_verification"
        assert txn.rejection_reason is None

    def test_whitespace_does_not_count_toward_reason(self, db_session, make_transaction, owner):
        txn = make_transaction()
        with pytest.raises(ValidationError):
            verification_service.reject_transaction(txn.id, owner.id, "   short     ")

    def test_reject_after_verify(self, db_session, make_transaction, owner):
        txn = make_transaction()
        verification_service.verify_transaction(txn.id, owner.id)
        with pytest.raises(AlreadyProcessed):
            verification_service.reject_transaction(txn.id, owner.id, "Changed my mind about this")
        assert _reload(db_session, txn.id).status == "verified"


class TestVerificationNotifications:

    def test_verified_payment_notifies_tenant(self, db_session, make_transaction, owner, tenant, sender):
        txn = make_transaction()
        sender.sent.clear()

        verification_service.verify_transaction(txn.id, owner.id)

        assert len(sender.sent) == 1
        tenant_id, payload = sender.sent[0]
        assert tenant_id == tenant.id
        assert payload["data"] == {"amount": 2500, "reference": txn.payment_reference}
        assert payload["url"] == "/verify-payments"

    def test_delivery_failure_does_not_undo_verification(self, db_session, make_transaction, owner, sender):
        txn = make_transaction()
        sender.fail = True

        result = verification_service.verify_transaction(txn.id, owner.id)

        assert result["orders_created"] == 2
        assert _reload(db_session, txn.id).status == "verified"

    def test_reject_sends_nothing(self, db_session, make_transaction, owner, sender):
        txn = make_transaction()
        sender.sent.clear()
        verification_service.reject_transaction(txn.id, owner.id, "Amount on statement differs")
        assert sender.sent == []

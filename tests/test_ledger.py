"""Tests for order persistence and lifecycle."""

from datetime import timedelta
from decimal import Decimal

import pytest

from checkout_service.app.errors import AuthorizationDeclined, InvalidStatusTransition, NotFound, ValidationError
from checkout_service.app.ledger import OrderLedger, is_ready_for_delivery, minutes_remaining, to_schema
from checkout_service.app.models import Order, OrderStatus
from checkout_service.app.payments import CARD, CASH, AuthorizationResult

from .conftest import TUESDAY_9AM, TUESDAY_NOON, latte, make_draft, muffin


def cash_auth(amount):
    return AuthorizationResult(method=CASH, amount=amount, authorized=True, deferred=True)


def card_auth(amount, txn="txn_abc123def"):
    return AuthorizationResult(method=CARD, amount=amount, authorized=True, transaction_id=txn)


@pytest.fixture
def ledger(db_session):
    return OrderLedger(db_session)


class TestCreate:
    def test_cash_order_is_pending_and_unauthorized(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM)
        assert order.id
        assert order.status == OrderStatus.PENDING
        assert order.payment_authorized is False
        assert order.transaction_id is None
        assert order.payment_amount == Decimal("177.00")
        assert order.paid_at is None

    def test_card_order_is_paid(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, card_auth(draft.total), now=TUESDAY_9AM)
        assert order.status == OrderStatus.PAID
        assert order.payment_authorized is True
        assert order.transaction_id == "txn_abc123def"
        assert order.paid_at is not None

    def test_uncaptured_card_payment_creates_nothing(self, ledger, db_session):
        draft = make_draft()
        failed = AuthorizationResult(method=CARD, amount=draft.total, authorized=False)
        with pytest.raises(AuthorizationDeclined):
            ledger.create(draft, failed)
        assert db_session.query(Order).count() == 0

    def test_totals_and_items_are_snapshotted(self, ledger):
        draft = make_draft(items=[latte(), muffin(quantity=2)])
        order = ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM)
        out = to_schema(order, TUESDAY_9AM)
        assert out.subtotal == Decimal("440")
        assert out.discount_total == Decimal("50")
        assert out.gst_amount == Decimal("70.20")
        assert out.total == Decimal("460.20")
        assert [(i.name, i.quantity) for i in out.items] == [("Latte", 1), ("Blueberry Muffin", 2)]
        assert [d.code for d in out.discounts] == ["HAPPYHOUR"]

    def test_idempotency_key_is_scoped_to_owner(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, card_auth(draft.total), idempotency_key="k-1")
        assert ledger.find_by_idempotency_key("user-1", "k-1").id == order.id
        assert ledger.find_by_idempotency_key("user-2", "k-1") is None

    def test_fresh_key_is_not_a_replay(self, ledger):
        draft = make_draft()
        order, replayed = ledger.create_or_replay(draft, card_auth(draft.total), idempotency_key="k-1")
        assert order.id
        assert replayed is False

    def test_lost_race_on_the_same_key_returns_the_stored_order(self, ledger, db_session):
        draft = make_draft()
        first_id = ledger.create(draft, card_auth(draft.total), idempotency_key="k-1").id

        # A second request that passed its lookup before the first one committed.
        order, replayed = ledger.create_or_replay(draft, card_auth(draft.total, txn="txn_zzz999zzz"),
                                                  idempotency_key="k-1")
        assert replayed is True
        assert order.id == first_id
        assert order.transaction_id == "txn_abc123def"
        assert db_session.query(Order).count() == 1

    def test_amounts_are_serialized_in_cents(self, ledger):
        draft = make_draft()
        out = to_schema(ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM), TUESDAY_9AM)
        dumped = out.model_dump(mode="json", by_alias=True)
        assert dumped["total"] == "177.00"
        assert dumped["gstAmount"] == "27.00"
        assert dumped["payment"]["amount"] == "177.00"


class TestRead:
    def test_get_is_owner_scoped(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        assert ledger.get(order.id, "user-1").id == order.id
        with pytest.raises(NotFound):
            ledger.get(order.id, "user-2")
        with pytest.raises(NotFound):
            ledger.get("missing", "user-1")

    def test_list_newest_first(self, ledger):
        first = ledger.create(make_draft(), cash_auth(Decimal("1")), now=TUESDAY_9AM)
        second = ledger.create(make_draft(), cash_auth(Decimal("1")), now=TUESDAY_NOON)
        ledger.create(make_draft(owner_id="user-2"), cash_auth(Decimal("1")), now=TUESDAY_NOON)

        assert [o.id for o in ledger.list_for_owner("user-1")] == [second.id, first.id]
        assert len(ledger.list_all()) == 3


class TestTransitions:
    def test_happy_path_to_delivered(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        for status in (OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
            order = ledger.transition(order.id, status)
        assert order.status == OrderStatus.DELIVERED

    def test_paid_order_can_be_prepared(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, card_auth(draft.total))
        assert ledger.transition(order.id, OrderStatus.PREPARING).status == OrderStatus.PREPARING

    @pytest.mark.parametrize("path", [
        [],
        [OrderStatus.PREPARING],
        [OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY],
    ])
    def test_any_open_order_can_be_cancelled(self, ledger, path):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        for status in path:
            ledger.transition(order.id, status)
        assert ledger.transition(order.id, OrderStatus.CANCELLED).status == OrderStatus.CANCELLED

    def test_terminal_states_are_final(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        ledger.transition(order.id, OrderStatus.CANCELLED)
        with pytest.raises(InvalidStatusTransition):
            ledger.transition(order.id, OrderStatus.PREPARING)

    def test_cannot_skip_ahead(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        with pytest.raises(InvalidStatusTransition):
            ledger.transition(order.id, OrderStatus.DELIVERED)

    def test_cannot_move_back_to_paid(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        with pytest.raises(InvalidStatusTransition):
            ledger.transition(order.id, OrderStatus.PAID)

    def test_unknown_status(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total))
        with pytest.raises(ValidationError):
            ledger.transition(order.id, "lost")

    def test_unknown_order(self, ledger):
        with pytest.raises(NotFound):
            ledger.transition("missing", OrderStatus.PREPARING)


class TestDeliveryReadiness:
    def test_becomes_ready_at_forty_minutes(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM)

        assert not is_ready_for_delivery(order, TUESDAY_9AM)
        assert minutes_remaining(order, TUESDAY_9AM) == 40
        almost = TUESDAY_9AM + timedelta(minutes=39, seconds=59)
        assert not is_ready_for_delivery(order, almost)
        assert minutes_remaining(order, almost) == 1
        assert is_ready_for_delivery(order, TUESDAY_9AM + timedelta(minutes=40))
        assert minutes_remaining(order, TUESDAY_9AM + timedelta(minutes=40)) == 0

    @pytest.mark.parametrize("path", [
        [OrderStatus.CANCELLED],
        [OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED],
    ])
    def test_terminal_orders_are_never_ready(self, ledger, path):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM)
        for status in path:
            order = ledger.transition(order.id, status)
        assert not is_ready_for_delivery(order, TUESDAY_9AM + timedelta(hours=2))

    def test_estimated_delivery(self, ledger):
        draft = make_draft()
        order = ledger.create(draft, cash_auth(draft.total), now=TUESDAY_9AM)
        assert to_schema(order, TUESDAY_9AM).estimated_delivery == TUESDAY_9AM + timedelta(minutes=40)


class TestStats:
    def test_revenue_counts_delivered_orders_only(self, ledger):
        delivered = ledger.create(make_draft(), cash_auth(Decimal("177.00")))
        for status in (OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
            ledger.transition(delivered.id, status)
        draft = make_draft()
        ledger.create(draft, card_auth(draft.total))

        stats = ledger.stats()
        assert stats["totalOrders"] == 2
        assert stats["ordersByStatus"][OrderStatus.DELIVERED] == 1
        assert stats["ordersByStatus"][OrderStatus.PAID] == 1
        assert stats["ordersByStatus"][OrderStatus.CANCELLED] == 0
        assert Decimal(stats["totalRevenue"]) == Decimal("177")

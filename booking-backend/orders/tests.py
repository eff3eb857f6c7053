import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.db import connection, transaction
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from cart.holds import add_to_cart
from cart.models import CartHold, ItemType
from catalog.models import ResourceType
from common.claims import resolve_claims
from common.errors import Forbidden, GatewayError, InvalidState, SlotNoLongerAvailable
from common.roles import BookingRole
from common.testing import at, future_weekday, make_branch, make_product, make_resource, make_user
from orders.checkout import commit_checkout, create_cash_order, start_checkout
from orders.models import AuditLog, Order, PaymentMethod, Reservation
from orders.status import OrderStatus, can_transition, map_gateway_status, normalize_status
from orders.views import AuditLogListView, CheckoutView, OrderDetailView, OrderListView
from payments.gateway import GatewayTransaction


def _gateway(status="pending", tid="tx-1", reason=""):
    gateway = MagicMock()
    gateway.create_transaction.return_value = GatewayTransaction(
        tid=tid, status=status, status_reason=reason, raw={"tid": tid, "status": status},
    )
    return gateway


class StatusVocabularyTests(TestCase):
    def test_legacy_aliases(self):
        self.assertEqual(normalize_status("confirmed"), OrderStatus.PAID)
        self.assertEqual(normalize_status("Canceled"), OrderStatus.CANCELLED)
        self.assertEqual(normalize_status("refunded"), OrderStatus.RECUSED)
        self.assertIsNone(normalize_status("bogus"))

    def test_gateway_map(self):
        self.assertEqual(map_gateway_status("approved"), OrderStatus.PAID)
        self.assertEqual(map_gateway_status("pre_authorized"), OrderStatus.AUTHORIZED)
        self.assertEqual(map_gateway_status("waiting"), OrderStatus.IN_PROCESS)
        self.assertIsNone(map_gateway_status("mystery"))

    def test_terminal_states_do_not_move(self):
        self.assertFalse(can_transition(OrderStatus.CANCELLED, OrderStatus.PAID))
        self.assertFalse(can_transition(OrderStatus.RECUSED, OrderStatus.PAID))
        self.assertFalse(can_transition(OrderStatus.PAID, OrderStatus.IN_PROCESS))
        self.assertTrue(can_transition(OrderStatus.IN_PROCESS, OrderStatus.AUTHORIZED))


class CheckoutBase(TestCase):
    def setUp(self):
        self.alice = make_user("alice-co")
        self.bob = make_user("bob-co")
        self.admin = make_user("admin-co", role=BookingRole.ADMIN)
        self.room = make_resource(name="Sala 5")
        self.gear = make_resource(
            name="Câmera", resource_type=ResourceType.EQUIPMENT, capacity=2, price=Decimal("20.00"),
        )
        self.water = make_product(stock=5)
        self.day = future_weekday(2)


class CommitCheckoutTests(CheckoutBase):
    def test_holds_become_reservations_and_items(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 11))
        add_to_cart(self.alice, ItemType.PRODUCT, self.water.id, 2)

        with transaction.atomic():
            order = Order.objects.create(user=self.alice, payment_method=PaymentMethod.PIX)
            ids = commit_checkout(self.alice, order)

        self.assertEqual(len(ids), 1)
        reservation = Reservation.objects.get(pk=ids[0])
        self.assertEqual(reservation.status, OrderStatus.IN_PROCESS)
        self.assertEqual(reservation.total_price, Decimal("100.00"))
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 3)
        self.assertEqual(order.items.get().quantity, 2)
        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("109.00"))
        self.assertFalse(CartHold.objects.active().filter(user=self.alice).exists())

    def test_empty_cart(self):
        with self.assertRaises(InvalidState):
            with transaction.atomic():
                order = Order.objects.create(user=self.alice, payment_method=PaymentMethod.PIX)
                commit_checkout(self.alice, order)

    def test_lost_slot_aborts_everything(self):
        add_to_cart(self.alice, ItemType.PRODUCT, self.water.id, 1)
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        # a concurrent writer committed the same window
        Reservation.objects.create(
            resource=self.room, user=self.bob, start_time=at(self.day, 9), end_time=at(self.day, 10),
            status=OrderStatus.PAID,
        )
        gateway = _gateway()

        with self.assertRaises(SlotNoLongerAvailable):
            start_checkout(self.alice, PaymentMethod.PIX, gateway=gateway)

        gateway.create_transaction.assert_not_called()
        self.assertFalse(Order.objects.filter(user=self.alice).exists())
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 5)
        self.assertEqual(CartHold.objects.active().filter(user=self.alice).count(), 2)

    def test_equipment_units_not_double_counted(self):
        add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.day, 9), at(self.day, 10))
        add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.day, 9), at(self.day, 10))

        result = start_checkout(self.alice, PaymentMethod.PIX, gateway=_gateway())
        self.assertEqual(len(result.reservation_ids), 2)


class StartCheckoutTests(CheckoutBase):
    def test_gateway_accepts(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        gateway = _gateway(status="pending", tid="tx-42")

        result = start_checkout(self.alice, PaymentMethod.PIX, payer={"name": "Alice"}, gateway=gateway)

        self.assertIsNone(result.error)
        order = result.order
        self.assertEqual(order.status, OrderStatus.IN_PROCESS)
        self.assertEqual(order.click2pay_tid, "tx-42")
        self.assertIsNotNone(order.expires_at)
        self.assertTrue(order.external_identifier.startswith("order_"))
        self.assertEqual(order.payment_events.get().source, "checkout")
        sent_order = gateway.create_transaction.call_args[0][0]
        self.assertEqual(sent_order.total_amount, Decimal("50.00"))

    def test_gateway_unreachable_keeps_order_pending(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        gateway = MagicMock()
        gateway.create_transaction.side_effect = GatewayError("Payment provider unreachable: timeout")

        result = start_checkout(self.alice, PaymentMethod.PIX, gateway=gateway)

        self.assertEqual(result.order.status, OrderStatus.PENDING)
        self.assertEqual(result.error["code"], "network_error")
        self.assertTrue(result.error["can_retry"])
        reservation = Reservation.objects.get(order=result.order)
        self.assertEqual(reservation.status, OrderStatus.IN_PROCESS)

    def test_card_declined_releases_reservations(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        add_to_cart(self.alice, ItemType.PRODUCT, self.water.id, 2)
        gateway = _gateway(status="declined", reason="card_declined")

        result = start_checkout(self.alice, PaymentMethod.CARD, card={"card_hash": "x"}, gateway=gateway)

        self.assertEqual(result.order.status, OrderStatus.RECUSED)
        self.assertEqual(result.error["code"], "card_declined")
        self.assertEqual(Reservation.objects.get(order=result.order).status, OrderStatus.RECUSED)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 5)

    def test_cash_is_not_a_checkout_method(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        with self.assertRaises(InvalidState):
            start_checkout(self.alice, PaymentMethod.CASH, gateway=_gateway())


class CashOrderTests(CheckoutBase):
    def test_admin_books_for_client(self):
        add_to_cart(self.admin, ItemType.ROOM, self.room.id, 1, at(self.day, 10), at(self.day, 11))

        result = create_cash_order(resolve_claims(self.admin), self.alice)

        order = result.order
        self.assertEqual(order.user, self.alice)
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.payment_method, PaymentMethod.CASH)
        self.assertTrue(order.external_identifier.startswith("cash_"))
        self.assertEqual(order.paid_amount, Decimal("50.00"))
        reservation = Reservation.objects.get(pk=result.reservation_ids[0])
        self.assertEqual(reservation.status, OrderStatus.PAID)
        self.assertEqual(reservation.user, self.alice)
        self.assertTrue(AuditLog.objects.filter(action="order.cash_created", order=order).exists())

    def test_clients_cannot_create_cash_orders(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 10), at(self.day, 11))
        with self.assertRaises(Forbidden):
            create_cash_order(resolve_claims(self.alice), self.alice)


class OrdersApiTests(CheckoutBase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def _post(self, path, user, data):
        request = self.factory.post(path, data, format="json")
        force_authenticate(request, user=user)
        return request

    def _get(self, path, user):
        request = self.factory.get(path)
        force_authenticate(request, user=user)
        return request

    @patch("orders.checkout.get_gateway")
    def test_checkout_endpoint(self, get_gateway):
        get_gateway.return_value = _gateway(status="waiting", tid="tx-api")
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))

        response = CheckoutView.as_view()(self._post("/api/v1/orders/checkout", self.alice, {"payment_method": "pix"}))

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["order"]["status"], OrderStatus.IN_PROCESS)
        self.assertEqual(len(response.data["reservation_ids"]), 1)

    @patch("orders.checkout.get_gateway")
    def test_checkout_gateway_down(self, get_gateway):
        get_gateway.return_value.create_transaction.side_effect = GatewayError("HTTP 503 from provider")
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))

        response = CheckoutView.as_view()(self._post("/api/v1/orders/checkout", self.alice, {"payment_method": "pix"}))

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["error"], "gateway_error")
        self.assertIn("payment_error", response.data)

    def test_checkout_empty_cart(self):
        response = CheckoutView.as_view()(self._post("/api/v1/orders/checkout", self.alice, {"payment_method": "pix"}))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "invalid_state")

    def test_card_checkout_needs_card(self):
        response = CheckoutView.as_view()(self._post("/api/v1/orders/checkout", self.alice, {"payment_method": "card"}))
        self.assertEqual(response.status_code, 400)

    def test_clients_only_see_their_orders(self):
        mine = Order.objects.create(user=self.alice, payment_method=PaymentMethod.PIX)
        theirs = Order.objects.create(user=self.bob, payment_method=PaymentMethod.PIX)

        response = OrderListView.as_view()(self._get("/api/v1/orders/", self.alice))
        self.assertEqual(response.status_code, 200)
        rows = response.data["results"] if isinstance(response.data, dict) else response.data
        self.assertEqual([row["id"] for row in rows], [str(mine.id)])

        response = OrderDetailView.as_view()(self._get(f"/api/v1/orders/{theirs.id}", self.alice), pk=theirs.id)
        self.assertEqual(response.status_code, 404)

        response = OrderDetailView.as_view()(self._get(f"/api/v1/orders/{theirs.id}", self.admin), pk=theirs.id)
        self.assertEqual(response.status_code, 200)

    def test_audit_log_scoped_to_admin_branch(self):
        north = make_branch("norte", "Norte")
        south = make_branch("sul", "Sul")
        north_admin = make_user("admin-norte", role=BookingRole.ADMIN, branch=north)
        AuditLog.record(action="block.created", branch=north)
        AuditLog.record(action="block.created", branch=south)

        response = AuditLogListView.as_view()(self._get("/api/v1/orders/audit/logs", north_admin))
        rows = response.data["results"] if isinstance(response.data, dict) else response.data
        self.assertEqual([row["branch"] for row in rows], [north.id])

        response = AuditLogListView.as_view()(self._get("/api/v1/orders/audit/logs", self.admin))
        rows = response.data["results"] if isinstance(response.data, dict) else response.data
        self.assertEqual(len(rows), 2)


class ConcurrentCheckoutTests(TransactionTestCase):
    """Checkout committing a hold while another client grabs the same slot."""

    def setUp(self):
        self.alice = make_user("alice-race-co")
        self.bob = make_user("bob-race-co")
        self.room = make_resource(name="Estúdio")
        self.day = future_weekday(4)

    def test_checkout_races_a_new_hold(self):
        start, end = at(self.day, 9), at(self.day, 10)
        hold = add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, start, end)
        # alice's checkout still sees her hold; bob's clock is past its TTL
        checkout_now = timezone.now()
        bob_now = hold.expires_at + timedelta(minutes=1)

        barrier = threading.Barrier(2)
        results = {}
        lock = threading.Lock()

        def run(name, fn):
            try:
                barrier.wait(timeout=5)
                fn()
                outcome = "ok"
            except Exception as e:
                outcome = type(e).__name__
            finally:
                connection.close()
            with lock:
                results[name] = outcome

        def checkout():
            start_checkout(self.alice, PaymentMethod.PIX, gateway=_gateway(), now=checkout_now)

        def add():
            add_to_cart(self.bob, ItemType.ROOM, self.room.id, 1, start, end, now=bob_now)

        threads = [
            threading.Thread(target=run, args=("checkout", checkout)),
            threading.Thread(target=run, args=("add", add)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 2, results)
        booked = Reservation.objects.filter(resource=self.room).exclude(
            status__in=[OrderStatus.CANCELLED, OrderStatus.RECUSED]
        ).count()
        held = CartHold.objects.active(checkout_now).filter(user=self.bob, resource=self.room).count()
        self.assertLessEqual(booked + held, self.room.capacity, results)
        winners = [name for name, outcome in results.items() if outcome == "ok"]
        self.assertLessEqual(len(winners), 1, results)

        # SQLite has no row locks; there the loser can fail with a locked table instead
        if connection.features.has_select_for_update:
            self.assertEqual(len(winners), 1, results)
            self.assertEqual(booked + held, 1)
            if winners == ["checkout"]:
                self.assertEqual(results["add"], "CapacityExceeded")
                self.assertEqual(Order.objects.filter(user=self.alice).count(), 1)
            else:
                self.assertEqual(results["checkout"], "SlotNoLongerAvailable")
                self.assertFalse(Order.objects.filter(user=self.alice).exists())

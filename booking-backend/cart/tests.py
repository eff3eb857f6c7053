import threading
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.db import connection
from django.db.models import Sum
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from cart.api import CartItemView, CartView
from cart.holds import add_to_cart, clear_cart, get_cart, remove_from_cart, sweep_expired_holds, update_cart
from cart.models import CartHold, ItemType
from catalog.models import ResourceType
from common.errors import CapacityExceeded, InvalidRange, InvalidState
from common.testing import at, future_weekday, make_product, make_resource, make_user
from scheduling.availability import get_availability


def _hour(table, hour):
    return next(row for row in table if row["hour"] == hour)


class CartHoldBase(TestCase):
    def setUp(self):
        self.alice = make_user("alice")
        self.bob = make_user("bob")
        # Equipment with two units, Monday 08-12
        self.gear = make_resource(
            name="Projetor", resource_type=ResourceType.EQUIPMENT, capacity=2, weekdays=[0],
        )
        self.room = make_resource(name="Sala 1")
        self.monday = future_weekday(0)


class CapacityScenarioTests(CartHoldBase):
    def test_second_client_cannot_take_a_full_slot(self):
        add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 2, at(self.monday, 9), at(self.monday, 10))

        row = _hour(get_availability(self.gear.id, self.monday), 9)
        self.assertEqual(row["available_quantity"], 0)
        self.assertFalse(row["is_available"])

        with self.assertRaises(CapacityExceeded):
            add_to_cart(self.bob, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))
        self.assertEqual(CartHold.objects.filter(user=self.bob).count(), 0)

    def test_room_is_exclusive(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.monday, 8), at(self.monday, 10))
        with self.assertRaises(CapacityExceeded):
            add_to_cart(self.bob, ItemType.ROOM, self.room.id, 1, at(self.monday, 9), at(self.monday, 11))
        add_to_cart(self.bob, ItemType.ROOM, self.room.id, 1, at(self.monday, 10), at(self.monday, 11))

    def test_item_type_must_match_resource(self):
        with self.assertRaises(InvalidRange):
            add_to_cart(self.alice, ItemType.ROOM, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))

    def test_closed_day_rejected(self):
        tuesday = future_weekday(1)
        with self.assertRaises(InvalidRange):
            add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(tuesday, 9), at(tuesday, 10))


class HoldLifecycleTests(CartHoldBase):
    def test_add_then_remove_restores_quantity(self):
        before = _hour(get_availability(self.gear.id, self.monday), 10)["available_quantity"]
        hold = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 10), at(self.monday, 11))
        self.assertEqual(_hour(get_availability(self.gear.id, self.monday), 10)["available_quantity"], before - 1)

        remove_from_cart(self.alice, hold.id)
        self.assertEqual(_hour(get_availability(self.gear.id, self.monday), 10)["available_quantity"], before)
        hold.refresh_from_db()
        self.assertEqual(hold.status, CartHold.STATUS_REMOVED)

        # removing twice is harmless
        remove_from_cart(self.alice, hold.id)

    def test_expired_hold_ignored_before_sweep(self):
        hold = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 2, at(self.monday, 9), at(self.monday, 10))
        CartHold.objects.filter(pk=hold.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        hold.refresh_from_db()
        self.assertEqual(hold.status, CartHold.STATUS_ACTIVE)
        self.assertEqual(_hour(get_availability(self.gear.id, self.monday), 9)["available_quantity"], 2)
        add_to_cart(self.bob, ItemType.EQUIPMENT, self.gear.id, 2, at(self.monday, 9), at(self.monday, 10))

    def test_get_cart_hides_and_flips_expired(self):
        live = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 8), at(self.monday, 9))
        stale = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 10), at(self.monday, 11))
        CartHold.objects.filter(pk=stale.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

        self.assertEqual([h.id for h in get_cart(self.alice)], [live.id])
        stale.refresh_from_db()
        self.assertEqual(stale.status, CartHold.STATUS_EXPIRED)

    def test_ttl_from_settings(self):
        with self.settings(CART_HOLD_TTL_SECONDS={"room": 60, "equipment": 900, "product": 900}):
            before = timezone.now()
            hold = add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.monday, 9), at(self.monday, 10))
        self.assertLessEqual(hold.expires_at, before + timedelta(seconds=61))

    def test_update_excludes_own_hold(self):
        hold = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))
        hold = update_cart(self.alice, hold.id, 2)
        self.assertEqual(hold.quantity, 2)
        self.assertEqual(hold.price, Decimal("100.00"))
        with self.assertRaises(CapacityExceeded):
            update_cart(self.alice, hold.id, 3)

    def test_update_expired_hold(self):
        hold = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))
        CartHold.objects.filter(pk=hold.pk).update(expires_at=timezone.now() - timedelta(seconds=1))
        with self.assertRaises(InvalidState):
            update_cart(self.alice, hold.id, 2)

    def test_clear_cart(self):
        add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.monday, 9), at(self.monday, 10))
        self.assertEqual(clear_cart(self.alice), 2)
        self.assertEqual(get_cart(self.alice), [])

    def test_clear_cart_before_a_moment(self):
        first = add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.monday, 9), at(self.monday, 10))
        second = add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.monday, 10), at(self.monday, 11))

        self.assertEqual(clear_cart(self.alice, created_before=first.created_at), 1)
        self.assertEqual([h.pk for h in get_cart(self.alice)], [second.pk])

    def test_sweep_and_command(self):
        hold = add_to_cart(self.alice, ItemType.EQUIPMENT, self.gear.id, 1, at(self.monday, 9), at(self.monday, 10))
        self.assertEqual(sweep_expired_holds(), 0)
        CartHold.objects.filter(pk=hold.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        out = StringIO()
        call_command("sweep_cart_holds", stdout=out)
        self.assertIn("Expired 1", out.getvalue())
        hold.refresh_from_db()
        self.assertEqual(hold.status, CartHold.STATUS_EXPIRED)


class ProductHoldTests(TestCase):
    def setUp(self):
        self.alice = make_user("alice-products")
        self.bob = make_user("bob-products")
        self.product = make_product(stock=3)

    def test_stock_minus_active_holds(self):
        add_to_cart(self.alice, ItemType.PRODUCT, self.product.id, 2)
        with self.assertRaises(CapacityExceeded):
            add_to_cart(self.bob, ItemType.PRODUCT, self.product.id, 2)
        hold = add_to_cart(self.bob, ItemType.PRODUCT, self.product.id, 1)
        self.assertEqual(hold.price, Decimal("4.50"))
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)


class CartApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.user = make_user("cart-api")
        self.room = make_resource(name="Sala API")
        self.day = future_weekday(3)

    def _request(self, method, path, data=None):
        request = getattr(self.factory, method)(path, data, format="json")
        force_authenticate(request, user=self.user)
        return request

    def test_add_list_patch_delete(self):
        payload = {
            "item_type": "room",
            "item_id": self.room.id,
            "start_time": at(self.day, 9).isoformat(),
            "end_time": at(self.day, 11).isoformat(),
        }
        response = CartView.as_view()(self._request("post", "/api/v1/cart/", payload))
        self.assertEqual(response.status_code, 201)
        hold_id = response.data["id"]
        self.assertEqual(Decimal(response.data["price"]), Decimal("100.00"))

        response = CartView.as_view()(self._request("get", "/api/v1/cart/"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["items"]), 1)
        self.assertEqual(response.data["total"], "100.00")

        response = CartItemView.as_view()(self._request("patch", f"/api/v1/cart/{hold_id}", {"quantity": 2}), pk=hold_id)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "capacity_exceeded")

        response = CartItemView.as_view()(self._request("delete", f"/api/v1/cart/{hold_id}"), pk=hold_id)
        self.assertEqual(response.status_code, 204)

    def test_booking_requires_times(self):
        response = CartView.as_view()(self._request("post", "/api/v1/cart/", {"item_type": "room", "item_id": self.room.id}))
        self.assertEqual(response.status_code, 400)

    def test_other_users_hold_not_found(self):
        other = make_user("cart-api-other")
        hold = add_to_cart(other, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        response = CartItemView.as_view()(self._request("delete", f"/api/v1/cart/{hold.id}"), pk=hold.id)
        self.assertEqual(response.status_code, 404)


class ConcurrentHoldTests(TransactionTestCase):
    """Two clients racing for the only unit of a slot."""

    def setUp(self):
        self.alice = make_user("alice-race")
        self.bob = make_user("bob-race")
        self.room = make_resource(name="Sala única")
        self.monday = future_weekday(0)

    def test_two_clients_race_for_the_last_slot(self):
        start, end = at(self.monday, 9), at(self.monday, 10)
        barrier = threading.Barrier(2)
        results = {}
        lock = threading.Lock()

        def add_worker(user):
            try:
                barrier.wait(timeout=5)
                add_to_cart(user, ItemType.ROOM, self.room.id, 1, start, end)
                outcome = "ok"
            except Exception as e:
                outcome = type(e).__name__
            finally:
                connection.close()
            with lock:
                results[user.username] = outcome

        threads = [threading.Thread(target=add_worker, args=(user,)) for user in (self.alice, self.bob)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 2, results)
        held = CartHold.objects.active().filter(resource=self.room).aggregate(total=Sum("quantity"))["total"] or 0
        self.assertLessEqual(held, self.room.capacity, results)
        winners = [name for name, outcome in results.items() if outcome == "ok"]
        self.assertLessEqual(len(winners), 1, results)

        # SQLite has no row locks; there the loser can fail with a locked table instead
        if connection.features.has_select_for_update:
            self.assertEqual(len(winners), 1, results)
            self.assertIn("CapacityExceeded", results.values())
            self.assertEqual(held, 1)

from datetime import time, timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from catalog.models import ResourceType
from common.claims import resolve_claims
from common.errors import CapacityExceeded, InvalidRange
from common.roles import BookingRole
from common.testing import at, future_weekday, make_resource, make_user
from orders.models import AuditLog, Reservation
from orders.status import OrderStatus
from scheduling.api import BlockDetailView, ResourceAvailabilityView, ResourceBlocksView
from scheduling.availability import (
    check_window,
    compute_availability,
    consecutive_end_hours,
    get_availability,
)
from scheduling.blocks import add_block, list_blocks, remove_block
from scheduling.models import ManualBlock


def _by_hour(table):
    return {row["hour"]: row for row in table}


class ComputeAvailabilityTests(TestCase):
    def setUp(self):
        self.day = future_weekday(0)
        self.now = at(self.day, 0) - timedelta(days=1)

    def _compute(self, **overrides):
        params = dict(
            day=self.day,
            capacity=2,
            schedule=[(time(8), time(12))],
            open_time=time(8),
            close_time=time(12),
            now=self.now,
        )
        params.update(overrides)
        return compute_availability(**params)

    def test_no_schedule_entries_means_closed(self):
        table = self._compute(schedule=[])
        self.assertEqual([r["hour"] for r in table], [8, 9, 10, 11])
        self.assertTrue(all(r["blocked_reason"] == "closed" for r in table))

    def test_closed_weekday(self):
        table = self._compute(open_on_day=False)
        self.assertTrue(all(r["blocked_reason"] == "closed" for r in table))

    def test_overlapping_entries_are_unioned(self):
        table = _by_hour(self._compute(
            schedule=[(time(8), time(10)), (time(9), time(13))],
            close_time=time(12),
        ))
        self.assertEqual(sorted(table), [8, 9, 10, 11, 12])
        self.assertTrue(all(row["is_available"] for row in table.values()))
        self.assertEqual(table[9]["available_quantity"], 2)

    def test_block_beats_free_capacity(self):
        table = _by_hour(self._compute(blocks=[(at(self.day, 9), at(self.day, 11))]))
        self.assertEqual(table[9]["blocked_reason"], "blocked")
        self.assertEqual(table[10]["blocked_reason"], "blocked")
        self.assertTrue(table[8]["is_available"])
        self.assertTrue(table[11]["is_available"])

    def test_commitments_reduce_quantity(self):
        table = _by_hour(self._compute(
            commitments=[(at(self.day, 9), at(self.day, 10), 1), (at(self.day, 9), at(self.day, 11), 1)],
            requested_quantity=1,
        ))
        self.assertEqual(table[9]["blocked_reason"], "fully_booked")
        self.assertEqual(table[9]["available_quantity"], 0)
        self.assertEqual(table[10]["available_quantity"], 1)
        self.assertTrue(table[10]["is_available"])

    def test_insufficient_quantity(self):
        table = _by_hour(self._compute(
            commitments=[(at(self.day, 10), at(self.day, 11), 1)],
            requested_quantity=2,
        ))
        self.assertEqual(table[10]["blocked_reason"], "insufficient_quantity")
        self.assertEqual(table[10]["available_quantity"], 1)

    def test_past_takes_precedence(self):
        now = at(self.day, 9, 30)
        table = _by_hour(self._compute(now=now, blocks=[(at(self.day, 8), at(self.day, 12))]))
        self.assertEqual(table[8]["blocked_reason"], "past")
        self.assertEqual(table[9]["blocked_reason"], "past")
        self.assertEqual(table[10]["blocked_reason"], "blocked")

    def test_consecutive_end_hours_stops_at_gap(self):
        table = self._compute(blocks=[(at(self.day, 10), at(self.day, 11))])
        self.assertEqual(consecutive_end_hours(table, 8), [9, 10])
        self.assertEqual(consecutive_end_hours(table, 10), [])
        self.assertEqual(consecutive_end_hours(table, 11), [12])


class AvailabilityLoaderTests(TestCase):
    def setUp(self):
        self.client_user = make_user("client-avail")
        self.gear = make_resource(name="Projetor", resource_type=ResourceType.EQUIPMENT, capacity=2)
        self.day = future_weekday(0)

    def _reserve(self, start_hour, end_hour, qty=1, status=OrderStatus.PAID):
        return Reservation.objects.create(
            resource=self.gear,
            user=self.client_user,
            start_time=at(self.day, start_hour),
            end_time=at(self.day, end_hour),
            quantity=qty,
            status=status,
            total_price=Decimal("10.00"),
        )

    def test_released_reservations_do_not_count(self):
        self._reserve(9, 10, status=OrderStatus.CANCELLED)
        self._reserve(9, 10, status=OrderStatus.RECUSED)
        self._reserve(9, 10, status=OrderStatus.IN_PROCESS)
        table = _by_hour(get_availability(self.gear.id, self.day))
        self.assertEqual(table[9]["available_quantity"], 1)

    def test_past_date(self):
        yesterday = timezone.localdate() - timedelta(days=1)
        table = get_availability(self.gear.id, yesterday)
        self.assertTrue(all(r["blocked_reason"] == "past" for r in table))

    def test_invalid_quantity(self):
        with self.assertRaises(InvalidRange):
            get_availability(self.gear.id, self.day, 0)

    def test_check_window_rejects_partial_hours_and_closed_hours(self):
        with self.assertRaises(InvalidRange):
            check_window(self.gear, at(self.day, 9, 30), at(self.day, 10, 30), 1)
        with self.assertRaises(InvalidRange):
            check_window(self.gear, at(self.day, 11), at(self.day, 13), 1)
        with self.assertRaises(InvalidRange):
            check_window(self.gear, at(self.day, 10), at(self.day, 9), 1)

    def test_check_window_capacity(self):
        self._reserve(9, 10, qty=2)
        with self.assertRaises(CapacityExceeded):
            check_window(self.gear, at(self.day, 8), at(self.day, 10), 1)
        check_window(self.gear, at(self.day, 10), at(self.day, 12), 2)
        with self.assertRaises(CapacityExceeded):
            check_window(self.gear, at(self.day, 10), at(self.day, 11), 3)


class ManualBlockTests(TestCase):
    def setUp(self):
        self.admin = make_user("admin-blocks", role=BookingRole.ADMIN)
        self.claims = resolve_claims(self.admin)
        self.client_user = make_user("client-blocks")
        self.room = make_resource(name="Sala 2")
        self.day = future_weekday(2)

    def test_add_block_rejects_inverted_range(self):
        with self.assertRaises(InvalidRange):
            add_block(self.room.id, at(self.day, 10), at(self.day, 10))

    def test_blocked_hours_unavailable_and_audited(self):
        block = add_block(self.room.id, at(self.day, 9), at(self.day, 11), reason="Manutenção", actor=self.claims)
        table = _by_hour(get_availability(self.room.id, self.day))
        self.assertEqual(table[9]["blocked_reason"], "blocked")
        self.assertEqual(table[10]["blocked_reason"], "blocked")
        self.assertTrue(table[11]["is_available"])
        self.assertTrue(AuditLog.objects.filter(action="block.created", user=self.admin).exists())
        self.assertEqual(list(list_blocks(self.room.id, at(self.day, 10), at(self.day, 12))), [block])

        remove_block(block.id, actor=self.claims)
        self.assertFalse(ManualBlock.objects.filter(pk=block.id).exists())
        self.assertTrue(_by_hour(get_availability(self.room.id, self.day))[9]["is_available"])
        self.assertTrue(AuditLog.objects.filter(action="block.removed").exists())

    def test_block_over_paid_reservation_leaves_it_intact(self):
        reservation = Reservation.objects.create(
            resource=self.room,
            user=self.client_user,
            start_time=at(self.day, 9),
            end_time=at(self.day, 10),
            quantity=1,
            status=OrderStatus.PAID,
            total_price=Decimal("50.00"),
        )
        add_block(self.room.id, at(self.day, 8), at(self.day, 12), actor=self.claims)
        reservation.refresh_from_db()
        self.assertEqual(reservation.status, OrderStatus.PAID)
        self.assertEqual(reservation.start_time, at(self.day, 9))
        self.assertEqual(_by_hour(get_availability(self.room.id, self.day))[9]["blocked_reason"], "blocked")


class SchedulingApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.admin = make_user("admin-sched-api", role=BookingRole.ADMIN)
        self.client_user = make_user("client-sched-api")
        self.room = make_resource(name="Sala 3")
        self.day = future_weekday(4)

    def _request(self, method, path, user, data=None):
        request = getattr(self.factory, method)(path, data, format="json") if data is not None else getattr(self.factory, method)(path)
        force_authenticate(request, user=user)
        return request

    def test_availability_endpoint(self):
        path = f"/api/v1/scheduling/resources/{self.room.id}/availability?date={self.day.isoformat()}&start_hour=9"
        response = ResourceAvailabilityView.as_view()(self._request("get", path, self.client_user), pk=self.room.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["hours"]), 4)
        self.assertEqual(response.data["end_hours"], [10, 11, 12])

    def test_availability_requires_date(self):
        path = f"/api/v1/scheduling/resources/{self.room.id}/availability"
        response = ResourceAvailabilityView.as_view()(self._request("get", path, self.client_user), pk=self.room.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "invalid_range")

    def test_clients_cannot_create_blocks(self):
        path = f"/api/v1/scheduling/resources/{self.room.id}/blocks"
        data = {"start_time": at(self.day, 9).isoformat(), "end_time": at(self.day, 10).isoformat()}
        response = ResourceBlocksView.as_view()(self._request("post", path, self.client_user, data), pk=self.room.id)
        self.assertEqual(response.status_code, 403)
        self.assertFalse(ManualBlock.objects.exists())

    def test_admin_creates_and_deletes_block(self):
        path = f"/api/v1/scheduling/resources/{self.room.id}/blocks"
        data = {"start_time": at(self.day, 9).isoformat(), "end_time": at(self.day, 10).isoformat(), "reason": "Limpeza"}
        response = ResourceBlocksView.as_view()(self._request("post", path, self.admin, data), pk=self.room.id)
        self.assertEqual(response.status_code, 201)
        block_id = response.data["id"]

        response = BlockDetailView.as_view()(self._request("delete", f"/api/v1/scheduling/blocks/{block_id}", self.admin), pk=block_id)
        self.assertEqual(response.status_code, 204)

        response = BlockDetailView.as_view()(self._request("delete", f"/api/v1/scheduling/blocks/{block_id}", self.admin), pk=block_id)
        self.assertEqual(response.status_code, 404)

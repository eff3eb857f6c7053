from datetime import time

from django.core.exceptions import ValidationError
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from catalog.api import ResourceDetailView, ResourceListView
from catalog.models import Resource, ResourceType
from catalog.services import get_resource, is_operating_at, list_open_days
from common.errors import NotFound
from common.testing import at, future_weekday, make_resource, make_user


class ResourceModelTests(TestCase):
    def test_room_capacity_must_be_one(self):
        room = Resource(name="Sala", resource_type=ResourceType.ROOM, capacity=2)
        with self.assertRaises(ValidationError):
            room.full_clean()

    def test_close_time_must_follow_open_time(self):
        res = Resource(name="Projetor", resource_type=ResourceType.EQUIPMENT, capacity=3,
                       open_time=time(18, 0), close_time=time(8, 0))
        with self.assertRaises(ValidationError):
            res.full_clean()


class CatalogServiceTests(TestCase):
    def setUp(self):
        # Monday and Wednesday, 08-12
        self.room = make_resource(weekdays=[0, 2])

    def test_get_resource_missing_or_inactive(self):
        with self.assertRaises(NotFound):
            get_resource(999999)
        self.room.is_active = False
        self.room.save(update_fields=["is_active"])
        with self.assertRaises(NotFound):
            get_resource(self.room.id)

    def test_list_open_days(self):
        self.assertEqual(list_open_days(self.room), {0, 2})

    def test_is_operating_at(self):
        monday = future_weekday(0)
        tuesday = future_weekday(1)
        self.assertTrue(is_operating_at(self.room, at(monday, 9, 30)))
        self.assertFalse(is_operating_at(self.room, at(monday, 12, 0)))
        self.assertFalse(is_operating_at(self.room, at(monday, 7, 59)))
        self.assertFalse(is_operating_at(self.room, at(tuesday, 9, 0)))


class CatalogApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.user = make_user("client-catalog")
        self.room = make_resource(name="Sala A")
        self.gear = make_resource(name="Projetor", resource_type=ResourceType.EQUIPMENT, capacity=4)

    def _get(self, view, path, **kwargs):
        request = self.factory.get(path)
        force_authenticate(request, user=self.user)
        return view(request, **kwargs)

    def test_list_filters_by_type(self):
        response = self._get(ResourceListView.as_view(), "/api/v1/catalog/resources?resource_type=equipment")
        self.assertEqual(response.status_code, 200)
        names = [r["name"] for r in response.data["results"]]
        self.assertEqual(names, ["Projetor"])

    def test_detail_includes_schedule(self):
        response = self._get(ResourceDetailView.as_view(), f"/api/v1/catalog/resources/{self.room.id}", pk=self.room.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["schedule"]), 7)
        self.assertEqual(response.data["open_days"], [0, 1, 2, 3, 4, 5, 6])

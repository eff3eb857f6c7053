# booking-backend/scheduling/api.py
import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from catalog.services import get_resource
from common.api_mixins import EngineErrorMixin
from common.claims import claims_for
from common.dates import to_aware, to_date
from common.errors import InvalidRange
from .availability import consecutive_end_hours, get_availability
from .blocks import add_block, list_blocks, remove_block
from .serializers import HourAvailabilitySerializer, ManualBlockCreateSerializer, ManualBlockSerializer

logger = logging.getLogger(__name__)


class ResourceAvailabilityView(EngineErrorMixin, APIView):
    """
    GET /api/v1/scheduling/resources/<id>/availability?date=YYYY-MM-DD&quantity=1[&start_hour=9]
    Hour table for one day; with start_hour also returns the reachable end hours.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        day = to_date(request.query_params.get("date"))
        if day is None:
            raise InvalidRange("date is required")
        try:
            quantity = int(request.query_params.get("quantity") or 1)
        except (TypeError, ValueError):
            raise InvalidRange("quantity must be an integer")

        resource = get_resource(pk)
        table = get_availability(resource.pk, day, quantity, resource=resource)
        body = {
            "resource": resource.pk,
            "date": day.isoformat(),
            "quantity": quantity,
            "hours": HourAvailabilitySerializer(table, many=True).data,
        }
        start_hour = request.query_params.get("start_hour")
        if start_hour not in (None, ""):
            if not str(start_hour).isdigit():
                raise InvalidRange("start_hour must be an integer")
            body["end_hours"] = consecutive_end_hours(table, int(start_hour))
        return Response(body)


class ResourceBlocksView(EngineErrorMixin, APIView):
    """
    GET  /api/v1/scheduling/resources/<id>/blocks?start=&end=
    POST /api/v1/scheduling/resources/<id>/blocks  {start_time, end_time, reason}
    Admin only.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        claims_for(request).require_staff("block management")
        get_resource(pk)
        qs = list_blocks(
            pk,
            start=to_aware(request.query_params.get("start")),
            end=to_aware(request.query_params.get("end")),
        )
        return Response(ManualBlockSerializer(qs, many=True).data)

    def post(self, request, pk):
        claims = claims_for(request)
        claims.require_staff("block management")
        ser = ManualBlockCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        block = add_block(pk, data["start_time"], data["end_time"], reason=data.get("reason"), actor=claims)
        return Response(ManualBlockSerializer(block).data, status=status.HTTP_201_CREATED)


class BlockDetailView(EngineErrorMixin, APIView):
    """
    DELETE /api/v1/scheduling/blocks/<id>
    """
    permission_classes = [IsAuthenticated]

    def delete(self, request, pk):
        claims = claims_for(request)
        claims.require_staff("block management")
        remove_block(pk, actor=claims)
        return Response(status=status.HTTP_204_NO_CONTENT)

# booking-backend/cart/api.py
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import EngineErrorMixin
from .holds import add_to_cart, cart_total, clear_cart, get_cart, remove_from_cart, update_cart
from .serializers import AddToCartSerializer, CartHoldSerializer, UpdateCartSerializer


def _cart_body(holds):
    return {
        "items": CartHoldSerializer(holds, many=True).data,
        "total": str(cart_total(holds)),
        "expires_at": min((h.expires_at for h in holds), default=None),
    }


class CartView(EngineErrorMixin, APIView):
    """
    GET    /api/v1/cart/   -> live holds + total
    POST   /api/v1/cart/   {item_type, item_id, quantity, start_time, end_time, metadata}
    DELETE /api/v1/cart/   -> clear
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(_cart_body(get_cart(request.user)))

    def post(self, request):
        ser = AddToCartSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        hold = add_to_cart(
            request.user,
            data["item_type"],
            data["item_id"],
            quantity=data["quantity"],
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            metadata=data.get("metadata"),
        )
        return Response(CartHoldSerializer(hold).data, status=status.HTTP_201_CREATED)

    def delete(self, request):
        removed = clear_cart(request.user)
        return Response({"removed": removed})


class CartItemView(EngineErrorMixin, APIView):
    """
    PATCH  /api/v1/cart/<id>  {quantity}
    DELETE /api/v1/cart/<id>
    """
    permission_classes = [IsAuthenticated]

    def patch(self, request, pk):
        ser = UpdateCartSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        hold = update_cart(request.user, pk, ser.validated_data["quantity"])
        return Response(CartHoldSerializer(hold).data)

    def delete(self, request, pk):
        remove_from_cart(request.user, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

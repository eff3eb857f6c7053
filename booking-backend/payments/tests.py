import json
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate

from cart.holds import add_to_cart
from cart.models import CartHold, ItemType
from common.claims import resolve_claims
from common.errors import (
    AlreadyProcessed,
    Forbidden,
    GatewayError,
    InvalidRange,
    InvalidState,
    MalformedPayload,
    NotFound,
    Unauthorized,
)
from common.roles import BookingRole
from common.testing import at, future_weekday, make_product, make_resource, make_user
from orders.checkout import create_cash_order, start_checkout
from orders.models import AuditLog, Order, PaymentMethod, RefundStatus, Reservation
from orders.status import OrderStatus
from payments.api import CancelExpiredView, OrderStatusView, RefundView, WebhookView
from payments.errors import classify_payment_error
from payments.gateway import Click2PayGateway, GatewayTransaction
from payments.models import PaymentEvent
from payments.reconciler import (
    cancel_cash_order,
    cancel_expired_hold,
    capture_payment,
    check_status,
    expire_stale_orders,
    handle_webhook,
    poll_pending_orders,
    refund,
)
from payments.signatures import compute_signature, signature_from_headers, verify_signature
from scheduling.availability import get_availability


SECRET = "whsec_test"


def _tx(status, tid="tx-1", paid_amount=None):
    return GatewayTransaction(tid=tid, status=status, paid_amount=paid_amount, raw={"tid": tid, "status": status})


def _webhook_body(order, status="paid", event_type="PAYMENT_RECEIVED", **extra):
    data = {
        "external_identifier": order.external_identifier,
        "tid": order.click2pay_tid,
        "status": status,
        "payment": {"paid_amount": float(order.total_amount)},
    }
    data.update(extra)
    return json.dumps({"type": event_type, "data": data}).encode("utf-8")


class SignatureTests(TestCase):
    def test_valid_signature_with_and_without_prefix(self):
        body = b'{"a": 1}'
        sig = compute_signature(body, SECRET)
        verify_signature(body, sig, secret=SECRET)
        verify_signature(body, f"sha256={sig}", secret=SECRET)

    def test_tampered_body_rejected(self):
        sig = compute_signature(b'{"a": 1}', SECRET)
        with self.assertRaises(Unauthorized):
            verify_signature(b'{"a": 2}', sig, secret=SECRET)

    def test_missing_signature_or_secret(self):
        with self.assertRaises(Unauthorized):
            verify_signature(b"{}", "", secret=SECRET)
        with self.assertRaises(Unauthorized):
            verify_signature(b"{}", "abc", secret="")

    def test_header_lookup(self):
        self.assertEqual(signature_from_headers({"C2P-Hash": "abc"}), "abc")
        self.assertEqual(signature_from_headers({}), "")


class ErrorClassificationTests(TestCase):
    def test_card_messages(self):
        self.assertEqual(classify_payment_error("insufficient_funds", "card")["code"], "insufficient_funds")
        self.assertEqual(classify_payment_error("Invalid CVV", "card")["code"], "invalid_cvv")
        self.assertFalse(classify_payment_error("invalid_cvv", "card")["show_change_method"])

    def test_boleto_minimum_cannot_retry(self):
        entry = classify_payment_error("Valor mínimo não atingido", "boleto")
        self.assertEqual(entry["code"], "minimum_value")
        self.assertFalse(entry["can_retry"])

    def test_fallbacks(self):
        self.assertEqual(classify_payment_error("HTTP 503", "pix")["code"], "network_error")
        self.assertEqual(classify_payment_error("weird", "pix")["code"], "pix_error")
        self.assertEqual(classify_payment_error("weird")["code"], "payment_error")


class GatewayClientTests(TestCase):
    def _gateway(self, response=None, exc=None):
        session = MagicMock()
        if exc is not None:
            session.request.side_effect = exc
        else:
            session.request.return_value = response
        return Click2PayGateway(base_url="https://c2p.test", client_id="id", client_secret="secret", timeout=5, session=session), session

    def test_get_transaction_unwraps_data(self):
        response = MagicMock(status_code=200)
        response.json.return_value = {"data": {"tid": "abc", "status": "PAID", "payment": {"paid_amount": 50.0}}}
        gateway, session = self._gateway(response)

        tx = gateway.get_transaction("abc")

        self.assertEqual(tx.status, "paid")
        self.assertEqual(tx.paid_amount, Decimal("50.0"))
        method, url = session.request.call_args[0]
        self.assertEqual((method, url), ("GET", "https://c2p.test/v1/transactions/abc"))

    def test_http_error_becomes_gateway_error(self):
        response = MagicMock(status_code=422)
        response.json.return_value = {"error": {"message": "card_declined"}}
        gateway, _ = self._gateway(response)
        with self.assertRaises(GatewayError) as ctx:
            gateway.capture("abc", Decimal("10"))
        self.assertEqual(ctx.exception.message, "card_declined")
        self.assertEqual(ctx.exception.context["status_code"], 422)

    def test_network_failure(self):
        gateway, _ = self._gateway(exc=requests.exceptions.ConnectTimeout("timed out"))
        with self.assertRaises(GatewayError):
            gateway.get_transaction("abc")

    def test_boleto_refund_not_supported(self):
        gateway, session = self._gateway(MagicMock(status_code=200))
        with self.assertRaises(GatewayError):
            gateway.refund("abc", Decimal("10"), "boleto")
        session.request.assert_not_called()


@override_settings(CLICK2PAY_WEBHOOK_SECRET=SECRET)
class ReconcilerBase(TestCase):
    def setUp(self):
        self.alice = make_user("alice-pay")
        self.admin = make_user("admin-pay", role=BookingRole.ADMIN)
        self.room = make_resource(name="Sala 7")
        self.water = make_product(stock=4)
        self.day = future_weekday(3)
        self.admin_claims = resolve_claims(self.admin)

    def checkout(self, method=PaymentMethod.PIX, tid="tx-1", status="pending"):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        add_to_cart(self.alice, ItemType.PRODUCT, self.water.id, 2)
        gateway = MagicMock()
        gateway.create_transaction.return_value = _tx(status, tid=tid)
        card = {"card_hash": "x"} if method == PaymentMethod.CARD else None
        return start_checkout(self.alice, method, card=card, gateway=gateway).order

    def deliver(self, body):
        return handle_webhook(body, compute_signature(body, SECRET))

    def reservation(self, order):
        return Reservation.objects.get(order=order)

    def available_at_nine(self):
        table = get_availability(self.room.id, self.day)
        return next(row for row in table if row["hour"] == 9)["available_quantity"]


class WebhookTests(ReconcilerBase):
    def test_paid_webhook_confirms_order(self):
        order = self.checkout()
        result = self.deliver(_webhook_body(order))

        self.assertTrue(result.changed)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.paid_amount, Decimal("59.00"))
        self.assertIsNotNone(order.paid_at)
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_duplicate_delivery_is_a_noop(self):
        order = self.checkout()
        body = _webhook_body(order)
        self.deliver(body)

        with self.assertRaises(AlreadyProcessed):
            self.deliver(body)
        self.assertEqual(PaymentEvent.objects.filter(order=order, source="webhook").count(), 1)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_repeated_status_from_a_new_delivery(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        result = self.deliver(_webhook_body(order, delivery="2"))
        self.assertFalse(result.changed)
        self.assertEqual(result.status, OrderStatus.PAID)

    def test_falls_back_to_tid(self):
        order = self.checkout(tid="tx-fallback")
        body = json.dumps({"type": "PAYMENT_RECEIVED", "data": {"tid": "tx-fallback", "status": "paid"}}).encode()
        self.deliver(body)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_bad_signature_changes_nothing(self):
        order = self.checkout()
        with self.assertRaises(Unauthorized):
            handle_webhook(_webhook_body(order), "deadbeef")
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.IN_PROCESS)
        self.assertFalse(PaymentEvent.objects.filter(source="webhook").exists())

    def test_unknown_order_and_garbage(self):
        body = json.dumps({"data": {"external_identifier": "order_0_missing", "status": "paid"}}).encode()
        with self.assertRaises(NotFound):
            self.deliver(body)
        with self.assertRaises(MalformedPayload):
            self.deliver(b"not json")

    def test_refund_webhook_releases(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        self.deliver(_webhook_body(order, status="refunded", event_type="PAYMENT_REFUNDED"))

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.RECUSED)
        self.assertEqual(order.refund_status, RefundStatus.COMPLETED)
        self.assertEqual(self.reservation(order).status, OrderStatus.RECUSED)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 4)

    def test_refund_webhook_after_partial_refund_keeps_booking(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        gateway = MagicMock()
        gateway.refund.return_value = _tx("refunded")
        refund(order.id, "Atraso", self.admin_claims, amount=Decimal("20.00"), gateway=gateway)

        result = self.deliver(_webhook_body(order, status="refunded", event_type="PAYMENT_REFUNDED"))

        self.assertFalse(result.changed)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PARTIAL_REFUNDED)
        self.assertEqual(order.refund_amount, Decimal("20.00"))
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)
        self.assertEqual(self.available_at_nine(), 0)

    def test_refund_webhook_amount_decides_partial_or_full(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))

        self.deliver(_webhook_body(
            order, status="refunded", event_type="PAYMENT_REFUNDED", refund={"amount": 15},
        ))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PARTIAL_REFUNDED)
        self.assertEqual(order.refund_amount, Decimal("15"))
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

        self.deliver(_webhook_body(
            order, status="refunded", event_type="PAYMENT_REFUNDED", refund={"amount": 59},
        ))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.RECUSED)
        self.assertEqual(order.refund_amount, Decimal("59"))
        self.assertEqual(self.reservation(order).status, OrderStatus.RECUSED)

    def test_partially_refunded_status(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        self.deliver(_webhook_body(order, status="partially_refunded", event_type="PAYMENT_REFUNDED"))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PARTIAL_REFUNDED)
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_payment_field_that_is_not_an_object(self):
        order = self.checkout()
        self.deliver(_webhook_body(order, payment="59.00"))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.paid_amount, order.total_amount)

    def test_paid_never_goes_back(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        with self.assertRaises(AlreadyProcessed):
            self.deliver(_webhook_body(order, status="pending", delivery="late"))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)


class PaymentWindowTests(ReconcilerBase):
    def test_expiry_then_late_paid_webhook(self):
        order = self.checkout()
        self.assertEqual(self.available_at_nine(), 0)

        result = cancel_expired_hold(order.id, now=order.expires_at + timedelta(minutes=1))
        self.assertTrue(result.changed)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancellation_reason, "Payment window expired")
        self.assertEqual(self.reservation(order).status, OrderStatus.CANCELLED)
        self.assertEqual(self.available_at_nine(), 1)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 4)

        with self.assertRaises(AlreadyProcessed):
            self.deliver(_webhook_body(order))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertTrue(PaymentEvent.objects.filter(order=order, source="webhook", applied=False).exists())

    def test_paid_webhook_then_expiry(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))

        with self.assertRaises(AlreadyProcessed):
            cancel_expired_hold(order.id, now=order.expires_at + timedelta(minutes=1))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_window_still_open(self):
        order = self.checkout()
        with self.assertRaises(InvalidState):
            cancel_expired_hold(order.id, now=order.expires_at - timedelta(minutes=1))

    def test_cancelling_twice_restores_stock_once(self):
        order = self.checkout()
        later = order.expires_at + timedelta(minutes=1)
        cancel_expired_hold(order.id, now=later)
        result = cancel_expired_hold(order.id, now=later)
        self.assertFalse(result.changed)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 4)

    def test_sweep_and_command(self):
        order = self.checkout()
        self.assertEqual(expire_stale_orders(now=order.expires_at - timedelta(seconds=1)), 0)
        self.assertEqual(expire_stale_orders(now=order.expires_at + timedelta(seconds=1)), 1)

        out = StringIO()
        call_command("expire_payment_windows", stdout=out)
        self.assertIn("Cancelled 0 order(s)", out.getvalue())

    def test_sweep_keeps_holds_added_after_checkout(self):
        order = self.checkout()
        next_hold = add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 11), at(self.day, 12))

        self.assertEqual(expire_stale_orders(now=order.expires_at + timedelta(minutes=1)), 1)

        next_hold.refresh_from_db()
        self.assertEqual(next_hold.status, CartHold.STATUS_ACTIVE)
        self.assertEqual(CartHold.objects.filter(user=self.alice, status=CartHold.STATUS_ACTIVE).count(), 1)


class StatusPollTests(ReconcilerBase):
    def test_check_status_applies_gateway_state(self):
        order = self.checkout()
        gateway = MagicMock()
        gateway.get_transaction.return_value = _tx("paid", paid_amount=Decimal("59.00"))

        result = check_status(order.id, gateway=gateway)

        self.assertTrue(result.changed)
        gateway.get_transaction.assert_called_once_with("tx-1")
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_gateway_failure_propagates(self):
        order = self.checkout()
        gateway = MagicMock()
        gateway.get_transaction.side_effect = GatewayError("timeout")
        with self.assertRaises(GatewayError):
            check_status(order.id, gateway=gateway)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.IN_PROCESS)

    def test_cash_orders_have_nothing_to_poll(self):
        add_to_cart(self.admin, ItemType.ROOM, self.room.id, 1, at(self.day, 11), at(self.day, 12))
        order = create_cash_order(self.admin_claims, self.alice).order
        with self.assertRaises(InvalidState):
            check_status(order.id, gateway=MagicMock())

    def test_poll_survives_gateway_errors(self):
        order = self.checkout()
        gateway = MagicMock()
        gateway.get_transaction.side_effect = GatewayError("HTTP 503")
        stats = poll_pending_orders(gateway=gateway)
        self.assertEqual(stats, {"checked": 1, "changed": 0, "errors": 1})

        gateway.get_transaction.side_effect = None
        gateway.get_transaction.return_value = _tx("declined")
        stats = poll_pending_orders(gateway=gateway)
        self.assertEqual(stats["changed"], 1)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.RECUSED)


class CaptureTests(ReconcilerBase):
    def test_capture_requires_authorized(self):
        order = self.checkout(method=PaymentMethod.CARD)
        gateway = MagicMock()
        with self.assertRaises(InvalidState):
            capture_payment(order.id, gateway=gateway)
        gateway.capture.assert_not_called()
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.IN_PROCESS)

    def test_capture_authorized_card(self):
        order = self.checkout(method=PaymentMethod.CARD, status="authorized")
        self.assertEqual(order.status, OrderStatus.AUTHORIZED)
        gateway = MagicMock()
        gateway.capture.return_value = _tx("paid", paid_amount=Decimal("59.00"))

        result = capture_payment(order.id, gateway=gateway)

        self.assertEqual(result.status, OrderStatus.PAID)
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_capture_racing_a_refusal_is_flagged(self):
        order = self.checkout(method=PaymentMethod.CARD, status="authorized")

        def capture(tid, amount):
            # a recused notification lands while the gateway is capturing
            Order.objects.filter(pk=order.pk).update(status=OrderStatus.RECUSED)
            return _tx("paid", paid_amount=amount)

        gateway = MagicMock()
        gateway.capture.side_effect = capture

        with self.assertLogs("payments.reconciler", level="WARNING") as logs:
            with self.assertRaises(AlreadyProcessed):
                capture_payment(order.id, gateway=gateway)

        self.assertTrue(any("refund needed" in line for line in logs.output))
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.RECUSED)
        entry = AuditLog.objects.get(action="order.capture_mismatch", order=order)
        self.assertEqual(entry.severity, "critical")
        self.assertEqual(entry.metadata["status"], OrderStatus.RECUSED)

    def test_pix_cannot_be_captured(self):
        order = self.checkout()
        with self.assertRaises(InvalidState):
            capture_payment(order.id, gateway=MagicMock())


class RefundTests(ReconcilerBase):
    def paid_order(self):
        order = self.checkout()
        self.deliver(_webhook_body(order))
        order.refresh_from_db()
        return order

    def test_full_refund(self):
        order = self.paid_order()
        gateway = MagicMock()
        gateway.refund.return_value = _tx("refunded")

        result = refund(order.id, "Cliente desistiu", self.admin_claims, gateway=gateway)

        self.assertEqual(result.status, OrderStatus.RECUSED)
        gateway.refund.assert_called_once_with("tx-1", Decimal("59.00"), PaymentMethod.PIX)
        order.refresh_from_db()
        self.assertEqual(order.refund_status, RefundStatus.COMPLETED)
        self.assertEqual(order.refund_amount, Decimal("59.00"))
        self.assertEqual(self.reservation(order).status, OrderStatus.RECUSED)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 4)
        self.assertTrue(AuditLog.objects.filter(action="order.refunded", order=order).exists())

        with self.assertRaises(InvalidState):
            refund(order.id, "again", self.admin_claims, gateway=gateway)

    def test_partial_refund_keeps_booking(self):
        order = self.paid_order()
        gateway = MagicMock()
        gateway.refund.return_value = _tx("partially_refunded")

        result = refund(order.id, "Atraso", self.admin_claims, amount=Decimal("20.00"), gateway=gateway)

        self.assertEqual(result.status, OrderStatus.PARTIAL_REFUNDED)
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

    def test_follow_up_refunds_up_to_the_settled_amount(self):
        order = self.paid_order()
        gateway = MagicMock()
        gateway.refund.return_value = _tx("partially_refunded")

        refund(order.id, "Atraso", self.admin_claims, amount=Decimal("20.00"), gateway=gateway)
        result = refund(order.id, "Equipamento com defeito", self.admin_claims, amount=Decimal("30.00"), gateway=gateway)
        self.assertEqual(result.status, OrderStatus.PARTIAL_REFUNDED)
        order.refresh_from_db()
        self.assertEqual(order.refund_amount, Decimal("50.00"))
        self.assertEqual(self.reservation(order).status, OrderStatus.PAID)

        with self.assertRaises(InvalidRange):
            refund(order.id, "x", self.admin_claims, amount=Decimal("10.00"), gateway=gateway)

        gateway.refund.return_value = _tx("refunded")
        result = refund(order.id, "Cancelado", self.admin_claims, gateway=gateway)

        self.assertEqual(result.status, OrderStatus.RECUSED)
        gateway.refund.assert_called_with("tx-1", Decimal("9.00"), PaymentMethod.PIX)
        order.refresh_from_db()
        self.assertEqual(order.refund_amount, Decimal("59.00"))
        self.assertEqual(self.reservation(order).status, OrderStatus.RECUSED)

    def test_failed_follow_up_keeps_earlier_refund(self):
        order = self.paid_order()
        gateway = MagicMock()
        gateway.refund.return_value = _tx("partially_refunded")
        refund(order.id, "Atraso", self.admin_claims, amount=Decimal("20.00"), gateway=gateway)

        gateway.refund.side_effect = GatewayError("HTTP 500")
        with self.assertRaises(GatewayError):
            refund(order.id, "x", self.admin_claims, amount=Decimal("5.00"), gateway=gateway)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PARTIAL_REFUNDED)
        self.assertEqual(order.refund_status, RefundStatus.FAILED)
        self.assertEqual(order.refund_amount, Decimal("20.00"))

    def test_refund_guards(self):
        order = self.checkout()
        with self.assertRaises(Forbidden):
            refund(order.id, "x", resolve_claims(self.alice), gateway=MagicMock())
        with self.assertRaises(InvalidState):
            refund(order.id, "x", self.admin_claims, gateway=MagicMock())

        order = Order.objects.get(pk=order.pk)
        self.deliver(_webhook_body(order))
        with self.assertRaises(InvalidRange):
            refund(order.id, "x", self.admin_claims, amount=Decimal("100.00"), gateway=MagicMock())

    def test_gateway_failure_marks_refund_failed(self):
        order = self.paid_order()
        gateway = MagicMock()
        gateway.refund.side_effect = GatewayError("HTTP 500")

        with self.assertRaises(GatewayError):
            refund(order.id, "x", self.admin_claims, gateway=gateway)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.refund_status, RefundStatus.FAILED)


class CashCancelTests(ReconcilerBase):
    def setUp(self):
        super().setUp()
        add_to_cart(self.admin, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        add_to_cart(self.admin, ItemType.PRODUCT, self.water.id, 1)
        self.order = create_cash_order(self.admin_claims, self.alice).order

    def test_cancel_releases_and_restocks(self):
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 3)

        result = cancel_cash_order(self.order.id, "Cliente não compareceu", self.admin_claims)

        self.assertEqual(result.status, OrderStatus.CANCELLED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.cancelled_by_id, self.admin.id)
        self.assertEqual(self.reservation(self.order).status, OrderStatus.CANCELLED)
        self.water.refresh_from_db()
        self.assertEqual(self.water.stock, 4)
        self.assertTrue(AuditLog.objects.filter(action="order.cash_cancelled").exists())

        self.assertFalse(cancel_cash_order(self.order.id, "again", self.admin_claims).changed)

    def test_guards(self):
        with self.assertRaises(Forbidden):
            cancel_cash_order(self.order.id, "x", resolve_claims(self.alice))
        pix = Order.objects.create(user=self.alice, payment_method=PaymentMethod.PIX, status=OrderStatus.PAID)
        with self.assertRaises(InvalidState):
            cancel_cash_order(pix.id, "x", self.admin_claims)


class PaymentsApiTests(ReconcilerBase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def _webhook_request(self, body, signature):
        return self.factory.post(
            "/api/v1/payments/webhook", data=body, content_type="application/json",
            HTTP_X_C2P_SIGNATURE=signature,
        )

    def test_webhook_endpoint(self):
        order = self.checkout()
        body = _webhook_body(order)

        response = WebhookView.as_view()(self._webhook_request(body, compute_signature(body, SECRET)))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], OrderStatus.PAID)

        response = WebhookView.as_view()(self._webhook_request(body, compute_signature(body, SECRET)))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["error"], "already_processed")

    def test_webhook_bad_signature(self):
        order = self.checkout()
        response = WebhookView.as_view()(self._webhook_request(_webhook_body(order), "sha256=bad"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data["error"], "unauthorized")

    @patch("payments.reconciler.get_gateway")
    def test_client_polls_own_order(self, get_gateway):
        order = self.checkout()
        get_gateway.return_value.get_transaction.return_value = _tx("paid")
        request = self.factory.post(f"/api/v1/payments/orders/{order.id}/status")
        force_authenticate(request, user=self.alice)

        response = OrderStatusView.as_view()(request, pk=order.id)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], OrderStatus.PAID)

    def test_other_clients_cannot_touch_order(self):
        order = self.checkout()
        stranger = make_user("stranger-pay")
        request = self.factory.post(f"/api/v1/payments/orders/{order.id}/cancel-expired")
        force_authenticate(request, user=stranger)
        response = CancelExpiredView.as_view()(request, pk=order.id)
        self.assertEqual(response.status_code, 404)

    def test_refund_requires_staff(self):
        order = self.checkout()
        request = self.factory.post(f"/api/v1/payments/orders/{order.id}/refund", {"reason": "x"}, format="json")
        force_authenticate(request, user=self.alice)
        response = RefundView.as_view()(request, pk=order.id)
        self.assertEqual(response.status_code, 403)

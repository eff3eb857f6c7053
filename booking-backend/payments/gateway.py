# payments/gateway.py
"""
Click2Pay REST client.

Only the four calls the engine needs: create a transaction, look one up,
capture an authorized card charge and refund. Every network or HTTP failure
surfaces as GatewayError; callers decide whether that is retryable.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from common.errors import GatewayError

logger = logging.getLogger(__name__)


METHOD_PATHS = {
    "pix": "pix",
    "card": "creditcard",
    "boleto": "boleto",
}


@dataclass
class GatewayTransaction:
    tid: str
    status: str
    status_reason: str = ""
    paid_amount: Decimal = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict) -> "GatewayTransaction":
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        payment = data.get("payment") if isinstance(data.get("payment"), dict) else {}
        amount = payment.get("paid_amount", payment.get("amount", data.get("totalAmount")))
        return cls(
            tid=str(data.get("tid") or data.get("transactionId") or body.get("transactionId") or ""),
            status=str(data.get("status") or "").lower(),
            status_reason=data.get("status_reason") or data.get("statusReason") or "",
            paid_amount=Decimal(str(amount)) if amount not in (None, "") else None,
            raw=body,
        )


def _amount(value) -> float:
    return float(Decimal(value).quantize(Decimal("0.01")))


class Click2PayGateway:
    def __init__(self, base_url=None, client_id=None, client_secret=None, timeout=None, session=None):
        self.base_url = (base_url or settings.CLICK2PAY_BASE_URL).rstrip("/")
        self.auth = (client_id or settings.CLICK2PAY_CLIENT_ID, client_secret or settings.CLICK2PAY_CLIENT_SECRET)
        self.timeout = timeout or settings.CLICK2PAY_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _request(self, method, path, payload=None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, auth=self.auth, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Click2Pay %s %s failed: %s", method, path, e, exc_info=True)
            raise GatewayError(f"Payment provider unreachable: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:1000]}

        if response.status_code >= 400:
            detail = ""
            if isinstance(body, dict):
                err = body.get("error")
                if isinstance(err, dict):
                    detail = err.get("message") or err.get("code") or ""
                elif isinstance(err, str):
                    detail = err
                detail = detail or body.get("message") or body.get("description") or ""
            logger.error("Click2Pay %s %s returned %s: %s", method, path, response.status_code, detail or body)
            raise GatewayError(
                detail or f"Payment provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return body if isinstance(body, dict) else {"data": body}

    def create_transaction(self, order, payer=None, card=None) -> GatewayTransaction:
        path = METHOD_PATHS.get(order.payment_method)
        if path is None:
            raise GatewayError(f"Payment method {order.payment_method} is not processed by the gateway")
        payload = {
            "id": str(order.id),
            "externalIdentifier": order.external_identifier,
            "totalAmount": _amount(order.total_amount),
            "payerInfo": payer or {},
            "callbackAddress": settings.CLICK2PAY_CALLBACK_URL,
        }
        if order.payment_method == "pix" and order.expires_at:
            payload["expiration"] = order.expires_at.isoformat()
        if order.payment_method == "boleto":
            payload["payment_limit_days"] = 3
        if order.payment_method == "card":
            payload.update(card or {})
            payload.setdefault("capture", False)
        body = self._request("POST", f"/v1/transactions/{path}", payload)
        return GatewayTransaction.from_body(body)

    def get_transaction(self, tid) -> GatewayTransaction:
        return GatewayTransaction.from_body(self._request("GET", f"/v1/transactions/{tid}"))

    def capture(self, tid, amount) -> GatewayTransaction:
        body = self._request("POST", f"/v1/transactions/creditcard/{tid}/capture", {"totalAmount": _amount(amount)})
        return GatewayTransaction.from_body(body)

    def refund(self, tid, amount, method) -> GatewayTransaction:
        path = METHOD_PATHS.get(method)
        if method not in ("pix", "card"):
            raise GatewayError(f"Refunds are not supported for {method}")
        body = self._request("POST", f"/v1/transactions/{path}/{tid}/refund", {"totalAmount": _amount(amount)})
        return GatewayTransaction.from_body(body)


def get_gateway():
    """Gateway instance from settings.PAYMENT_GATEWAY_CLASS."""
    return import_string(settings.PAYMENT_GATEWAY_CLASS)()

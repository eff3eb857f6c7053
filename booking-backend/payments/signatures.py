# payments/signatures.py
"""
Webhook signature verification for gateway callbacks.

The gateway signs the raw request body with HMAC-SHA256 using the shared
webhook secret and sends the hex digest in a header, optionally prefixed
with ``sha256=``.
"""
import hashlib
import hmac
import logging

from django.conf import settings

from common.errors import Unauthorized

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-C2P-Signature", "C2P-Hash", "X-Signature")


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Generate HMAC-SHA256 signature for payload"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def signature_from_headers(headers) -> str:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return ""


def verify_signature(raw_body: bytes, signature: str, secret: str = None) -> None:
    """Raise Unauthorized unless ``signature`` matches the body."""
    secret = secret if secret is not None else settings.CLICK2PAY_WEBHOOK_SECRET
    if not secret:
        logger.error("Webhook rejected: CLICK2PAY_WEBHOOK_SECRET is not configured")
        raise Unauthorized("Webhook secret not configured")

    provided = (signature or "").strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(raw_body or b"", secret)

    if not provided or not hmac.compare_digest(provided.lower(), expected):
        logger.warning("Webhook rejected: invalid signature (body %s bytes)", len(raw_body or b""))
        raise Unauthorized("Invalid webhook signature")

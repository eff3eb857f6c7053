# payments/errors.py
"""
Classification of gateway error messages into user-facing guidance.

Checkout responses carry the result so clients can tell a retryable card
decline from a problem that needs a different payment method.
"""
from decimal import Decimal

BOLETO_MINIMUM = Decimal("30.00")


def _entry(type_, code, title, message, suggestion, can_retry, show_change_method):
    return {
        "type": type_,
        "code": code,
        "title": title,
        "message": message,
        "suggestion": suggestion,
        "can_retry": can_retry,
        "show_change_method": show_change_method,
    }


# (keywords, entry) checked in order; first match wins
CARD_RULES = [
    (("insufficient_funds", "insufficient", "saldo"), _entry(
        "card", "insufficient_funds", "Insufficient funds",
        "The card does not have enough available limit for this purchase.",
        "Try another card or choose PIX.", True, True)),
    (("invalid_cvv", "cvv", "security code", "código de segurança"), _entry(
        "card", "invalid_cvv", "Invalid security code",
        "The card security code (CVV) is incorrect.",
        "Check the 3 or 4 digit code on the card and try again.", True, False)),
    (("expired_card", "expired", "vencido", "validade"), _entry(
        "card", "expired_card", "Expired card",
        "The card is past its expiry date.",
        "Use a valid card or choose another payment method.", True, True)),
    (("invalid_card", "invalid card", "card number", "número do cartão", "invalid number"), _entry(
        "card", "invalid_card", "Invalid card",
        "The card number could not be validated.",
        "Check the card number and try again.", True, False)),
    (("card_declined", "declined", "recusad", "denied", "not authorized", "não autorizad"), _entry(
        "card", "card_declined", "Card declined",
        "The card issuer declined the transaction.",
        "Contact your bank or try a different card.", True, True)),
]

PIX_RULES = [
    (("pix_expired", "expired", "expirad"), _entry(
        "pix", "pix_expired", "PIX code expired",
        "The payment window for this PIX code has closed.",
        "Start the checkout again to generate a new code.", True, False)),
    (("pix_limit", "limit", "limite"), _entry(
        "pix", "pix_limit", "PIX limit exceeded",
        "The amount is above the PIX limit allowed by your bank.",
        "Raise the PIX limit in your bank app or pay by card.", True, True)),
    (("pix_unavailable", "unavailable", "indisponível"), _entry(
        "pix", "pix_unavailable", "PIX unavailable",
        "PIX is temporarily unavailable.",
        "Wait a few minutes and try again, or choose another method.", True, True)),
]

BOLETO_RULES = [
    (("minimum", "mínimo", "minimo"), _entry(
        "boleto", "minimum_value", "Amount below boleto minimum",
        f"Boleto payments require at least R$ {BOLETO_MINIMUM}.",
        "Add items to the order or pay with PIX or card.", False, True)),
    (("boleto_generation_failed", "generat", "gerar", "geração"), _entry(
        "boleto", "generation_failed", "Boleto could not be generated",
        "The boleto could not be issued.",
        "Check the payer address and document, then try again.", True, True)),
]

FALLBACKS = {
    "card": _entry(
        "card", "card_error", "Card payment failed",
        "The card payment could not be processed.",
        "Try again or choose another payment method.", True, True),
    "pix": _entry(
        "pix", "pix_error", "PIX payment failed",
        "The PIX charge could not be created.",
        "Try again or choose another payment method.", True, True),
    "boleto": _entry(
        "boleto", "boleto_error", "Boleto payment failed",
        "The boleto could not be processed.",
        "Try again or choose another payment method.", True, True),
}

NETWORK = _entry(
    "network", "network_error", "Connection problem",
    "The payment provider could not be reached.",
    "Check your connection and try again in a few minutes.", True, False)
NETWORK_KEYWORDS = ("503", "timeout", "timed out", "network", "connection")

GENERIC = _entry(
    "generic", "payment_error", "Payment failed",
    "The payment could not be processed.",
    "Try again in a few minutes.", True, True)

RULES = {"card": CARD_RULES, "pix": PIX_RULES, "boleto": BOLETO_RULES}


def classify_payment_error(message, method=None) -> dict:
    """Map a raw gateway/validation message to a classified error entry."""
    text = (message or "").lower()
    for keywords, entry in RULES.get(method, []):
        if any(k in text for k in keywords):
            return dict(entry, raw_message=message or "")
    if any(k in text for k in NETWORK_KEYWORDS):
        return dict(NETWORK, raw_message=message or "")
    fallback = FALLBACKS.get(method, GENERIC)
    return dict(fallback, raw_message=message or "")

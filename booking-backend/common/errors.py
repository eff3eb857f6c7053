# common/errors.py
"""
Error taxonomy shared by the booking engine.

Services raise these; API views translate them into HTTP responses through
``common.api_mixins.error_response``.
"""


class EngineError(Exception):
    """Base exception for booking engine operations"""
    code = "engine_error"
    http_status = 400

    def __init__(self, message="", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class InvalidRange(EngineError):
    """Raised when time bounds are malformed (start >= end, outside hours)"""
    code = "invalid_range"
    http_status = 400


class CapacityExceeded(EngineError):
    """Raised when the requested quantity is not available for a slot"""
    code = "capacity_exceeded"
    http_status = 409


class SlotNoLongerAvailable(EngineError):
    """Raised at checkout when a held slot was lost to a concurrent writer"""
    code = "slot_no_longer_available"
    http_status = 409


class InvalidState(EngineError):
    """Raised when an operation is not valid for the current order/reservation status"""
    code = "invalid_state"
    http_status = 409


class Unauthorized(EngineError):
    """Raised on a bad webhook signature or an insufficient role claim"""
    code = "unauthorized"
    http_status = 401


class Forbidden(Unauthorized):
    code = "forbidden"
    http_status = 403


class NotFound(EngineError):
    code = "not_found"
    http_status = 404


class GatewayError(EngineError):
    """Raised when a payment provider call fails at the network/HTTP level"""
    code = "gateway_error"
    http_status = 502


class AlreadyProcessed(EngineError):
    """Idempotent no-op: the target already reached a state this event cannot change"""
    code = "already_processed"
    http_status = 200


class MalformedPayload(EngineError):
    """Raised when an inbound callback body cannot be parsed"""
    code = "malformed_payload"
    http_status = 400


class InvalidCoupon(EngineError):
    """Raised when a coupon code cannot be applied to the cart"""
    code = "invalid_coupon"
    http_status = 400

# common/api_mixins.py
import logging

from rest_framework.response import Response

from common.errors import EngineError

logger = logging.getLogger(__name__)


def error_response(exc: EngineError, **extra) -> Response:
    """Translate an engine exception into the API's error body."""
    body = {"error": exc.code, "detail": exc.message}
    if exc.context:
        body.update(exc.context)
    body.update(extra)
    if exc.http_status >= 500:
        logger.error("engine error %s: %s", exc.code, exc.message)
    return Response(body, status=exc.http_status)


class EngineErrorMixin:
    """
    APIView mixin: any EngineError that escapes a handler becomes
    ``{"error": code, "detail": message}`` with the mapped status.
    """

    def handle_exception(self, exc):
        if isinstance(exc, EngineError):
            return error_response(exc)
        return super().handle_exception(exc)

# common/middleware.py
import logging

from django.http import HttpResponse, JsonResponse
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

from common.claims import resolve_claims
from common.errors import Unauthorized

logger = logging.getLogger(__name__)


AUTH_WHITELIST = (
    "/admin",
    "/api/v1/docs",
    "/api/v1/schema",
    "/api/v1/auth",              # token/refresh/verify
    "/api/v1/payments/webhook",  # gateway callbacks authenticate by signature
    "/static/",
)


def _with_cors(request, response):
    origin = request.headers.get("Origin")
    if origin:
        response["Access-Control-Allow-Origin"] = origin
        response["Access-Control-Allow-Credentials"] = "true"
    return response


class ClaimsMiddleware:
    """
    Authenticates the bearer token once and attaches an immutable
    ``request.claims`` (user id, role, branch) for downstream views.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if request.method == "OPTIONS":
            response = HttpResponse()
            origin = request.headers.get("Origin")
            response["Access-Control-Allow-Origin"] = origin or "*"
            if origin:
                response["Access-Control-Allow-Credentials"] = "true"
            response["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-C2P-Signature"
            response["Access-Control-Max-Age"] = "86400"
            return response

        if request.path.startswith(AUTH_WHITELIST) or not request.path.startswith("/api/"):
            request.claims = None
            return self.get_response(request)

        try:
            auth_result = JWTAuthentication().authenticate(request)
        except (InvalidToken, TokenError):
            return _with_cors(request, JsonResponse({"detail": "Invalid token"}, status=401))
        if not auth_result:
            return _with_cors(request, JsonResponse({"detail": "Authentication required"}, status=401))

        user, token = auth_result
        try:
            request.claims = resolve_claims(user, token.payload)
        except Unauthorized as exc:
            return _with_cors(request, JsonResponse({"detail": str(exc)}, status=401))
        request.user = user

        response = self.get_response(request)
        return _with_cors(request, response)

# common/claims.py
"""
Identity claims resolved once per request.

The engine receives an immutable ``Claims`` value and never writes identity
state back; role and branch come from the signed JWT when present, otherwise
from the user's profile.
"""
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ObjectDoesNotExist

from common.errors import Forbidden, Unauthorized
from common.roles import BookingRole, STAFF_ROLES


@dataclass(frozen=True)
class Claims:
    user_id: int
    role: str = BookingRole.CLIENT
    branch_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_super_admin(self) -> bool:
        return self.role == BookingRole.SUPER_ADMIN

    def require_staff(self, action: str = "this operation"):
        if not self.is_staff:
            raise Forbidden(f"Only administrators can perform {action}")


def _profile_for(user):
    try:
        return user.profile
    except ObjectDoesNotExist:
        return None


def resolve_claims(user, token_payload=None) -> Claims:
    """
    Build the claims for an authenticated user.

    Token claims win over the profile row; superusers always resolve to
    super_admin.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise Unauthorized("Authentication required")

    payload = token_payload or {}
    role = payload.get("role")
    branch_id = payload.get("branch_id")

    if role is None or "branch_id" not in payload:
        profile = _profile_for(user)
        if profile is not None:
            role = role or profile.role
            if "branch_id" not in payload:
                branch_id = profile.branch_id

    if getattr(user, "is_superuser", False):
        role = BookingRole.SUPER_ADMIN
    if role not in BookingRole.values:
        role = BookingRole.CLIENT

    try:
        branch_id = int(branch_id) if branch_id is not None else None
    except (TypeError, ValueError):
        branch_id = None

    return Claims(user_id=user.pk, role=role, branch_id=branch_id)


def claims_for(request) -> Claims:
    """Claims attached by ClaimsMiddleware, resolved lazily when absent (tests, session auth)."""
    claims = getattr(request, "claims", None)
    if isinstance(claims, Claims):
        return claims
    payload = getattr(request, "auth", None)
    token_payload = getattr(payload, "payload", None) if payload is not None else None
    if token_payload is None and isinstance(payload, dict):
        token_payload = payload
    return resolve_claims(getattr(request, "user", None), token_payload)

# common/permissions.py
from rest_framework.permissions import BasePermission

from common.claims import claims_for
from common.errors import Unauthorized


class IsStaffRole(BasePermission):
    """
    Allows access only to admin / super_admin claims.
    """
    message = "Only administrators can perform this operation"

    def has_permission(self, request, view):
        if not (request.user and request.user.is_authenticated):
            return False
        try:
            return claims_for(request).is_staff
        except Unauthorized:
            return False


def scope_to_branch(qs, claims, branch_path="branch_id"):
    """
    Restrict ``qs`` to the caller's branch claim.
    Super admins and callers without a branch see everything.
    """
    if claims.is_super_admin or claims.branch_id is None:
        return qs
    return qs.filter(**{branch_path: claims.branch_id})


class BranchScopedListMixin:
    """
    List views: ``get_queryset`` builds the base queryset in ``base_queryset``
    and gets it filtered by branch here.
    For models linked via another FK: set branch_path = "order__branch_id".
    """
    branch_path = "branch_id"

    def base_queryset(self):
        raise NotImplementedError

    def get_queryset(self):
        return scope_to_branch(self.base_queryset(), claims_for(self.request), self.branch_path)

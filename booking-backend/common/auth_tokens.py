from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework import exceptions

from branches.models import Branch, Profile
from common.roles import BookingRole


class BranchAwareTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Accepts username, password, and optional branch_code.
    Embeds role + branch in the resulting tokens.
    """

    def validate(self, attrs):
        # Let SimpleJWT authenticate the user (sets self.user)
        data = super().validate(attrs)

        request = self.context["request"]
        branch_code = request.data.get("branch_code")

        profile, _ = Profile.objects.get_or_create(user=self.user)
        role = BookingRole.SUPER_ADMIN if self.user.is_superuser else profile.role

        branch = profile.branch
        if branch_code:
            branch = Branch.objects.filter(code=branch_code, is_active=True).first()
            if not branch:
                raise exceptions.AuthenticationFailed("Invalid branch")
            # Only super admins may bind a session to a branch other than their own
            if role != BookingRole.SUPER_ADMIN and profile.branch_id not in (None, branch.id):
                raise exceptions.AuthenticationFailed("User does not belong to this branch")

        # Build fresh tokens WITH custom claims (ignore the ones created by super())
        refresh = self.get_token(self.user)
        refresh["role"] = role
        refresh["branch_id"] = branch.id if branch else None

        data["refresh"] = str(refresh)
        data["access"] = str(refresh.access_token)
        data["branch"] = {"id": branch.id, "code": branch.code} if branch else None
        data["role"] = role
        return data

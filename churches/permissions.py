"""
Role gates for the authenticated parts of the API.
"""

from rest_framework.permissions import BasePermission

from .models import Profile, UserRole


def get_role(user) -> str:
    if user is None or not user.is_authenticated:
        return ''
    role = Profile.objects.filter(user=user).values_list('role', flat=True).first()
    return role or UserRole.USER


class IsSuperAdmin(BasePermission):
    """Only users whose profile role is super_admin."""

    message = 'Super admin access required.'

    def has_permission(self, request, view):
        return get_role(request.user) == UserRole.SUPER_ADMIN


"""
Identity gateway: accounts, sessions and profile roles on top of
django.contrib.auth and DRF token authentication.
"""

import logging
from typing import Callable, Optional

from django.contrib.auth import authenticate, get_user_model, login, logout
from django.contrib.auth.password_validation import validate_password
from django.contrib.auth.signals import user_logged_in, user_logged_out
from django.core.exceptions import ValidationError
from django.db import transaction
from rest_framework.authtoken.models import Token

from .exceptions import (
    AuthenticationRequired,
    ChurchPermissionDenied,
    RegistrationValidationError,
)
from .models import Profile, UserRole

logger = logging.getLogger(__name__)


def _django_request(request):
    # DRF wraps the HttpRequest; auth.login/logout want the original
    return getattr(request, '_request', request)


class IdentityGateway:
    """
    Built once in ChurchesConfig.ready() and handed to the workflows
    instead of being looked up from module globals.
    """

    def __init__(self):
        self.User = get_user_model()

    def sign_up(self, email: str, password: str, display_name: str = ''):
        email = (email or '').strip().lower()
        if not email or not password:
            raise RegistrationValidationError('Email and password are required.')

        if self.User.objects.filter(username=email).exists():
            raise RegistrationValidationError('An account with this email already exists.')

        try:
            validate_password(password)
        except ValidationError as e:
            raise RegistrationValidationError(' '.join(e.messages))

        with transaction.atomic():
            user = self.User.objects.create_user(username=email, email=email, password=password)
            profile = self.get_profile(user)
            if profile is not None and display_name:
                profile.display_name = display_name.strip()
                profile.save(update_fields=['display_name', 'updated_at'])

        logger.info(f"Created account for user {user.pk}")
        return user

    def sign_in(self, request, email: str, password: str):
        """Start a session and return (user, API token key) for the account."""
        user = authenticate(
            _django_request(request),
            username=(email or '').strip().lower(),
            password=password
        )
        if user is None:
            raise AuthenticationRequired('Invalid email or password.')

        login(_django_request(request), user)
        token, _ = Token.objects.get_or_create(user=user)
        return user, token.key

    def sign_out(self, request) -> None:
        user = self.get_current_user(request)
        if user is not None:
            Token.objects.filter(user=user).delete()
        logout(_django_request(request))

    def get_current_user(self, request):
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            return None
        return user

    def require_user(self, request):
        user = self.get_current_user(request)
        if user is None:
            raise AuthenticationRequired()
        return user

    def get_profile(self, user) -> Optional[Profile]:
        if user is None:
            return None
        try:
            return Profile.objects.get(user=user)
        except Profile.DoesNotExist:
            return None

    def update_role(self, user_id, role: str) -> Profile:
        """
        Set a user's role. Idempotent; refuses to hand out super_admin.
        """
        if role == UserRole.SUPER_ADMIN:
            raise ChurchPermissionDenied('Super admin access cannot be granted here.')
        if role not in UserRole.values:
            raise RegistrationValidationError(f"Unknown role: {role}")

        profile, _ = Profile.objects.get_or_create(user_id=user_id)
        if profile.role == role:
            return profile

        # A super admin registering a church keeps their role
        if profile.role == UserRole.SUPER_ADMIN:
            logger.info(f"Leaving super admin {user_id} role unchanged (requested {role})")
            return profile

        profile.role = role
        profile.save(update_fields=['role', 'updated_at'])
        logger.info(f"Updated role for user {user_id} to {role}")
        return profile

    def on_auth_change(self, callback: Callable) -> Callable[[], None]:
        """
        Call `callback(user)` on every sign in and `callback(None)` on every
        sign out. Returns a function that removes the subscription.
        """
        def _signed_in(sender, request, user, **kwargs):
            callback(user)

        def _signed_out(sender, request, user, **kwargs):
            callback(None)

        user_logged_in.connect(_signed_in, weak=False)
        user_logged_out.connect(_signed_out, weak=False)

        def unsubscribe():
            user_logged_in.disconnect(_signed_in)
            user_logged_out.disconnect(_signed_out)

        return unsubscribe

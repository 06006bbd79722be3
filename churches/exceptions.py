"""
Error taxonomy for the church directory.

Every error carries a short sentence that is safe to show to end users.
Technical detail stays in the logs.
"""

import logging

from django.db.models import ProtectedError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = 'Something went wrong. Please try again.'


class ChurchFinderError(Exception):
    """Base class for errors that are surfaced to the user."""

    default_message = GENERIC_ERROR_MESSAGE
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, user_message=None, **context):
        self.user_message = user_message or self.default_message
        self.context = context
        super().__init__(self.user_message)


class RegistrationValidationError(ChurchFinderError):
    default_message = 'Please fill in all required fields.'
    status_code = status.HTTP_400_BAD_REQUEST


class FilterValidationError(ChurchFinderError):
    default_message = 'Invalid filter value.'
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationRequired(ChurchFinderError):
    default_message = 'You must be signed in to do that. Please sign in again.'
    status_code = status.HTTP_401_UNAUTHORIZED


class ChurchPermissionDenied(ChurchFinderError):
    default_message = 'You do not have permission to do that.'
    status_code = status.HTTP_403_FORBIDDEN


class ChurchNotFound(ChurchFinderError):
    default_message = 'Church not found.'
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStatusTransition(ChurchFinderError):
    default_message = 'This church has already been reviewed.'
    status_code = status.HTTP_409_CONFLICT


class GeocodingError(ChurchFinderError):
    """Custom exception for geocoding-related errors."""
    default_message = 'Failed to find location. Please try again.'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class LocationNotFound(GeocodingError):
    default_message = 'Address not found. Please check the address and try again.'
    status_code = status.HTTP_400_BAD_REQUEST


class GeocodingUnavailable(GeocodingError):
    default_message = 'The location service is unavailable right now. Please try again later.'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StorageUploadError(ChurchFinderError):
    default_message = 'Failed to upload photo. Please try again.'
    status_code = status.HTTP_502_BAD_GATEWAY


class AssistantError(ChurchFinderError):
    default_message = 'Sorry, I am having trouble connecting to the knowledge base right now.'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def api_exception_handler(exc, context):
    """
    DRF exception handler that renders ChurchFinderError as {"error": message}.
    """
    if isinstance(exc, ChurchFinderError):
        return Response({'error': exc.user_message}, status=exc.status_code)

    if isinstance(exc, ProtectedError):
        return Response(
            {'error': 'This church still has events. Delete its events first.'},
            status=status.HTTP_409_CONFLICT
        )

    return exception_handler(exc, context)

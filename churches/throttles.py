"""
Custom throttle classes for the endpoints that call out to other services.
"""

from rest_framework.throttling import AnonRateThrottle, UserRateThrottle


class GeocodingRateThrottle(AnonRateThrottle):
    """
    Throttle for the geocoding endpoint.
    Nominatim asks for no more than one request per second per client.
    """
    scope = 'geocoding'


class AssistantRateThrottle(UserRateThrottle):
    """
    Throttle for the faith assistant. Keyed by user when signed in,
    by IP otherwise.
    """
    scope = 'assistant'


class RegistrationRateThrottle(UserRateThrottle):
    """
    Throttle for account sign ups and registration submissions, which
    geocode and upload on every call.
    """
    scope = 'registration'

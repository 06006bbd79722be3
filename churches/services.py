"""
Gateways to the services the directory depends on: geocoding, image
storage, the faith assistant and operator email.
"""

import hashlib
import logging
import os
import time
import uuid
from typing import Dict, Optional

import requests
from django.conf import settings
from django.core.cache import cache
from django.core.files.storage import default_storage
from django.core.mail import send_mail
from openai import OpenAI, OpenAIError

from .exceptions import (
    GeocodingUnavailable,
    LocationNotFound,
    StorageUploadError,
)

logger = logging.getLogger(__name__)


class GeocodingService:
    """
    Service class for geocoding addresses using the OpenStreetMap Nominatim API.
    Raises LocationNotFound when the address has no match and
    GeocodingUnavailable when the service cannot be reached.
    """

    # Default configuration
    DEFAULT_TIMEOUT = 10  # seconds
    DEFAULT_RETRY_DELAY = 1  # seconds
    CACHE_TIMEOUT = 86400 * 7  # 7 days in seconds

    def __init__(self, base_url: Optional[str] = None, user_agent: Optional[str] = None,
                 retries: Optional[int] = None, session: Optional[requests.Session] = None):
        """
        Initialize the geocoding service.

        Args:
            base_url: Search endpoint. Defaults to settings.GEOCODING_BASE_URL.
            user_agent: Identifying User-Agent, required by Nominatim.
            retries: Extra attempts after a rate limit or timeout (default 0).
            session: requests.Session to reuse; one is created when omitted.
        """
        self.base_url = base_url or settings.GEOCODING_BASE_URL
        self.retries = retries if retries is not None else getattr(settings, 'GEOCODING_RETRIES', 0)

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': user_agent or settings.GEOCODING_USER_AGENT,
        })

    def geocode(self, address: str, timeout: int = None, use_cache: bool = True) -> Dict:
        """
        Geocode a single address to coordinates.

        Args:
            address: The address string to geocode
            timeout: Request timeout in seconds
            use_cache: Whether to use cached results

        Returns:
            Dict with keys 'lat', 'lng' and 'display_name'

        Raises:
            LocationNotFound: If the address is empty or has no match
            GeocodingUnavailable: If the service could not be reached
        """
        if not address or not address.strip():
            raise LocationNotFound('Please enter an address.')

        address = address.strip()
        timeout = timeout or self.DEFAULT_TIMEOUT

        if use_cache:
            cached_result = self._get_cached_result(address)
            if cached_result:
                logger.info(f"Using cached geocoding result for: {address}")
                return cached_result

        params = {
            'q': address,
            'format': 'json',
            'limit': 1,
        }

        last_error = None

        for attempt in range(self.retries + 1):
            try:
                logger.info(f"Geocoding attempt {attempt + 1}/{self.retries + 1} for: {address}")

                response = self.session.get(self.base_url, params=params, timeout=timeout)
                response.raise_for_status()
                data = response.json()

            except requests.exceptions.Timeout as e:
                last_error = f"Request timeout: {str(e)}"
                logger.warning(f"Geocoding timeout for {address}: {last_error}")

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 'unknown'
                last_error = f"HTTP error {status_code}: {str(e)}"
                if status_code == 429:
                    logger.warning(f"Rate limit hit for {address}, attempt {attempt + 1}")
                else:
                    logger.error(f"HTTP error geocoding {address}: {last_error}")
                    break

            except requests.exceptions.RequestException as e:
                last_error = f"Request error: {str(e)}"
                logger.error(f"Request error geocoding {address}: {last_error}")
                break

            except ValueError as e:
                last_error = f"Response parsing error: {str(e)}"
                logger.error(f"Response parsing error for {address}: {last_error}")
                break

            else:
                result = self._parse_geocoding_response(data, address)
                if use_cache:
                    self._cache_result(address, result)
                return result

            # Wait before retry (except for the last attempt)
            if attempt < self.retries:
                time.sleep(self.DEFAULT_RETRY_DELAY * (attempt + 1))

        logger.error(f"Failed to geocode {address}: {last_error}")
        raise GeocodingUnavailable(address=address, detail=last_error)

    def geocode_address_components(self, street_address: str, city: str,
                                   state: str, zip_code: str) -> Dict:
        """Geocode an address given as separate form fields."""
        return self.geocode(compose_address(street_address, city, state, zip_code))

    def _parse_geocoding_response(self, data, original_address: str) -> Dict:
        """
        Parse the Nominatim search response (a JSON list of places).
        """
        if not data:
            logger.info(f"No geocoding match for: {original_address}")
            raise LocationNotFound(address=original_address)

        try:
            place = data[0]
            latitude = float(place['lat'])
            longitude = float(place['lon'])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected geocoding payload for {original_address}: {e}")
            raise GeocodingUnavailable(address=original_address, detail=str(e))

        if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
            logger.error(f"Invalid coordinate ranges for {original_address}: {latitude}, {longitude}")
            raise LocationNotFound(address=original_address)

        return {
            'lat': latitude,
            'lng': longitude,
            'display_name': place.get('display_name') or original_address,
        }

    def _get_cache_key(self, address: str) -> str:
        content = address.lower().strip()
        hash_object = hashlib.md5(content.encode())
        return f"geocoding:{hash_object.hexdigest()}"

    def _get_cached_result(self, address: str) -> Optional[Dict]:
        return cache.get(self._get_cache_key(address))

    def _cache_result(self, address: str, result: Dict) -> None:
        cache.set(self._get_cache_key(address), result, self.CACHE_TIMEOUT)


def compose_address(street_address: str, city: str, state: str, zip_code: str) -> str:
    """'123 Main St, Los Angeles, CA 90001'"""
    return f"{street_address.strip()}, {city.strip()}, {state.strip()} {zip_code.strip()}".strip()


class StorageService:
    """
    Public image storage on top of Django's storage API.
    Uploading to a path that already exists replaces the file.
    """

    CHURCH_IMAGES_BUCKET = 'church-images'
    EVENT_IMAGES_BUCKET = 'event-images'

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    def upload(self, bucket: str, path: str, file) -> str:
        name = f"{bucket}/{path}"
        try:
            if self.storage.exists(name):
                self.storage.delete(name)
            saved_name = self.storage.save(name, file)
        except Exception as e:
            logger.error(
                f"Upload to {name} failed: {e}",
                extra={'operation': 'storage.upload', 'bucket': bucket, 'path': path}
            )
            raise StorageUploadError(bucket=bucket, path=path)

        logger.info(f"Uploaded {saved_name}")
        return saved_name

    def get_public_url(self, bucket: str, path: str) -> str:
        return self.storage.url(f"{bucket}/{path}")

    def upload_church_image(self, file, church_id, kind: str = 'main') -> str:
        """Store a church photo as church-images/<church_id>/<kind>.<ext>; returns its URL."""
        path = f"{church_id}/{kind}{_extension(file)}"
        self.upload(self.CHURCH_IMAGES_BUCKET, path, _rewind(file))
        return self.get_public_url(self.CHURCH_IMAGES_BUCKET, path)

    def upload_event_image(self, file, event_id) -> str:
        path = f"{event_id}/image{_extension(file)}"
        self.upload(self.EVENT_IMAGES_BUCKET, path, _rewind(file))
        return self.get_public_url(self.EVENT_IMAGES_BUCKET, path)

    @staticmethod
    def temporary_id() -> str:
        return f"temp-{uuid.uuid4().hex}"


def _extension(file) -> str:
    return os.path.splitext(getattr(file, 'name', '') or '')[1].lower()


def _rewind(file):
    # The registration flow uploads the same file twice
    if hasattr(file, 'seek'):
        file.seek(0)
    return file


class AssistantService:
    """
    Stateless question/answer client for the faith assistant.
    Conversation history lives with the caller and is never sent back.
    """

    PROMPT = (
        "You are a helpful, knowledgeable assistant for an Ethiopian Orthodox Church Finder app. "
        "Answer the following question about the Ethiopian Orthodox Tewahedo Church faith, "
        "traditions, holidays, or etiquette briefly and respectfully (max 100 words).\n\n"
        "Question: {question}"
    )
    EMPTY_ANSWER = "I apologize, I couldn't generate an answer at this moment."
    FAILURE_ANSWER = "Sorry, I am having trouble connecting to the knowledge base right now."

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.client = client

    def _get_client(self):
        if self.client is None:
            self.client = OpenAI(api_key=self.api_key)
        return self.client

    def ask(self, question: str) -> str:
        if not self.api_key and self.client is None:
            logger.warning("Assistant asked a question but OPENAI_API_KEY is not configured")
            return self.FAILURE_ANSWER

        try:
            resp = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{'role': 'user', 'content': self.PROMPT.format(question=question)}],
                temperature=0.4,
            )
        except OpenAIError as e:
            logger.error(f"Assistant API error: {e}", extra={'operation': 'assistant.ask'})
            return self.FAILURE_ANSWER

        if not resp.choices:
            return self.EMPTY_ANSWER
        answer = (resp.choices[0].message.content or '').strip()
        return answer or self.EMPTY_ANSWER


class RegistrationNotifier:
    """Emails operators when a church registration is waiting for review."""

    def __init__(self, recipients=None):
        self.recipients = (
            recipients if recipients is not None
            else getattr(settings, 'CHURCH_REGISTRATION_NOTIFY_EMAILS', [])
        )

    def notify(self, church) -> bool:
        if church.status != 'pending':
            return False

        if not self.recipients:
            logger.info(f"No registration recipients configured; skipping notice for church {church.pk}")
            return False

        body = (
            "A new church has been registered and is pending approval:\n\n"
            f"Name: {church.name}\n"
            f"Address: {church.full_address}\n"
            f"Phone: {church.phone or 'N/A'}\n"
            f"Submitted: {church.created_at:%Y-%m-%d %H:%M %Z}\n\n"
            "Please review and approve or reject this registration in the admin dashboard:\n"
            f"{settings.APP_URL}/api/admin/churches/?status=pending\n"
        )
        send_mail(
            subject=f"New Church Registration: {church.name}",
            message=body,
            from_email=None,
            recipient_list=self.recipients,
        )
        return True

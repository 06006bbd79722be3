import json
import os
import tempfile
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import Mock, patch

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.http import QueryDict
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from openai import OpenAIError
from rest_framework.test import APIClient

from .apps import get_gateways
from .approval import approve_church, reject_church
from .exceptions import (
    AuthenticationRequired,
    ChurchFinderError,
    ChurchNotFound,
    ChurchPermissionDenied,
    FilterValidationError,
    GeocodingUnavailable,
    InvalidStatusTransition,
    LocationNotFound,
    RegistrationValidationError,
    StorageUploadError,
)
from .identity import IdentityGateway
from .models import (
    Church,
    ChurchAdmin,
    ChurchEvent,
    ChurchStatus,
    ClergyMember,
    FollowedChurch,
    Profile,
    UserRole,
)
from .registration import (
    STEP_ADMIN_INFO,
    STEP_CHURCH_DETAILS,
    STEP_CHURCH_INFO,
    STEP_SUBMITTED,
    RegistrationWorkflow,
    church_to_form_data,
    format_time,
    is_church_admin,
    parse_time,
    transform_schedule,
    update_church_listing,
)
from .search import (
    ChurchFilters,
    EventFilters,
    filter_churches,
    filter_events,
    haversine_miles,
    parse_user_location,
    rank_churches,
    search_churches,
)
from .serializers import ChurchListSerializer, ChurchSerializer
from .services import AssistantService, GeocodingService, RegistrationNotifier, StorageService

User = get_user_model()

LAX = (34.0522, -118.2437)
ST_MARY = (33.9088, -118.3712)


def make_church(**overrides):
    data = {
        'name': 'St. Mary Ethiopian Orthodox Tewahedo Church',
        'street_address': '5355 W 135th St',
        'city': 'Hawthorne',
        'state': 'CA',
        'zip_code': '90250',
        'phone': '(310) 675-0632',
        'latitude': Decimal('33.9088'),
        'longitude': Decimal('-118.3712'),
        'services': ['Sunday Service', 'Bible Study'],
        'service_schedule': [
            {'day': 'Sunday', 'time': '4:00 AM - 11:00 AM', 'description': 'Divine Liturgy (Kidase)'},
        ],
        'languages': ['Amharic', "Ge'ez"],
        'status': ChurchStatus.APPROVED,
        'is_verified': True,
    }
    data.update(overrides)
    return Church(**data)


def create_church(**overrides):
    church = make_church(**overrides)
    church.save()
    return church


def make_user(email='member@example.com', role=None):
    user = User.objects.create_user(username=email, email=email, password='Str0ng-Passw0rd!')
    if role is not None:
        Profile.objects.filter(user=user).update(role=role)
    return user


def registration_form(**overrides):
    form = {
        'admin_name': 'Abebe Kebede',
        'admin_email': 'abebe@example.com',
        'phone': '(310) 555-0100',
        'name': 'Kidist Selassie Church',
        'street_address': '1 World Way',
        'city': 'Los Angeles',
        'state': 'CA',
        'zip_code': '90045',
        'description': 'A new parish near the airport.',
        'service_schedule': [
            {'day': 'Sunday', 'start_time': '09:00', 'end_time': '11:00',
             'description': '', 'repeat': 'Every Week'},
        ],
        'services': {'Sunday Service': True, 'Bible Study': False},
        'languages': {'Amharic': True, 'English': False},
        'features': {'has_parking': True},
    }
    form.update(overrides)
    return form


class DistanceTest(SimpleTestCase):
    """
    Test suite for the haversine distance calculation.
    """

    def test_distance_is_symmetric(self):
        self.assertAlmostEqual(
            haversine_miles(*ST_MARY, *LAX),
            haversine_miles(*LAX, *ST_MARY)
        )

    def test_distance_to_self_is_zero(self):
        self.assertEqual(haversine_miles(*LAX, *LAX), 0)

    def test_los_angeles_example(self):
        distance = haversine_miles(*ST_MARY, *LAX)
        self.assertAlmostEqual(distance, 12.3, delta=0.1)

    def test_antipodal_points_do_not_fail(self):
        distance = haversine_miles(0, 0, 0, 180)
        self.assertAlmostEqual(distance, 3958.8 * 3.141592653589793, places=3)

    def test_distance_to_point_method(self):
        church = make_church()
        self.assertAlmostEqual(church.distance_to_point(*LAX), haversine_miles(*ST_MARY, *LAX))
        self.assertIsNone(make_church(latitude=None, longitude=None).distance_to_point(*LAX))


class ChurchRankingTest(SimpleTestCase):
    """
    Test suite for distance ranking of church lists.
    """

    def test_rank_sorts_by_distance(self):
        far = make_church(name='Far', latitude=Decimal('34.2'), longitude=Decimal('-118.6'))
        near = make_church(name='Near', latitude=Decimal('34.05'), longitude=Decimal('-118.25'))
        middle = make_church(name='Middle')

        ranked = rank_churches([far, near, middle], LAX)

        self.assertEqual([c.name for c in ranked], ['Near', 'Middle', 'Far'])
        for first, second in zip(ranked, ranked[1:]):
            self.assertLessEqual(first.distance, second.distance)

    def test_churches_without_distance_keep_their_place(self):
        unknown_a = make_church(name='Unknown A', latitude=None, longitude=None)
        far = make_church(name='Far', latitude=Decimal('34.2'), longitude=Decimal('-118.6'))
        near = make_church(name='Near', latitude=Decimal('34.05'), longitude=Decimal('-118.25'))
        unknown_b = make_church(name='Unknown B', latitude=None, longitude=None)

        ranked = rank_churches([unknown_a, far, near, unknown_b], LAX)

        self.assertEqual([c.name for c in ranked], ['Unknown A', 'Near', 'Far', 'Unknown B'])
        self.assertIsNone(ranked[0].distance)
        self.assertIsNone(ranked[3].distance)

    def test_ranking_uses_church_distance(self):
        church = make_church()

        ranked = rank_churches([church], LAX)

        self.assertEqual(ranked[0].distance, church.distance_to_point(*LAX))

    def test_without_user_location_order_is_unchanged(self):
        churches = [make_church(name=name) for name in ['C', 'A', 'B']]

        ranked = rank_churches(churches, None)

        self.assertEqual([c.name for c in ranked], ['C', 'A', 'B'])
        self.assertTrue(all(c.distance is None for c in ranked))

    def test_equal_distances_are_stable(self):
        first = make_church(name='First')
        second = make_church(name='Second')

        ranked = rank_churches([first, second], LAX)

        self.assertEqual([c.name for c in ranked], ['First', 'Second'])


class ChurchFilterTest(SimpleTestCase):
    """
    Test suite for the church filter predicate.
    """

    def setUp(self):
        self.st_mary = make_church()
        self.tekle = make_church(
            name='Tekle Haimanot Church', city='Los Angeles', zip_code='90026',
            latitude=Decimal('34.0728'), longitude=Decimal('-118.2754'),
            services=['Wedding Ceremonies'],
        )
        self.unlocated = make_church(
            name='Holy Trinity', city='Pasadena', zip_code='91101',
            latitude=None, longitude=None, services=[],
        )
        self.churches = [self.st_mary, self.tekle, self.unlocated]

    def test_empty_filters_are_a_no_op(self):
        result = search_churches(self.churches, ChurchFilters(), None)
        self.assertEqual(result, self.churches)

    def test_filtering_never_adds(self):
        filters = ChurchFilters(query='church', services={'Bible Study': True})
        result = filter_churches(self.churches, filters)
        for church in result:
            self.assertIn(church, self.churches)
        self.assertEqual(result, [self.st_mary])

    def test_query_matches_name_city_and_zip(self):
        self.assertEqual(filter_churches(self.churches, ChurchFilters(query='TEKLE')), [self.tekle])
        self.assertEqual(filter_churches(self.churches, ChurchFilters(query='pasadena')), [self.unlocated])
        self.assertEqual(filter_churches(self.churches, ChurchFilters(query='90250')), [self.st_mary])

    def test_location_matches_city_and_zip_only(self):
        self.assertEqual(filter_churches(self.churches, ChurchFilters(location='hawthorne')), [self.st_mary])
        self.assertEqual(filter_churches(self.churches, ChurchFilters(location='St. Mary')), [])

    def test_services_match_any_checked_service(self):
        filters = ChurchFilters(services={'Bible Study': True, 'Wedding Ceremonies': True, 'Youth Programs': False})
        self.assertEqual(filter_churches(self.churches, filters), [self.st_mary, self.tekle])

    def test_unchecked_services_are_ignored(self):
        filters = ChurchFilters(services={'Bible Study': False})
        self.assertEqual(filter_churches(self.churches, filters), self.churches)

    def test_max_distance_excludes_far_churches(self):
        excluded = search_churches([make_church()], ChurchFilters(max_distance=10), LAX)
        included = search_churches([make_church()], ChurchFilters(max_distance=25), LAX)

        self.assertEqual(excluded, [])
        self.assertEqual(len(included), 1)

    def test_church_without_coordinates_passes_distance_filter(self):
        result = search_churches([self.unlocated], ChurchFilters(max_distance=5), LAX)
        self.assertEqual(result, [self.unlocated])

    def test_distance_ignored_without_user_location(self):
        result = search_churches([self.st_mary], ChurchFilters(max_distance=5), None)
        self.assertEqual(result, [self.st_mary])

    def test_invalid_distance_rejected(self):
        with self.assertRaises(FilterValidationError):
            ChurchFilters(max_distance=7)
        with self.assertRaises(FilterValidationError):
            ChurchFilters.from_query_params(QueryDict('distance=far'))

    def test_filters_from_query_params(self):
        filters = ChurchFilters.from_query_params(
            QueryDict('q=mary&location=90250&distance=50&services=Bible Study,Youth Programs&services=Baptism Services')
        )
        self.assertEqual(filters.query, 'mary')
        self.assertEqual(filters.location, '90250')
        self.assertEqual(filters.max_distance, 50)
        self.assertEqual(
            sorted(filters.active_services),
            ['Baptism Services', 'Bible Study', 'Youth Programs']
        )

    def test_parse_user_location(self):
        self.assertEqual(parse_user_location(QueryDict('lat=34.0522&lng=-118.2437')), LAX)
        self.assertIsNone(parse_user_location(QueryDict('lat=34.0522')))
        with self.assertRaises(FilterValidationError):
            parse_user_location(QueryDict('lat=north&lng=-118'))
        with self.assertRaises(FilterValidationError):
            parse_user_location(QueryDict('lat=95&lng=-118'))


class EventFilterTest(SimpleTestCase):
    """
    Test suite for the event filter predicate.
    """

    def setUp(self):
        self.now = timezone.now()

    def make_event(self, days, **overrides):
        data = {
            'title': 'Meskel Celebration',
            'type': 'Holiday',
            'date': self.now + timedelta(days=days),
            'location': '5355 W 135th St, Hawthorne, CA',
        }
        data.update(overrides)
        return ChurchEvent(**data)

    def test_event_exactly_seven_days_out_is_this_week(self):
        event = self.make_event(7)
        self.assertEqual(filter_events([event], EventFilters(date_range='thisWeek'), now=self.now), [event])

    def test_event_eight_days_out_is_this_month_only(self):
        event = self.make_event(8)
        self.assertEqual(filter_events([event], EventFilters(date_range='thisWeek'), now=self.now), [])
        self.assertEqual(filter_events([event], EventFilters(date_range='thisMonth'), now=self.now), [event])

    def test_this_month_ends_after_thirty_days(self):
        self.assertEqual(
            filter_events([self.make_event(31)], EventFilters(date_range='thisMonth'), now=self.now),
            []
        )

    def test_past_events_excluded_from_windows(self):
        past = self.make_event(-1)
        self.assertEqual(filter_events([past], EventFilters(date_range='thisWeek'), now=self.now), [])
        self.assertEqual(filter_events([past], EventFilters(date_range='upcoming'), now=self.now), [past])

    def test_location_and_type_filters(self):
        holiday = self.make_event(3)
        picnic = self.make_event(3, title='Picnic', type='Community', location='Kenneth Hahn Park, Los Angeles')

        by_location = filter_events([holiday, picnic], EventFilters(location='hahn park'), now=self.now)
        by_type = filter_events([holiday, picnic], EventFilters(types={'Holiday': True, 'Worship': True}), now=self.now)

        self.assertEqual(by_location, [picnic])
        self.assertEqual(by_type, [holiday])

    def test_invalid_date_range_rejected(self):
        with self.assertRaises(FilterValidationError):
            EventFilters(date_range='nextYear')


class ChurchModelTest(TestCase):
    """
    Test suite for the Church model functionality.
    """

    def test_church_str_representation(self):
        church = create_church()
        self.assertEqual(str(church), 'St. Mary Ethiopian Orthodox Tewahedo Church - Hawthorne, CA')

    def test_required_field_validation(self):
        with self.assertRaises(ValidationError):
            create_church(name='   ')
        with self.assertRaises(ValidationError):
            create_church(city='')

    def test_coordinate_pair_validation(self):
        with self.assertRaises(ValidationError):
            create_church(longitude=None)

    def test_verified_requires_approved(self):
        with self.assertRaises(ValidationError):
            create_church(status=ChurchStatus.PENDING, is_verified=True)

    def test_properties(self):
        church = create_church(donation_zelle='donate@stmaryla.org', has_parking=True)

        self.assertEqual(church.full_address, '5355 W 135th St, Hawthorne, CA, 90250')
        self.assertEqual(church.geocoding_address, '5355 W 135th St, Hawthorne, CA 90250')
        self.assertEqual(church.coordinates, ST_MARY)
        self.assertTrue(church.features['has_parking'])
        self.assertEqual(church.donation_info, {'zelle': 'donate@stmaryla.org'})

    def test_set_coordinates_method(self):
        church = make_church(latitude=None, longitude=None)
        church.set_coordinates(34.05223456789, -118.2437)
        self.assertEqual(church.latitude, Decimal('34.0522346'))

        with self.assertRaises(ValueError):
            church.set_coordinates(91, 0)

    def test_event_copies_church_name(self):
        church = create_church()
        event = ChurchEvent.objects.create(
            title='Meskel Celebration', type='Holiday', date=timezone.now(), church=church
        )
        self.assertEqual(event.church_name, church.name)

    def test_church_with_events_cannot_be_deleted(self):
        from django.db.models import ProtectedError

        church = create_church()
        ChurchEvent.objects.create(title='Timkat', type='Holiday', date=timezone.now(), church=church)
        with self.assertRaises(ProtectedError):
            church.delete()

    def test_profile_created_for_new_user(self):
        user = make_user()
        self.assertEqual(user.profile.role, UserRole.USER)


class GeocodingServiceTest(TestCase):
    """
    Test suite for the GeocodingService functionality.
    """

    def setUp(self):
        self.service = GeocodingService(base_url='https://geocoder.test/search', user_agent='tests', retries=0)
        # Clear cache before each test to avoid interference
        cache.clear()

        self.successful_response = [
            {'lat': '33.9088', 'lon': '-118.3712', 'display_name': '5355 W 135th St, Hawthorne, CA'}
        ]

    def mock_response(self, payload):
        response = Mock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        return response

    @patch('churches.services.requests.Session.get')
    def test_successful_geocoding(self, mock_get):
        mock_get.return_value = self.mock_response(self.successful_response)

        result = self.service.geocode('5355 W 135th St, Hawthorne, CA 90250')

        self.assertEqual(result['lat'], 33.9088)
        self.assertEqual(result['lng'], -118.3712)
        self.assertEqual(result['display_name'], '5355 W 135th St, Hawthorne, CA')
        call_args = mock_get.call_args
        self.assertEqual(call_args[0][0], 'https://geocoder.test/search')
        self.assertEqual(call_args[1]['params']['q'], '5355 W 135th St, Hawthorne, CA 90250')
        self.assertEqual(call_args[1]['params']['limit'], 1)

    @patch('churches.services.requests.Session.get')
    def test_geocoding_no_results(self, mock_get):
        mock_get.return_value = self.mock_response([])

        with self.assertRaises(LocationNotFound) as ctx:
            self.service.geocode('Nowhere Street')
        self.assertEqual(
            ctx.exception.user_message,
            'Address not found. Please check the address and try again.'
        )

    def test_empty_address_handling(self):
        with self.assertRaises(LocationNotFound):
            self.service.geocode('   ')

    @patch('churches.services.requests.Session.get')
    def test_geocoding_http_error(self, mock_get):
        response = self.mock_response(None)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=Mock(status_code=500))
        mock_get.return_value = response

        with self.assertRaises(GeocodingUnavailable):
            self.service.geocode('5355 W 135th St')
        self.assertEqual(mock_get.call_count, 1)

    @patch('churches.services.requests.Session.get')
    def test_geocoding_timeout_without_retries(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout('timed out')

        with self.assertRaises(GeocodingUnavailable):
            self.service.geocode('5355 W 135th St')
        self.assertEqual(mock_get.call_count, 1)

    @patch('churches.services.time.sleep')
    @patch('churches.services.requests.Session.get')
    def test_geocoding_rate_limit_with_retry(self, mock_get, mock_sleep):
        limited = self.mock_response(None)
        limited.raise_for_status.side_effect = requests.exceptions.HTTPError(response=Mock(status_code=429))
        mock_get.side_effect = [limited, self.mock_response(self.successful_response)]

        service = GeocodingService(base_url='https://geocoder.test/search', user_agent='tests', retries=1)
        result = service.geocode('5355 W 135th St')

        self.assertEqual(result['lat'], 33.9088)
        self.assertEqual(mock_get.call_count, 2)
        mock_sleep.assert_called_once()

    @patch('churches.services.requests.Session.get')
    def test_geocoding_invalid_coordinates(self, mock_get):
        mock_get.return_value = self.mock_response([{'lat': '123.0', 'lon': '10.0'}])

        with self.assertRaises(LocationNotFound):
            self.service.geocode('Somewhere')

    @patch('churches.services.requests.Session.get')
    def test_caching_functionality(self, mock_get):
        mock_get.return_value = self.mock_response(self.successful_response)

        first = self.service.geocode('5355 W 135th St')
        second = self.service.geocode('  5355 w 135TH st ')

        self.assertEqual(first, second)
        self.assertEqual(mock_get.call_count, 1)

    @patch('churches.services.requests.Session.get')
    def test_geocode_address_components(self, mock_get):
        mock_get.return_value = self.mock_response(self.successful_response)

        self.service.geocode_address_components('5355 W 135th St', 'Hawthorne', 'CA', '90250')

        self.assertEqual(mock_get.call_args[1]['params']['q'], '5355 W 135th St, Hawthorne, CA 90250')


class StorageServiceTest(SimpleTestCase):
    """
    Test suite for image uploads.
    """

    def setUp(self):
        self.backend = Mock()
        self.backend.exists.return_value = False
        self.backend.save.side_effect = lambda name, content: name
        self.backend.url.side_effect = lambda name: f"/media/{name}"
        self.service = StorageService(storage=self.backend)

    def test_church_image_path(self):
        url = self.service.upload_church_image(SimpleUploadedFile('Front.JPG', b'img'), 12)

        self.assertEqual(url, '/media/church-images/12/main.jpg')
        self.assertEqual(self.backend.save.call_args[0][0], 'church-images/12/main.jpg')

    def test_event_image_path(self):
        url = self.service.upload_event_image(SimpleUploadedFile('flyer.png', b'img'), 7)
        self.assertEqual(url, '/media/event-images/7/image.png')

    def test_upload_overwrites_existing_file(self):
        self.backend.exists.return_value = True

        self.service.upload('church-images', '12/main.jpg', SimpleUploadedFile('a.jpg', b'img'))

        self.backend.delete.assert_called_once_with('church-images/12/main.jpg')

    def test_upload_failure(self):
        self.backend.save.side_effect = OSError('disk full')

        with self.assertRaises(StorageUploadError) as ctx:
            self.service.upload_church_image(SimpleUploadedFile('a.jpg', b'img'), 12)
        self.assertEqual(ctx.exception.user_message, 'Failed to upload photo. Please try again.')

    def test_temporary_ids_are_unique(self):
        first = StorageService.temporary_id()
        self.assertTrue(first.startswith('temp-'))
        self.assertNotEqual(first, StorageService.temporary_id())


class AssistantServiceTest(SimpleTestCase):
    """
    Test suite for the faith assistant client.
    """

    def make_client(self, content):
        client = Mock()
        message = Mock(content=content)
        client.chat.completions.create.return_value = Mock(choices=[Mock(message=message)])
        return client

    def test_answer_is_returned(self):
        client = self.make_client('  Timkat is celebrated on January 19.  ')
        service = AssistantService(api_key='key', model='test-model', client=client)

        answer = service.ask('When is Timkat?')

        self.assertEqual(answer, 'Timkat is celebrated on January 19.')
        kwargs = client.chat.completions.create.call_args[1]
        self.assertEqual(kwargs['model'], 'test-model')
        self.assertIn('Question: When is Timkat?', kwargs['messages'][0]['content'])

    def test_empty_answer(self):
        service = AssistantService(api_key='key', client=self.make_client(''))
        self.assertEqual(service.ask('Hello?'), AssistantService.EMPTY_ANSWER)

    def test_api_failure_returns_apology(self):
        client = Mock()
        client.chat.completions.create.side_effect = OpenAIError('connection reset')
        service = AssistantService(api_key='key', client=client)

        self.assertEqual(service.ask('Hello?'), AssistantService.FAILURE_ANSWER)

    def test_reply_without_choices(self):
        client = Mock()
        client.chat.completions.create.return_value = Mock(choices=[])
        service = AssistantService(api_key='key', client=client)

        self.assertEqual(service.ask('Hello?'), AssistantService.EMPTY_ANSWER)

    @patch('churches.services.settings')
    def test_missing_api_key_returns_apology(self, mock_settings):
        mock_settings.OPENAI_API_KEY = ''
        mock_settings.OPENAI_MODEL = 'gpt-4o-mini'

        self.assertEqual(AssistantService().ask('Hello?'), AssistantService.FAILURE_ANSWER)


class RegistrationNotifierTest(TestCase):

    def test_pending_church_notice(self):
        church = create_church(status=ChurchStatus.PENDING, is_verified=False)

        sent = RegistrationNotifier(recipients=['ops@example.com']).notify(church)

        self.assertTrue(sent)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, f"New Church Registration: {church.name}")
        self.assertIn('5355 W 135th St', mail.outbox[0].body)

    def test_no_notice_without_recipients_or_for_approved(self):
        pending = create_church(status=ChurchStatus.PENDING, is_verified=False)

        self.assertFalse(RegistrationNotifier(recipients=[]).notify(pending))
        self.assertFalse(RegistrationNotifier(recipients=['ops@example.com']).notify(create_church(name='Other')))
        self.assertEqual(len(mail.outbox), 0)


class IdentityGatewayTest(TestCase):
    """
    Test suite for accounts and roles.
    """

    def setUp(self):
        self.identity = IdentityGateway()

    def test_sign_up_creates_profile(self):
        user = self.identity.sign_up('New@Example.com', 'Str0ng-Passw0rd!', 'Selam')

        self.assertEqual(user.username, 'new@example.com')
        profile = self.identity.get_profile(user)
        self.assertEqual(profile.display_name, 'Selam')
        self.assertEqual(profile.role, UserRole.USER)

    def test_duplicate_sign_up_rejected(self):
        self.identity.sign_up('new@example.com', 'Str0ng-Passw0rd!')
        with self.assertRaises(RegistrationValidationError):
            self.identity.sign_up('new@example.com', 'Str0ng-Passw0rd!')

    def test_weak_password_rejected(self):
        with self.assertRaises(RegistrationValidationError):
            self.identity.sign_up('new@example.com', 'short')

    def test_update_role_is_idempotent(self):
        user = make_user()
        self.identity.update_role(user.pk, UserRole.CHURCH_ADMIN)
        profile = self.identity.update_role(user.pk, UserRole.CHURCH_ADMIN)
        self.assertEqual(profile.role, UserRole.CHURCH_ADMIN)

    def test_super_admin_cannot_be_granted(self):
        user = make_user()
        with self.assertRaises(ChurchPermissionDenied):
            self.identity.update_role(user.pk, UserRole.SUPER_ADMIN)
        self.assertEqual(Profile.objects.get(user=user).role, UserRole.USER)

    def test_super_admin_keeps_role(self):
        user = make_user(role=UserRole.SUPER_ADMIN)
        profile = self.identity.update_role(user.pk, UserRole.CHURCH_ADMIN)
        self.assertEqual(profile.role, UserRole.SUPER_ADMIN)

    def test_on_auth_change(self):
        user = make_user()
        seen = []
        unsubscribe = self.identity.on_auth_change(seen.append)

        self.client.login(username='member@example.com', password='Str0ng-Passw0rd!')
        self.client.logout()
        unsubscribe()
        self.client.login(username='member@example.com', password='Str0ng-Passw0rd!')

        self.assertEqual(seen, [user, None])


class RegistrationWorkflowTest(TestCase):
    """
    Test suite for the multi-step church registration.
    """

    def setUp(self):
        self.user = make_user('abebe@example.com')
        self.geocoder = Mock()
        self.geocoder.geocode_address_components.return_value = {
            'lat': 33.9425, 'lng': -118.4081, 'display_name': '1 World Way'
        }
        self.storage = Mock()
        self.storage.temporary_id.return_value = 'temp-abc'
        self.storage.upload_church_image.side_effect = lambda file, church_id, kind='main': (
            f"/media/church-images/{church_id}/main.jpg"
        )
        self.notifier = Mock()
        self.workflow = RegistrationWorkflow(
            geocoder=self.geocoder,
            storage=self.storage,
            identity=IdentityGateway(),
            notifier=self.notifier,
        )

    def complete_steps(self, form=None):
        self.workflow.advance(form or registration_form())
        self.workflow.advance()
        self.assertEqual(self.workflow.step, STEP_CHURCH_DETAILS)

    def test_steps_advance_in_order(self):
        self.assertEqual(self.workflow.advance(registration_form()), STEP_CHURCH_INFO)
        self.assertEqual(self.workflow.advance(), STEP_CHURCH_DETAILS)
        with self.assertRaises(RegistrationValidationError):
            self.workflow.advance()

    def test_admin_phone_required(self):
        with self.assertRaises(RegistrationValidationError):
            self.workflow.advance(registration_form(phone='  '))
        self.assertEqual(self.workflow.step, STEP_ADMIN_INFO)

    def test_church_info_required(self):
        self.workflow.advance(registration_form(zip_code=''))
        with self.assertRaises(RegistrationValidationError):
            self.workflow.advance()
        self.assertEqual(self.workflow.step, STEP_CHURCH_INFO)

    def test_back_keeps_entered_data(self):
        self.complete_steps()
        self.workflow.back()
        self.workflow.back()

        self.assertEqual(self.workflow.step, STEP_ADMIN_INFO)
        self.assertEqual(self.workflow.form_data['name'], 'Kidist Selassie Church')
        self.assertEqual(self.workflow.back(), STEP_ADMIN_INFO)

    def test_state_round_trips_through_dict(self):
        self.workflow.advance(registration_form())
        restored = RegistrationWorkflow.from_dict(
            self.workflow.to_dict(),
            geocoder=self.geocoder, storage=self.storage, identity=IdentityGateway()
        )
        self.assertEqual(restored.step, STEP_CHURCH_INFO)
        self.assertEqual(restored.form_data['city'], 'Los Angeles')

    def test_missing_schedule_fails_before_geocoding(self):
        form = registration_form(service_schedule=[
            {'day': 'Sunday', 'start_time': '', 'end_time': '11:00', 'description': '', 'repeat': 'Every Week'}
        ])
        self.complete_steps(form)

        with self.assertRaises(RegistrationValidationError) as ctx:
            self.workflow.submit(self.user)

        self.assertEqual(
            ctx.exception.user_message,
            'Please add at least one service time with day and start time.'
        )
        self.geocoder.geocode_address_components.assert_not_called()
        self.assertEqual(Church.objects.count(), 0)

    def test_missing_language_fails_before_geocoding(self):
        self.complete_steps(registration_form(languages={'Amharic': False}))

        with self.assertRaises(RegistrationValidationError) as ctx:
            self.workflow.submit(self.user)

        self.assertEqual(
            ctx.exception.user_message,
            'Please select at least one language spoken at your church.'
        )
        self.geocoder.geocode_address_components.assert_not_called()

    def test_invalid_donation_website_fails_before_geocoding(self):
        self.complete_steps(registration_form(donation_website='stmarys.org'))

        with self.assertRaises(RegistrationValidationError) as ctx:
            self.workflow.submit(self.user)

        self.assertEqual(
            ctx.exception.user_message,
            'Please enter a valid donation website, starting with http:// or https://.'
        )
        self.geocoder.geocode_address_components.assert_not_called()
        self.assertEqual(Church.objects.count(), 0)

    def test_overlong_fields_fail_before_geocoding(self):
        for field, value in [('phone', '+1 (310) 555-0100 ext. 42'), ('zip_code', '90045-12345'),
                             ('name', 'K' * 201)]:
            with self.subTest(field=field):
                workflow = RegistrationWorkflow(
                    geocoder=self.geocoder, storage=self.storage, identity=IdentityGateway()
                )
                workflow.advance(registration_form(**{field: value}))
                workflow.advance()

                with self.assertRaises(RegistrationValidationError):
                    workflow.submit(self.user)

        self.geocoder.geocode_address_components.assert_not_called()
        self.assertEqual(Church.objects.count(), 0)

    def test_malformed_service_time_fails_before_geocoding(self):
        for start, end in [('9am', ''), ('09:00', '25:00'), ('9:75', '')]:
            with self.subTest(start=start, end=end):
                form = registration_form(service_schedule=[
                    {'day': 'Sunday', 'start_time': start, 'end_time': end,
                     'description': '', 'repeat': 'Every Week'}
                ])
                workflow = RegistrationWorkflow(
                    geocoder=self.geocoder, storage=self.storage, identity=IdentityGateway()
                )
                workflow.advance(form)
                workflow.advance()

                with self.assertRaises(RegistrationValidationError) as ctx:
                    workflow.submit(self.user)
                self.assertEqual(
                    ctx.exception.user_message,
                    'Please enter Sunday service times as HH:MM, for example 09:30.'
                )

        self.geocoder.geocode_address_components.assert_not_called()

    def test_failed_role_update_leaves_nothing_to_duplicate(self):
        identity = Mock()
        identity.update_role.side_effect = [RuntimeError('profile table locked'), None]
        self.workflow.identity = identity
        self.complete_steps()

        with self.assertLogs('churches.registration', level='ERROR'):
            with self.assertRaises(ChurchFinderError):
                self.workflow.submit(self.user)

        self.assertEqual(Church.objects.count(), 0)
        self.assertFalse(ChurchAdmin.objects.exists())
        self.assertEqual(self.workflow.step, STEP_CHURCH_DETAILS)
        self.assertIsNone(self.workflow.church_id)

        church = self.workflow.submit(self.user)

        self.assertEqual(Church.objects.count(), 1)
        self.assertEqual(ChurchAdmin.objects.get().church, church)
        self.assertEqual(self.workflow.step, STEP_SUBMITTED)

    def test_submit_requires_signed_in_user(self):
        self.complete_steps()
        with self.assertRaises(AuthenticationRequired):
            self.workflow.submit(None)
        self.geocoder.geocode_address_components.assert_not_called()

    def test_geocoding_failure_creates_nothing(self):
        self.geocoder.geocode_address_components.side_effect = LocationNotFound()
        self.complete_steps()

        with self.assertRaises(LocationNotFound):
            self.workflow.submit(self.user)

        self.assertEqual(Church.objects.count(), 0)
        self.assertEqual(self.workflow.step, STEP_CHURCH_DETAILS)
        self.assertEqual(self.workflow.form_data['name'], 'Kidist Selassie Church')

    def test_unexpected_error_becomes_generic_message(self):
        self.geocoder.geocode_address_components.side_effect = KeyError('lat')
        self.complete_steps()

        with self.assertLogs('churches.registration', level='ERROR'):
            with self.assertRaises(ChurchFinderError) as ctx:
                self.workflow.submit(self.user)

        self.assertEqual(ctx.exception.user_message, 'Something went wrong. Please try again.')

    def test_successful_submission(self):
        self.complete_steps()

        church = self.workflow.submit(self.user)

        self.assertEqual(self.workflow.step, STEP_SUBMITTED)
        self.assertEqual(church.status, ChurchStatus.PENDING)
        self.assertFalse(church.is_verified)
        self.assertEqual(church.members, 0)
        self.assertEqual(church.admin, self.user)
        self.assertEqual(church.phone, '(310) 555-0100')
        self.assertEqual(church.coordinates, (33.9425, -118.4081))
        self.assertEqual(church.services, ['Sunday Service'])
        self.assertEqual(church.languages, ['Amharic'])
        self.assertTrue(church.has_parking)
        self.assertEqual(church.service_schedule, [
            {'day': 'Sunday', 'time': '9:00 AM - 11:00 AM', 'description': 'Sunday Service'}
        ])
        self.assertTrue(ChurchAdmin.objects.filter(user=self.user, church=church).exists())
        self.assertEqual(Profile.objects.get(user=self.user).role, UserRole.CHURCH_ADMIN)
        self.notifier.notify.assert_called_once_with(church)
        self.assertEqual(self.workflow.church_id, church.pk)

    def test_image_uploaded_then_moved_under_church_id(self):
        self.complete_steps()
        image = SimpleUploadedFile('front.jpg', b'img')

        church = self.workflow.submit(self.user, image=image)

        calls = self.storage.upload_church_image.call_args_list
        self.assertEqual(calls[0][0][1], 'temp-abc')
        self.assertEqual(calls[1][0][1], church.pk)
        church.refresh_from_db()
        self.assertEqual(church.image_url, f"/media/church-images/{church.pk}/main.jpg")

    def test_reupload_failure_is_not_fatal(self):
        self.storage.upload_church_image.side_effect = [
            '/media/church-images/temp-abc/main.jpg',
            StorageUploadError(),
        ]
        self.complete_steps()

        with self.assertLogs('churches.registration', level='ERROR'):
            church = self.workflow.submit(self.user, image=SimpleUploadedFile('front.jpg', b'img'))

        church.refresh_from_db()
        self.assertEqual(church.image_url, '/media/church-images/temp-abc/main.jpg')
        self.assertEqual(self.workflow.step, STEP_SUBMITTED)
        self.assertTrue(ChurchAdmin.objects.filter(church=church).exists())

    def test_first_upload_failure_stops_submission(self):
        self.storage.upload_church_image.side_effect = StorageUploadError()
        self.complete_steps()

        with self.assertRaises(StorageUploadError):
            self.workflow.submit(self.user, image=SimpleUploadedFile('front.jpg', b'img'))
        self.assertEqual(Church.objects.count(), 0)

    def test_notifier_failure_is_not_fatal(self):
        self.notifier.notify.side_effect = RuntimeError('smtp down')
        self.complete_steps()

        with self.assertLogs('churches.registration', level='ERROR'):
            self.workflow.submit(self.user)
        self.assertEqual(self.workflow.step, STEP_SUBMITTED)

    def test_submitted_workflow_is_closed(self):
        self.complete_steps()
        self.workflow.submit(self.user)

        with self.assertRaises(RegistrationValidationError):
            self.workflow.update({'name': 'Changed'})
        with self.assertRaises(RegistrationValidationError):
            self.workflow.back()


class ScheduleFormattingTest(SimpleTestCase):

    def test_format_time(self):
        self.assertEqual(format_time('13:30'), '1:30 PM')
        self.assertEqual(format_time('00:15'), '12:15 AM')
        self.assertEqual(format_time('12:00'), '12:00 PM')
        self.assertEqual(format_time(''), '')

    def test_parse_time(self):
        self.assertEqual(parse_time('9:00 AM - 11:00 AM'), {'start_time': '09:00', 'end_time': '11:00'})
        self.assertEqual(parse_time('12:15 AM'), {'start_time': '00:15', 'end_time': ''})
        self.assertEqual(parse_time('5:00 PM - 12:30 PM'), {'start_time': '17:00', 'end_time': '12:30'})

    def test_transform_schedule(self):
        schedule = transform_schedule([
            {'day': 'Sunday', 'start_time': '04:00', 'end_time': '11:00',
             'description': 'Divine Liturgy (Kidase)', 'repeat': 'Every Week'},
            {'day': 'Saturday', 'start_time': '17:00', 'end_time': '',
             'description': '', 'repeat': 'Monthly'},
            {'day': '', 'start_time': '10:00', 'end_time': '', 'description': '', 'repeat': 'Every Week'},
        ])

        self.assertEqual(schedule, [
            {'day': 'Sunday', 'time': '4:00 AM - 11:00 AM', 'description': 'Divine Liturgy (Kidase)'},
            {'day': 'Saturday', 'time': '5:00 PM', 'description': 'Saturday Service (Monthly)'},
        ])

    def test_church_to_form_data(self):
        church = make_church(service_schedule=[
            {'day': 'Sunday', 'time': '9:00 AM - 11:00 AM', 'description': 'Sunday Service (Every 2 Weeks)'}
        ])

        form = church_to_form_data(church)

        self.assertEqual(form['service_schedule'][0]['start_time'], '09:00')
        self.assertEqual(form['service_schedule'][0]['repeat'], 'Every 2 Weeks')
        self.assertTrue(form['services']['Bible Study'])
        self.assertFalse(form['services']['Youth Programs'])
        self.assertTrue(form['languages']['Amharic'])


class ChurchAuthorityTest(TestCase):
    """
    Test suite for the church admin authority check.
    """

    def setUp(self):
        self.user = make_user()
        self.church = create_church()

    def test_legacy_owner_only(self):
        self.church.admin = self.user
        self.church.save()
        self.assertFalse(ChurchAdmin.objects.exists())
        self.assertTrue(is_church_admin(self.user, self.church))

    def test_linkage_only(self):
        ChurchAdmin.objects.create(user=self.user, church=self.church)
        self.assertIsNone(self.church.admin_id)
        self.assertTrue(is_church_admin(self.user, self.church))

    def test_neither(self):
        self.assertFalse(is_church_admin(self.user, self.church))
        self.assertFalse(is_church_admin(None, self.church))

    @patch('churches.registration.ChurchAdmin.objects.filter')
    def test_linkage_error_falls_back_to_legacy_owner(self, mock_filter):
        mock_filter.side_effect = DatabaseError('table missing')
        self.church.admin = self.user
        self.church.save()

        with self.assertLogs('churches.registration', level='WARNING'):
            self.assertTrue(is_church_admin(self.user, self.church))

    def test_update_listing_regeocodes_only_on_address_change(self):
        ChurchAdmin.objects.create(user=self.user, church=self.church)
        geocoder = Mock()
        geocoder.geocode_address_components.return_value = {'lat': 34.0, 'lng': -118.3, 'display_name': ''}
        form = church_to_form_data(self.church)
        form['description'] = 'Updated description'

        church = update_church_listing(self.church, self.user, form, geocoder, Mock())

        geocoder.geocode_address_components.assert_not_called()
        self.assertEqual(church.description, 'Updated description')
        self.assertEqual(church.status, ChurchStatus.APPROVED)

        form['street_address'] = '3822 W 139th St'
        church = update_church_listing(church, self.user, form, geocoder, Mock())

        geocoder.geocode_address_components.assert_called_once()
        self.assertEqual(church.coordinates, (34.0, -118.3))

    def test_update_listing_rejects_bad_input_before_geocoding(self):
        ChurchAdmin.objects.create(user=self.user, church=self.church)
        geocoder = Mock()

        bad_time = church_to_form_data(self.church)
        bad_time['street_address'] = '3822 W 139th St'
        bad_time['service_schedule'][0]['start_time'] = '9am'
        bad_website = church_to_form_data(self.church)
        bad_website['street_address'] = '3822 W 139th St'
        bad_website['donation_website'] = 'stmaryla.org'

        for form in [bad_time, bad_website]:
            with self.assertRaises(RegistrationValidationError):
                update_church_listing(self.church, self.user, form, geocoder, Mock())

        geocoder.geocode_address_components.assert_not_called()
        self.church.refresh_from_db()
        self.assertEqual(self.church.street_address, '5355 W 135th St')

    def test_update_listing_requires_authority(self):
        stranger = make_user('stranger@example.com')
        with self.assertRaises(ChurchPermissionDenied):
            update_church_listing(self.church, stranger, church_to_form_data(self.church), Mock(), Mock())


class ApprovalWorkflowTest(TestCase):
    """
    Test suite for church review.
    """

    def setUp(self):
        self.church = create_church(status=ChurchStatus.PENDING, is_verified=False)

    def test_approve_sets_verified(self):
        church = approve_church(self.church.pk)
        self.assertEqual(church.status, ChurchStatus.APPROVED)
        self.assertTrue(church.is_verified)

    def test_reject_never_verifies(self):
        church = reject_church(self.church.pk)
        self.assertEqual(church.status, ChurchStatus.REJECTED)
        self.assertFalse(church.is_verified)

    def test_no_re_review(self):
        reject_church(self.church.pk)
        with self.assertRaises(InvalidStatusTransition):
            approve_church(self.church.pk)
        self.church.refresh_from_db()
        self.assertEqual(self.church.status, ChurchStatus.REJECTED)

    def test_missing_church(self):
        with self.assertRaises(ChurchNotFound):
            approve_church(999999)


class ChurchSerializerTest(TestCase):

    def test_church_serializer(self):
        church = create_church(donation_zelle='donate@stmaryla.org')
        ClergyMember.objects.create(church=church, name='Abba Fikre', role='Priest')

        data = ChurchSerializer(church).data

        self.assertEqual(data['coordinates'], {'lat': 33.9088, 'lng': -118.3712})
        self.assertEqual(data['clergy'][0]['name'], 'Abba Fikre')
        self.assertEqual(data['donation_info'], {'zelle': 'donate@stmaryla.org'})
        self.assertIsNone(data['distance'])

    def test_list_serializer_rounds_distance(self):
        church = rank_churches([create_church()], LAX)[0]
        data = ChurchListSerializer(church).data
        self.assertEqual(data['distance'], round(church.distance, 1))


class APITestCase(TestCase):

    def setUp(self):
        # Throttle counters live in the cache
        cache.clear()
        self.client = APIClient()


class ChurchAPITest(APITestCase):
    """
    Test suite for the public directory endpoints.
    """

    def setUp(self):
        super().setUp()
        self.st_mary = create_church()
        self.tekle = create_church(
            name='Tekle Haimanot Church', street_address='310 N Reno St', city='Los Angeles',
            zip_code='90026', latitude=Decimal('34.0728'), longitude=Decimal('-118.2754'),
            services=['Wedding Ceremonies'],
        )
        self.pending = create_church(name='Pending Church', status=ChurchStatus.PENDING, is_verified=False)

    def test_church_list_only_approved(self):
        response = self.client.get('/api/churches/')

        self.assertEqual(response.status_code, 200)
        names = [c['name'] for c in response.json()['results']]
        self.assertEqual(sorted(names), sorted([self.st_mary.name, self.tekle.name]))

    def test_church_list_ranked_and_filtered_by_distance(self):
        response = self.client.get('/api/churches/', {'lat': LAX[0], 'lng': LAX[1], 'distance': 10})

        results = response.json()['results']
        self.assertEqual([c['name'] for c in results], [self.tekle.name])
        self.assertIsNotNone(results[0]['distance'])

        response = self.client.get('/api/churches/', {'lat': LAX[0], 'lng': LAX[1], 'distance': 25})
        self.assertEqual(
            [c['name'] for c in response.json()['results']],
            [self.tekle.name, self.st_mary.name]
        )

    def test_church_list_service_filter(self):
        response = self.client.get('/api/churches/', {'services': 'Bible Study'})
        self.assertEqual([c['name'] for c in response.json()['results']], [self.st_mary.name])

    def test_invalid_filter_returns_message(self):
        response = self.client.get('/api/churches/', {'distance': 7})
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_church_detail(self):
        self.assertEqual(self.client.get(f'/api/churches/{self.st_mary.pk}/').status_code, 200)
        self.assertEqual(self.client.get(f'/api/churches/{self.pending.pk}/').status_code, 404)

    def test_church_map_and_stats(self):
        self.assertEqual(len(self.client.get('/api/churches/map/').json()), 2)

        data = self.client.get('/api/churches/stats/').json()
        self.assertEqual(data['total_churches'], 2)
        self.assertEqual(data['by_status']['pending'], 1)
        self.assertEqual(data['states']['CA']['total'], 2)

    def test_events_list(self):
        now = timezone.now()
        ChurchEvent.objects.create(title='Youth Night', type='Bible Study',
                                   date=now + timedelta(days=3), church=self.tekle)
        ChurchEvent.objects.create(title='Picnic', type='Community',
                                   date=now + timedelta(days=20), church=self.st_mary)
        ChurchEvent.objects.create(title='Hidden', type='Community',
                                   date=now + timedelta(days=2), church=self.pending)

        this_week = self.client.get('/api/events/', {'date_range': 'thisWeek'}).json()['results']
        everything = self.client.get('/api/events/').json()['results']

        self.assertEqual([e['title'] for e in this_week], ['Youth Night'])
        self.assertEqual([e['title'] for e in everything], ['Youth Night', 'Picnic'])

    def test_form_options(self):
        data = self.client.get('/api/options/').json()
        self.assertIn('Sunday Service', data['services'])
        self.assertEqual(data['distances'], [5, 10, 25, 50])

    def test_geocoding_endpoint(self):
        geocoder = Mock()
        geocoder.geocode.return_value = {'lat': 34.05, 'lng': -118.24, 'display_name': 'Los Angeles'}

        with patch.object(get_gateways(), 'geocoder', geocoder):
            response = self.client.post('/api/geocoding/', {'address': 'Los Angeles'}, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['coordinates'], {'lat': 34.05, 'lng': -118.24})

    def test_geocoding_endpoint_not_found(self):
        geocoder = Mock()
        geocoder.geocode.side_effect = LocationNotFound()

        with patch.object(get_gateways(), 'geocoder', geocoder):
            response = self.client.post('/api/geocoding/', {'address': 'Nowhere'}, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {
            'error': 'Address not found. Please check the address and try again.'
        })

    def test_assistant_endpoint(self):
        assistant = Mock()
        assistant.ask.return_value = 'Fasika is Ethiopian Easter.'

        with patch.object(get_gateways(), 'assistant', assistant):
            response = self.client.post('/api/assistant/', {'question': 'What is Fasika?'}, format='json')

        self.assertEqual(response.json(), {'answer': 'Fasika is Ethiopian Easter.'})


class AccountAPITest(APITestCase):

    def test_signup_login_me_logout(self):
        response = self.client.post('/api/auth/signup/', {
            'email': 'selam@example.com', 'password': 'Str0ng-Passw0rd!', 'display_name': 'Selam'
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['profile']['role'], 'user')

        client = APIClient()
        response = client.post('/api/auth/login/', {
            'email': 'selam@example.com', 'password': 'Str0ng-Passw0rd!'
        }, format='json')
        self.assertEqual(response.status_code, 200)
        token = response.json()['token']

        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
        self.assertEqual(client.get('/api/auth/me/').json()['display_name'], 'Selam')
        self.assertEqual(client.post('/api/auth/logout/').status_code, 204)

        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
        self.assertEqual(client.get('/api/auth/me/').status_code, 401)

    def test_bad_login(self):
        make_user()
        response = self.client.post('/api/auth/login/', {
            'email': 'member@example.com', 'password': 'wrong'
        }, format='json')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'error': 'Invalid email or password.'})


class FollowAPITest(APITestCase):

    def setUp(self):
        super().setUp()
        self.user = make_user()
        self.church = create_church()
        self.client.force_authenticate(self.user)

    def test_follow_is_idempotent(self):
        first = self.client.post(f'/api/follows/{self.church.pk}/')
        second = self.client.post(f'/api/follows/{self.church.pk}/')

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(FollowedChurch.objects.filter(user=self.user).count(), 1)

        followed = self.client.get('/api/follows/').json()
        self.assertEqual([f['church']['id'] for f in followed], [self.church.pk])

    def test_unfollow(self):
        FollowedChurch.objects.create(user=self.user, church=self.church)

        self.assertEqual(self.client.delete(f'/api/follows/{self.church.pk}/').status_code, 204)
        self.assertEqual(self.client.delete(f'/api/follows/{self.church.pk}/').status_code, 204)
        self.assertFalse(FollowedChurch.objects.exists())

    def test_follow_requires_sign_in(self):
        self.client.force_authenticate(None)
        self.assertEqual(self.client.post(f'/api/follows/{self.church.pk}/').status_code, 401)

    def test_follow_unknown_church(self):
        self.assertEqual(self.client.post('/api/follows/999999/').status_code, 404)


class RegistrationAPITest(APITestCase):
    """
    Test suite for the session-backed registration endpoints.
    """

    def setUp(self):
        super().setUp()
        self.user = make_user('abebe@example.com')
        self.client.force_authenticate(self.user)
        self.geocoder = Mock()
        self.geocoder.geocode_address_components.return_value = {
            'lat': 33.9425, 'lng': -118.4081, 'display_name': '1 World Way'
        }

    def test_invalid_step_keeps_data(self):
        self.client.post('/api/register/advance/', {'form_data': registration_form(city='')}, format='json')
        response = self.client.post('/api/register/advance/', {}, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Please fill in all required church information fields.'})

        state = self.client.get('/api/register/').json()
        self.assertEqual(state['step'], STEP_CHURCH_INFO)
        self.assertEqual(state['form_data']['name'], 'Kidist Selassie Church')

    def test_back_and_reset(self):
        self.client.post('/api/register/advance/', {'form_data': registration_form()}, format='json')
        self.assertEqual(self.client.post('/api/register/back/').json()['step'], STEP_ADMIN_INFO)

        state = self.client.post('/api/register/reset/').json()
        self.assertEqual(state['step'], STEP_ADMIN_INFO)
        self.assertEqual(state['form_data']['name'], '')

    def test_full_registration(self):
        self.client.post('/api/register/advance/', {'form_data': registration_form()}, format='json')
        self.client.post('/api/register/advance/', {}, format='json')

        with patch.object(get_gateways(), 'geocoder', self.geocoder):
            response = self.client.post('/api/register/submit/', {}, format='json')

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['step'], STEP_SUBMITTED)
        self.assertEqual(data['church']['status'], 'pending')
        church = Church.objects.get(pk=data['church']['id'])
        self.assertTrue(is_church_admin(self.user, church))
        self.assertEqual(Profile.objects.get(user=self.user).role, UserRole.CHURCH_ADMIN)

    def test_anonymous_submission(self):
        self.client.force_authenticate(None)
        self.client.post('/api/register/advance/', {'form_data': registration_form()}, format='json')
        self.client.post('/api/register/advance/', {}, format='json')

        with patch.object(get_gateways(), 'geocoder', self.geocoder):
            response = self.client.post('/api/register/submit/', {}, format='json')

        self.assertEqual(response.status_code, 401)
        self.geocoder.geocode_address_components.assert_not_called()
        self.assertEqual(Church.objects.count(), 0)


class ChurchAdminAPITest(APITestCase):
    """
    Test suite for managing a church as its administrator.
    """

    def setUp(self):
        super().setUp()
        self.owner = make_user('owner@example.com', role=UserRole.CHURCH_ADMIN)
        self.stranger = make_user('stranger@example.com')
        self.church = create_church()
        ChurchAdmin.objects.create(user=self.owner, church=self.church)
        self.legacy_church = create_church(name='Legacy Church', admin=self.owner)
        self.client.force_authenticate(self.owner)

    def test_my_churches_uses_both_ownership_paths(self):
        names = [c['name'] for c in self.client.get('/api/my-churches/').json()]
        self.assertEqual(names, ['Legacy Church', self.church.name])

    def test_edit_listing(self):
        response = self.client.patch(
            f'/api/my-churches/{self.church.pk}/',
            {'form_data': {'description': 'Now with parking.'}},
            format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.church.refresh_from_db()
        self.assertEqual(self.church.description, 'Now with parking.')
        self.assertTrue(self.church.is_verified)

    def test_forbidden_and_not_found_are_distinct(self):
        self.client.force_authenticate(self.stranger)
        self.assertEqual(self.client.patch(f'/api/my-churches/{self.church.pk}/', {}, format='json').status_code, 403)
        self.assertEqual(self.client.get('/api/my-churches/999999/').status_code, 404)

    def test_event_management(self):
        response = self.client.post(f'/api/my-churches/{self.church.pk}/events/', {
            'title': 'Timkat Procession',
            'type': 'Holiday',
            'date': (timezone.now() + timedelta(days=10)).isoformat(),
            'location': 'Hawthorne, CA',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        event_id = response.json()['id']
        self.assertEqual(response.json()['church_name'], self.church.name)

        response = self.client.patch(
            f'/api/my-churches/{self.church.pk}/events/{event_id}/', {'title': 'Timkat'}, format='json'
        )
        self.assertEqual(response.json()['title'], 'Timkat')

        self.client.force_authenticate(self.stranger)
        response = self.client.delete(f'/api/my-churches/{self.church.pk}/events/{event_id}/')
        self.assertEqual(response.status_code, 403)

    def test_church_with_events_cannot_be_deleted(self):
        ChurchEvent.objects.create(title='Timkat', type='Holiday', date=timezone.now(), church=self.church)

        response = self.client.delete(f'/api/my-churches/{self.church.pk}/')

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Church.objects.filter(pk=self.church.pk).exists())

    def test_clergy_management(self):
        response = self.client.post(f'/api/my-churches/{self.church.pk}/clergy/',
                                    {'name': 'Abba Fikre', 'role': 'Priest'}, format='json')
        self.assertEqual(response.status_code, 201)

        member_id = response.json()['id']
        response = self.client.delete(f'/api/my-churches/{self.church.pk}/clergy/{member_id}/')
        self.assertEqual(response.status_code, 204)
        self.assertFalse(ClergyMember.objects.exists())


class SuperAdminAPITest(APITestCase):

    def setUp(self):
        super().setUp()
        self.reviewer = make_user('reviewer@example.com', role=UserRole.SUPER_ADMIN)
        self.pending = create_church(status=ChurchStatus.PENDING, is_verified=False)
        self.client.force_authenticate(self.reviewer)

    def test_review_queue(self):
        data = self.client.get('/api/admin/churches/').json()
        self.assertEqual([c['id'] for c in data['results']], [self.pending.pk])
        self.assertEqual(self.client.get('/api/admin/churches/', {'status': 'bogus'}).status_code, 400)

    def test_approve_and_no_re_review(self):
        response = self.client.post(f'/api/admin/churches/{self.pending.pk}/approve/')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['is_verified'])

        response = self.client.post(f'/api/admin/churches/{self.pending.pk}/reject/')
        self.assertEqual(response.status_code, 409)

    def test_only_super_admin(self):
        self.client.force_authenticate(make_user('admin@example.com', role=UserRole.CHURCH_ADMIN))
        response = self.client.post(f'/api/admin/churches/{self.pending.pk}/approve/')
        self.assertEqual(response.status_code, 403)
        self.pending.refresh_from_db()
        self.assertEqual(self.pending.status, ChurchStatus.PENDING)


class ManagementCommandTest(TestCase):
    """
    Test suite for the populate_churches management command.
    """

    def setUp(self):
        self.sample_json_data = [
            {
                'name': 'JSON Church 1',
                'street_address': '123 JSON St',
                'city': 'JSON City',
                'state': 'CA',
                'zip_code': '11111',
                'coordinates': {'lat': 34.1, 'lng': -118.1},
                'events': [
                    {'title': 'Genna', 'type': 'Holiday', 'date': '2027-01-07T08:00:00Z'}
                ],
            },
            {
                'name': 'JSON Church 2',
                'street_address': '456 JSON Ave',
                'city': 'JSON City',
                'state': 'CA',
                'zip_code': '22222',
            },
        ]

    def write_json(self, data):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            json.dump(data, f)
        self.addCleanup(os.unlink, f.name)
        return f.name

    def test_populate_churches_sample_data(self):
        call_command('populate_churches', stdout=StringIO())

        self.assertEqual(Church.objects.count(), 4)
        self.assertEqual(Church.objects.filter(status=ChurchStatus.APPROVED, is_verified=True).count(), 4)
        self.assertEqual(ChurchEvent.objects.count(), 5)
        self.assertEqual(ClergyMember.objects.count(), 3)
        st_mary = Church.objects.get(name='St. Mary Ethiopian Orthodox Tewahedo Church')
        self.assertEqual(st_mary.coordinates, ST_MARY)

    def test_sample_data_is_idempotent(self):
        call_command('populate_churches', stdout=StringIO())
        call_command('populate_churches', stdout=StringIO())
        self.assertEqual(Church.objects.count(), 4)
        self.assertEqual(ChurchEvent.objects.count(), 5)

    def test_populate_with_pending_status(self):
        call_command('populate_churches', status='pending', stdout=StringIO())
        self.assertEqual(Church.objects.filter(status=ChurchStatus.PENDING, is_verified=False).count(), 4)

    def test_populate_churches_json_file(self):
        call_command('populate_churches', source='json', file=self.write_json(self.sample_json_data),
                     stdout=StringIO())

        self.assertEqual(Church.objects.count(), 2)
        self.assertFalse(Church.objects.get(name='JSON Church 2').has_coordinates)
        self.assertEqual(ChurchEvent.objects.get().church_name, 'JSON Church 1')

    @patch('churches.management.commands.populate_churches.GeocodingService')
    def test_populate_churches_with_geocoding(self, MockGeocodingService):
        MockGeocodingService.return_value.geocode.return_value = {
            'lat': 34.2, 'lng': -118.2, 'display_name': '456 JSON Ave'
        }

        call_command('populate_churches', source='json', file=self.write_json(self.sample_json_data),
                     geocode=True, stdout=StringIO())

        MockGeocodingService.return_value.geocode.assert_called_once_with('456 JSON Ave, JSON City, CA 22222')
        self.assertEqual(Church.objects.get(name='JSON Church 2').coordinates, (34.2, -118.2))

    def test_populate_churches_dry_run(self):
        out = StringIO()
        call_command('populate_churches', dry_run=True, stdout=out)
        self.assertEqual(Church.objects.count(), 0)
        self.assertIn('DRY RUN', out.getvalue())

    def test_populate_churches_clear_existing(self):
        church = create_church(name='Old Church')
        ChurchEvent.objects.create(title='Old Event', type='Holiday', date=timezone.now(), church=church)

        call_command('populate_churches', clear_existing=True, stdout=StringIO())

        self.assertFalse(Church.objects.filter(name='Old Church').exists())
        self.assertEqual(Church.objects.count(), 4)

    def test_populate_churches_invalid_file_path(self):
        with self.assertRaises(CommandError):
            call_command('populate_churches', source='json', file='/nonexistent/file.json')

    def test_populate_churches_missing_file_argument(self):
        with self.assertRaises(CommandError):
            call_command('populate_churches', source='json')

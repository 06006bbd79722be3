import json
import logging

from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .apps import get_gateways
from .approval import approve_church, reject_church
from .constants import DAYS_OF_WEEK, EVENT_TYPES, LANGUAGES, REPEAT_OPTIONS, SERVICE_OPTIONS
from .exceptions import (
    ChurchNotFound,
    ChurchPermissionDenied,
    FilterValidationError,
    RegistrationValidationError,
)
from .models import Church, ChurchEvent, ChurchStatus, ClergyMember, FollowedChurch
from .permissions import IsSuperAdmin
from .registration import (
    FORM_FIELDS,
    RegistrationWorkflow,
    church_to_form_data,
    is_church_admin,
    update_church_listing,
)
from .search import (
    DATE_RANGES,
    DEFAULT_MAX_DISTANCE,
    DISTANCE_CHOICES,
    ChurchFilters,
    EventFilters,
    filter_events,
    parse_user_location,
    rank_churches,
    search_churches,
)
from .serializers import (
    AdminChurchSerializer,
    AssistantRequestSerializer,
    ChurchEventSerializer,
    ChurchListSerializer,
    ChurchMapSerializer,
    ChurchSerializer,
    ClergyMemberSerializer,
    FollowedChurchSerializer,
    GeocodingRequestSerializer,
    ProfileSerializer,
    SignInSerializer,
    SignUpSerializer,
)
from .throttles import AssistantRateThrottle, GeocodingRateThrottle, RegistrationRateThrottle

logger = logging.getLogger(__name__)

REGISTRATION_SESSION_KEY = 'church_registration'


def _public_churches():
    return Church.objects.filter(status=ChurchStatus.APPROVED)


def _public_events():
    """Events of approved churches, plus events with no hosting church."""
    return ChurchEvent.objects.filter(
        Q(church__isnull=True) | Q(church__status=ChurchStatus.APPROVED)
    ).order_by('date')


def _form_payload(request):
    """
    Form data arrives either under `form_data` (a dict, or a JSON string in
    multipart uploads) or as top-level fields.
    """
    payload = request.data.get('form_data')
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise RegistrationValidationError('Form data is not valid JSON.')
    if payload is None:
        payload = {key: request.data[key] for key in FORM_FIELDS if key in request.data}
    if not isinstance(payload, dict):
        raise RegistrationValidationError('Form data must be an object.')
    return payload


# Public directory

class ChurchListAPIView(generics.ListAPIView):
    """
    API endpoint for the church directory.
    Approved churches ranked by distance from `lat`/`lng` when given, then
    filtered by `q`, `location`, `distance` and `services`.
    """
    serializer_class = ChurchListSerializer

    def get_queryset(self):
        filters = ChurchFilters.from_query_params(self.request.query_params)
        user_location = parse_user_location(self.request.query_params)
        return search_churches(_public_churches(), filters, user_location)


class ChurchDetailAPIView(generics.RetrieveAPIView):
    """
    API endpoint for retrieving individual church information.
    """
    queryset = _public_churches().prefetch_related('clergy')
    serializer_class = ChurchSerializer
    lookup_field = 'id'

    def get_object(self):
        church = super().get_object()
        user_location = parse_user_location(self.request.query_params)
        rank_churches([church], user_location)
        return church


class ChurchMapAPIView(generics.ListAPIView):
    """
    Map markers: approved churches with coordinates.
    """
    serializer_class = ChurchMapSerializer
    pagination_class = None  # Disable pagination for map data

    def get_queryset(self):
        return _public_churches().filter(
            latitude__isnull=False,
            longitude__isnull=False
        ).order_by('state', 'city', 'name')


@api_view(['GET'])
def church_stats(request):
    """
    API endpoint for church statistics.
    Returns counts by review status and approved counts by state.
    """
    status_counts = dict(
        Church.objects.values_list('status').annotate(total=Count('id')).order_by()
    )
    approved = _public_churches()
    total_approved = approved.count()
    with_coordinates = approved.filter(latitude__isnull=False, longitude__isnull=False).count()

    state_stats = {}
    for row in approved.values('state').annotate(
        total=Count('id'),
        with_coordinates=Count('id', filter=Q(latitude__isnull=False, longitude__isnull=False))
    ).order_by('state'):
        state_stats[row['state']] = {
            'total': row['total'],
            'with_coordinates': row['with_coordinates'],
        }

    return Response({
        'total_churches': total_approved,
        'churches_with_coordinates': with_coordinates,
        'geocoding_percentage': round((with_coordinates / total_approved * 100), 1) if total_approved > 0 else 0,
        'by_status': {value: status_counts.get(value, 0) for value in ChurchStatus.values},
        'upcoming_events': len(filter_events(_public_events(), EventFilters(date_range='thisMonth'))),
        'states': state_stats,
    })


class EventListAPIView(generics.ListAPIView):
    """
    API endpoint for the events calendar, filtered by `location`, `types`
    and `date_range`.
    """
    serializer_class = ChurchEventSerializer

    def get_queryset(self):
        filters = EventFilters.from_query_params(self.request.query_params)
        return filter_events(_public_events().select_related('church'), filters)


class EventDetailAPIView(generics.RetrieveAPIView):
    queryset = _public_events()
    serializer_class = ChurchEventSerializer
    lookup_field = 'id'


@api_view(['POST'])
@throttle_classes([GeocodingRateThrottle])
def geocoding_api(request):
    """
    API endpoint for address-to-coordinate conversion.

    POST /api/geocoding/
    {
        "address": "1 World Way, Los Angeles, CA 90045"
    }
    """
    serializer = GeocodingRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Address is required.'}, status=status.HTTP_400_BAD_REQUEST)

    result = get_gateways().geocoder.geocode(serializer.validated_data['address'])
    return Response({
        'success': True,
        'coordinates': {
            'lat': result['lat'],
            'lng': result['lng']
        },
        'display_name': result['display_name']
    })


@api_view(['POST'])
@throttle_classes([AssistantRateThrottle])
def assistant_api(request):
    """
    Faith assistant. Each question is answered on its own; the client keeps
    the conversation.

    POST /api/assistant/
    {
        "question": "When is Timkat celebrated?"
    }
    """
    serializer = AssistantRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Please enter a question.'}, status=status.HTTP_400_BAD_REQUEST)

    answer = get_gateways().assistant.ask(serializer.validated_data['question'])
    return Response({'answer': answer})


# Accounts

@api_view(['POST'])
@throttle_classes([RegistrationRateThrottle])
def signup_api(request):
    serializer = SignUpSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Please enter a valid email and password.'},
                        status=status.HTTP_400_BAD_REQUEST)

    identity = get_gateways().identity
    data = serializer.validated_data
    user = identity.sign_up(data['email'], data['password'], data['display_name'])
    _, token = identity.sign_in(request, data['email'], data['password'])

    return Response({
        'token': token,
        'profile': ProfileSerializer(identity.get_profile(user)).data
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
def login_api(request):
    serializer = SignInSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Email and password are required.'},
                        status=status.HTTP_400_BAD_REQUEST)

    identity = get_gateways().identity
    user, token = identity.sign_in(request, serializer.validated_data['email'],
                                   serializer.validated_data['password'])
    profile = identity.get_profile(user)
    return Response({'token': token, 'profile': ProfileSerializer(profile).data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_api(request):
    get_gateways().identity.sign_out(request)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
def me_api(request):
    identity = get_gateways().identity
    user = identity.require_user(request)
    return Response(ProfileSerializer(identity.get_profile(user)).data)


# Follows

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def followed_churches_api(request):
    follows = FollowedChurch.objects.filter(
        user=request.user,
        church__status=ChurchStatus.APPROVED
    ).select_related('church').order_by('church__name')
    return Response(FollowedChurchSerializer(follows, many=True).data)


@api_view(['POST', 'DELETE'])
@permission_classes([IsAuthenticated])
def follow_church_api(request, church_id):
    """Following twice, or unfollowing a church that is not followed, is a no-op."""
    if request.method == 'DELETE':
        FollowedChurch.objects.filter(user=request.user, church_id=church_id).delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    church = _public_churches().filter(pk=church_id).first()
    if church is None:
        raise ChurchNotFound(church_id=church_id)

    _, created = FollowedChurch.objects.get_or_create(user=request.user, church=church)
    return Response(
        {'church_id': church.pk, 'following': True},
        status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
    )


# Registration

def _load_registration(request) -> RegistrationWorkflow:
    gateways = get_gateways()
    return RegistrationWorkflow.from_dict(
        request.session.get(REGISTRATION_SESSION_KEY),
        geocoder=gateways.geocoder,
        storage=gateways.storage,
        identity=gateways.identity,
        notifier=gateways.notifier,
    )


def _save_registration(request, workflow: RegistrationWorkflow) -> None:
    request.session[REGISTRATION_SESSION_KEY] = workflow.to_dict()


def _registration_response(workflow, http_status=status.HTTP_200_OK, **extra):
    return Response({**workflow.to_dict(), **extra}, status=http_status)


@api_view(['GET'])
def registration_state_api(request):
    return _registration_response(_load_registration(request))


@api_view(['POST'])
def registration_advance_api(request):
    workflow = _load_registration(request)
    try:
        workflow.advance(_form_payload(request))
    finally:
        # Entered data is kept even when the step does not validate
        _save_registration(request, workflow)
    return _registration_response(workflow)


@api_view(['POST'])
def registration_back_api(request):
    workflow = _load_registration(request)
    workflow.back()
    _save_registration(request, workflow)
    return _registration_response(workflow)


@api_view(['POST'])
@throttle_classes([RegistrationRateThrottle])
def registration_submit_api(request):
    workflow = _load_registration(request)
    try:
        church = workflow.submit(
            request.user,
            image=request.FILES.get('image'),
            data=_form_payload(request) if request.data else None
        )
    finally:
        _save_registration(request, workflow)

    return _registration_response(
        workflow,
        http_status=status.HTTP_201_CREATED,
        church=AdminChurchSerializer(church).data,
        message='Church registered! It will appear in the directory once approved.'
    )


@api_view(['POST'])
def registration_reset_api(request):
    request.session.pop(REGISTRATION_SESSION_KEY, None)
    return _registration_response(_load_registration(request))


# Church admin

def _managed_church(request, church_id) -> Church:
    """
    Not found and not allowed are reported separately.
    """
    church = Church.objects.filter(pk=church_id).first()
    if church is None:
        raise ChurchNotFound(church_id=church_id)
    if not is_church_admin(request.user, church):
        logger.info(f"User {request.user.pk} denied access to church {church_id}")
        raise ChurchPermissionDenied('You are not an administrator of this church.')
    return church


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_churches_api(request):
    churches = Church.objects.filter(
        Q(admin_links__user=request.user) | Q(admin=request.user)
    ).distinct().order_by('name')
    return Response(AdminChurchSerializer(churches, many=True).data)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def my_church_detail_api(request, church_id):
    church = _managed_church(request, church_id)

    if request.method == 'GET':
        return Response({
            'church': AdminChurchSerializer(church).data,
            'form_data': church_to_form_data(church),
        })

    if request.method == 'DELETE':
        church_name = church.name
        church.delete()
        logger.info(f"Church {church_id} ({church_name}) deleted by user {request.user.pk}")
        return Response(status=status.HTTP_204_NO_CONTENT)

    form = church_to_form_data(church)
    form.update(_form_payload(request))

    gateways = get_gateways()
    church = update_church_listing(
        church, request.user, form,
        geocoder=gateways.geocoder,
        storage=gateways.storage,
        image=request.FILES.get('image'),
    )
    return Response({
        'church': AdminChurchSerializer(church).data,
        'form_data': church_to_form_data(church),
    })


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def church_events_api(request, church_id):
    church = _managed_church(request, church_id)

    if request.method == 'GET':
        return Response(ChurchEventSerializer(church.events.order_by('date'), many=True).data)

    serializer = ChurchEventSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Please fill in the event title, type and date.',
                         'fields': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)

    event = serializer.save(church=church, church_name=church.name)
    image = request.FILES.get('image')
    if image is not None:
        event.image_url = get_gateways().storage.upload_event_image(image, event.pk)
        event.save(update_fields=['image_url', 'updated_at'])

    logger.info(f"Event {event.pk} created for church {church.pk} by user {request.user.pk}")
    return Response(ChurchEventSerializer(event).data, status=status.HTTP_201_CREATED)


@api_view(['PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def church_event_detail_api(request, church_id, event_id):
    church = _managed_church(request, church_id)
    event = get_object_or_404(ChurchEvent, pk=event_id, church=church)

    if request.method == 'DELETE':
        event.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = ChurchEventSerializer(event, data=request.data, partial=True)
    if not serializer.is_valid():
        return Response({'error': 'Please check the event details.', 'fields': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)
    event = serializer.save()

    image = request.FILES.get('image')
    if image is not None:
        event.image_url = get_gateways().storage.upload_event_image(image, event.pk)
        event.save(update_fields=['image_url', 'updated_at'])

    return Response(ChurchEventSerializer(event).data)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def church_clergy_api(request, church_id):
    church = _managed_church(request, church_id)

    if request.method == 'GET':
        return Response(ClergyMemberSerializer(church.clergy.all(), many=True).data)

    serializer = ClergyMemberSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Please enter a name and role.', 'fields': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)

    member = serializer.save(church=church)
    image = request.FILES.get('image')
    if image is not None:
        member.image_url = get_gateways().storage.upload_church_image(
            image, church.pk, kind=f"clergy-{member.pk}"
        )
        member.save(update_fields=['image_url'])
    return Response(ClergyMemberSerializer(member).data, status=status.HTTP_201_CREATED)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated])
def church_clergy_detail_api(request, church_id, clergy_id):
    church = _managed_church(request, church_id)
    member = get_object_or_404(ClergyMember, pk=clergy_id, church=church)
    member.delete()
    return Response(status=status.HTTP_204_NO_CONTENT)


# Super admin

class AdminChurchListAPIView(generics.ListAPIView):
    """
    Review queue. `status` defaults to pending; `all` lists every church.
    """
    serializer_class = AdminChurchSerializer
    permission_classes = [IsAuthenticated, IsSuperAdmin]

    def get_queryset(self):
        requested = self.request.query_params.get('status') or ChurchStatus.PENDING
        queryset = Church.objects.select_related('admin').order_by('-created_at')
        if requested == 'all':
            return queryset
        if requested not in ChurchStatus.values:
            raise FilterValidationError(
                f"Status must be one of {', '.join(ChurchStatus.values)} or all."
            )
        return queryset.filter(status=requested)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def approve_church_api(request, church_id):
    church = approve_church(church_id, reviewer=request.user)
    return Response(AdminChurchSerializer(church).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def reject_church_api(request, church_id):
    church = reject_church(church_id, reviewer=request.user)
    return Response(AdminChurchSerializer(church).data)


@api_view(['GET'])
def form_options_api(request):
    """Choice lists for the search filters and the registration form."""
    return Response({
        'services': SERVICE_OPTIONS,
        'event_types': EVENT_TYPES,
        'languages': LANGUAGES,
        'days': DAYS_OF_WEEK,
        'repeat_options': REPEAT_OPTIONS,
        'distances': list(DISTANCE_CHOICES),
        'default_distance': DEFAULT_MAX_DISTANCE,
        'date_ranges': list(DATE_RANGES),
    })

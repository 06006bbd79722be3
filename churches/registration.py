"""
Church registration workflow.

A registration moves through three form steps and a terminal state:

    admin_info -> church_info -> church_details -> submitted

Each forward move is gated by validation of the current step. Going back
never throws away what was entered. Submitting runs the side effects
(geocoding, image upload, record creation, admin linkage, role change) in
order. The record, admin linkage and role change commit together, so a
failed submit leaves no church behind and the workflow stays on its
current step for the user to fix the input and try again.
"""

import copy
import logging
import re
from typing import Dict, List, Optional

from django.core.exceptions import NON_FIELD_ERRORS, ValidationError
from django.db import DatabaseError, transaction

from .constants import DEFAULT_REPEAT, LANGUAGES, REPEAT_OPTIONS, SERVICE_OPTIONS
from .exceptions import (
    AuthenticationRequired,
    ChurchFinderError,
    ChurchPermissionDenied,
    RegistrationValidationError,
)
from .models import Church, ChurchAdmin, ChurchStatus, UserRole

logger = logging.getLogger(__name__)

STEP_ADMIN_INFO = 'admin_info'
STEP_CHURCH_INFO = 'church_info'
STEP_CHURCH_DETAILS = 'church_details'
STEP_SUBMITTED = 'submitted'

FORM_STEPS = [STEP_ADMIN_INFO, STEP_CHURCH_INFO, STEP_CHURCH_DETAILS]

FEATURE_FIELDS = ['has_english_service', 'has_parking', 'wheelchair_accessible', 'has_school']

CHURCH_INFO_FIELDS = ['name', 'street_address', 'city', 'state', 'zip_code']

FORM_FIELDS = [
    'admin_name', 'admin_email', 'phone',
    'name', 'street_address', 'city', 'state', 'zip_code', 'description',
    'service_schedule', 'services', 'languages', 'features',
    'donation_zelle', 'donation_website',
]


def empty_schedule_entry(day: str = 'Sunday') -> Dict:
    return {'day': day, 'start_time': '', 'end_time': '', 'description': '', 'repeat': DEFAULT_REPEAT}


def empty_form_data() -> Dict:
    return {
        'admin_name': '',
        'admin_email': '',
        'phone': '',
        'name': '',
        'street_address': '',
        'city': '',
        'state': '',
        'zip_code': '',
        'description': '',
        'service_schedule': [empty_schedule_entry()],
        'services': {},
        'languages': {},
        'features': {field: False for field in FEATURE_FIELDS},
        'donation_zelle': '',
        'donation_website': '',
    }


# Time helpers

_DISPLAY_TIME_RE = re.compile(r'(\d+):(\d+)\s*(AM|PM)', re.IGNORECASE)
_FORM_TIME_RE = re.compile(r'^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$')


def format_time(time24: str) -> str:
    """
    '13:30' -> '1:30 PM', '00:15' -> '12:15 AM'. Empty input gives ''.
    """
    if not time24:
        return ''
    hours, minutes = time24.split(':')[:2]
    hour = int(hours)
    ampm = 'PM' if hour >= 12 else 'AM'
    hour12 = hour % 12 or 12
    return f"{hour12}:{minutes} {ampm}"


def _display_to_24(display: str) -> str:
    match = _DISPLAY_TIME_RE.search(display or '')
    if not match:
        return ''
    hours = int(match.group(1))
    minutes = match.group(2)
    ampm = match.group(3).upper()
    if ampm == 'PM' and hours != 12:
        hours += 12
    if ampm == 'AM' and hours == 12:
        hours = 0
    return f"{hours:02d}:{minutes}"


def parse_time(time_str: str) -> Dict[str, str]:
    """
    '9:00 AM - 11:00 AM' -> {'start_time': '09:00', 'end_time': '11:00'}
    """
    if not time_str:
        return {'start_time': '', 'end_time': ''}
    parts = time_str.split(' - ')
    start = parts[0].strip()
    end = parts[1].strip() if len(parts) > 1 else ''
    return {'start_time': _display_to_24(start), 'end_time': _display_to_24(end)}


def valid_schedule_entries(schedule: Optional[List[Dict]]) -> List[Dict]:
    return [entry for entry in (schedule or []) if entry.get('day') and entry.get('start_time')]


def transform_schedule(schedule: Optional[List[Dict]]) -> List[Dict]:
    """
    Turn form schedule rows into stored {day, time, description} entries.
    Rows without a day or start time are dropped.
    """
    transformed = []
    for entry in valid_schedule_entries(schedule):
        start = format_time(entry['start_time'])
        end = format_time(entry.get('end_time') or '')
        repeat = entry.get('repeat') or DEFAULT_REPEAT

        description = (entry.get('description') or '').strip()
        if not description:
            description = f"{entry['day']} Service"
            if repeat != DEFAULT_REPEAT:
                description += f" ({repeat})"

        transformed.append({
            'day': entry['day'],
            'time': f"{start} - {end}" if end else start,
            'description': description,
        })
    return transformed


def _checked(flags) -> List[str]:
    if isinstance(flags, dict):
        return [key for key, checked in flags.items() if checked]
    return list(flags or [])


def form_to_church_fields(form: Dict) -> Dict:
    """Map form data onto Church model fields."""
    features = form.get('features') or {}
    fields = {
        'name': form.get('name', '').strip(),
        'street_address': form.get('street_address', '').strip(),
        'city': form.get('city', '').strip(),
        'state': form.get('state', '').strip(),
        'zip_code': form.get('zip_code', '').strip(),
        'phone': form.get('phone', '').strip(),
        'description': form.get('description', '').strip(),
        'services': _checked(form.get('services')),
        'service_schedule': transform_schedule(form.get('service_schedule')),
        'languages': _checked(form.get('languages')),
        'donation_zelle': form.get('donation_zelle', '').strip(),
        'donation_website': form.get('donation_website', '').strip(),
    }
    for feature in FEATURE_FIELDS:
        fields[feature] = bool(features.get(feature, False))
    return fields


def church_to_form_data(church: Church) -> Dict:
    """Load an existing church into the edit form."""
    schedule = []
    for stored in church.service_schedule or []:
        parsed = parse_time(stored.get('time', ''))
        description = stored.get('description', '')
        # The repeat frequency only survives inside the generated description
        repeat = DEFAULT_REPEAT
        for option in REPEAT_OPTIONS[1:]:
            if option in description:
                repeat = option
                break
        schedule.append({
            'day': stored.get('day', ''),
            'start_time': parsed['start_time'],
            'end_time': parsed['end_time'],
            'description': description,
            'repeat': repeat,
        })

    form = empty_form_data()
    form.update({
        'phone': church.phone,
        'name': church.name,
        'street_address': church.street_address,
        'city': church.city,
        'state': church.state,
        'zip_code': church.zip_code,
        'description': church.description,
        'service_schedule': schedule or [empty_schedule_entry()],
        'services': {program: program in (church.services or []) for program in SERVICE_OPTIONS},
        'languages': {lang: lang in (church.languages or []) for lang in LANGUAGES},
        'features': dict(church.features),
        'donation_zelle': church.donation_zelle,
        'donation_website': church.donation_website,
    })
    return form


# Validation gates

def validate_admin_info(form: Dict) -> None:
    if not (form.get('phone') or '').strip():
        raise RegistrationValidationError('Please enter a phone number.')


def validate_church_info(form: Dict) -> None:
    if any(not (form.get(field) or '').strip() for field in CHURCH_INFO_FIELDS):
        raise RegistrationValidationError('Please fill in all required church information fields.')


def validate_church_details(form: Dict) -> None:
    entries = valid_schedule_entries(form.get('service_schedule'))
    if not entries:
        raise RegistrationValidationError(
            'Please add at least one service time with day and start time.'
        )
    for entry in entries:
        times = [entry['start_time'], entry.get('end_time') or '']
        if any(value and not _FORM_TIME_RE.match(str(value)) for value in times):
            raise RegistrationValidationError(
                f"Please enter {entry['day']} service times as HH:MM, for example 09:30."
            )
    if not _checked(form.get('languages')):
        raise RegistrationValidationError(
            'Please select at least one language spoken at your church.'
        )


# Field-specific sentences for model constraint failures
RECORD_FIELD_MESSAGES = {
    'name': 'Please enter a church name of at most 200 characters.',
    'street_address': 'Please enter a street address of at most 300 characters.',
    'city': 'Please enter a city of at most 100 characters.',
    'state': 'Please enter a state of at most 50 characters.',
    'zip_code': 'Please enter a ZIP code of at most 10 characters.',
    'phone': 'Please enter a phone number of at most 20 characters.',
    'donation_zelle': 'Please enter a Zelle contact of at most 200 characters.',
    'donation_website': 'Please enter a valid donation website, starting with http:// or https://.',
}


def validate_church_record(form: Dict) -> None:
    """
    Check the form against the Church model's own constraints (lengths,
    URL format) so nothing fails later when the record is saved.
    """
    church = Church(**form_to_church_fields(form))
    try:
        church.full_clean(exclude=['latitude', 'longitude', 'admin'], validate_unique=False)
    except ValidationError as e:
        errors = e.message_dict
        for field, message in RECORD_FIELD_MESSAGES.items():
            if field in errors:
                raise RegistrationValidationError(message, field=field)
        detail = errors.get(NON_FIELD_ERRORS) or next(iter(errors.values()))
        raise RegistrationValidationError(' '.join(detail))


STEP_VALIDATORS = {
    STEP_ADMIN_INFO: validate_admin_info,
    STEP_CHURCH_INFO: validate_church_info,
    STEP_CHURCH_DETAILS: validate_church_details,
}


def is_church_admin(user, church: Church, log: Optional[logging.Logger] = None) -> bool:
    """
    True when the user may manage the church.

    Ownership lives in two places: the ChurchAdmin join and the older
    single Church.admin field. The join is checked first; the legacy field
    is consulted when the join has no row or the lookup fails.
    """
    log = log or logger
    if user is None or not getattr(user, 'is_authenticated', False):
        return False

    try:
        if ChurchAdmin.objects.filter(user=user, church=church).exists():
            return True
    except DatabaseError:
        log.warning(
            f"Admin linkage lookup failed for user {user.pk}, church {church.pk}",
            exc_info=True
        )

    return church.admin_id is not None and church.admin_id == user.pk


def _run_step(log, operation: str, func, *args, **context):
    """
    Error boundary for one side-effect step: user-facing errors pass
    through, anything else is logged with context and replaced by a
    generic message.
    """
    try:
        return func(*args)
    except ChurchFinderError as e:
        log.warning(
            f"{operation} failed: {e.user_message}",
            extra={'operation': operation, **context}
        )
        raise
    except Exception:
        log.exception(
            f"{operation} failed unexpectedly",
            extra={'operation': operation, **context}
        )
        raise ChurchFinderError(operation=operation, **context)


class RegistrationWorkflow:
    """
    Multi-step church registration.

    The gateways are passed in; `form_data` and `step` round-trip through
    to_dict()/from_dict() so a draft can live in the session between
    requests.
    """

    def __init__(self, geocoder, storage, identity, notifier=None, log=None,
                 form_data=None, step=STEP_ADMIN_INFO, church_id=None):
        self.geocoder = geocoder
        self.storage = storage
        self.identity = identity
        self.notifier = notifier
        self.log = log or logger
        self.form_data = empty_form_data()
        if form_data:
            self.form_data.update(copy.deepcopy(form_data))
        self.step = step
        self.church_id = church_id

    # State

    def to_dict(self) -> Dict:
        return {
            'step': self.step,
            'form_data': copy.deepcopy(self.form_data),
            'church_id': self.church_id,
        }

    @classmethod
    def from_dict(cls, state: Optional[Dict], **gateways):
        state = state or {}
        return cls(
            form_data=state.get('form_data'),
            step=state.get('step', STEP_ADMIN_INFO),
            church_id=state.get('church_id'),
            **gateways
        )

    @property
    def is_submitted(self) -> bool:
        return self.step == STEP_SUBMITTED

    def update(self, data: Optional[Dict]) -> None:
        if self.is_submitted:
            raise RegistrationValidationError('This registration has already been submitted.')
        for key, value in (data or {}).items():
            if key in FORM_FIELDS:
                self.form_data[key] = copy.deepcopy(value)

    # Navigation

    def advance(self, data: Optional[Dict] = None) -> str:
        """Save the step's input, validate it and move forward one step."""
        self.update(data)
        if self.step == STEP_CHURCH_DETAILS:
            raise RegistrationValidationError('Submit the registration to finish.')

        STEP_VALIDATORS[self.step](self.form_data)
        self.step = FORM_STEPS[FORM_STEPS.index(self.step) + 1]
        return self.step

    def back(self) -> str:
        if self.is_submitted:
            raise RegistrationValidationError('This registration has already been submitted.')
        index = FORM_STEPS.index(self.step)
        if index > 0:
            self.step = FORM_STEPS[index - 1]
        return self.step

    # Submission

    def validate(self) -> None:
        for step in FORM_STEPS:
            STEP_VALIDATORS[step](self.form_data)
        validate_church_record(self.form_data)

    def submit(self, user, image=None, data: Optional[Dict] = None) -> Church:
        """
        Validate every step, then run the registration side effects.
        Returns the new pending church.
        """
        self.update(data)
        if self.step != STEP_CHURCH_DETAILS:
            raise RegistrationValidationError('Please complete every step before submitting.')

        # Validation happens before any gateway is touched
        self.validate()
        form = self.form_data

        # 1. Authenticated identity
        if user is None or not getattr(user, 'is_authenticated', False):
            self.log.info("Registration submitted without an authenticated user")
            raise AuthenticationRequired(
                'You must be signed in to register a church. Please sign in and try again.'
            )
        context = {'user_id': user.pk, 'church_name': form['name']}

        # 2. Geocode
        location = _run_step(
            self.log, 'registration.geocode',
            self.geocoder.geocode_address_components,
            form['street_address'], form['city'], form['state'], form['zip_code'],
            **context
        )

        # 3. Optional image under a temporary id
        image_url = ''
        if image is not None:
            temporary_id = self.storage.temporary_id()
            image_url = _run_step(
                self.log, 'registration.upload_image',
                self.storage.upload_church_image, image, temporary_id,
                **context
            )

        # Record, linkage and role commit together; a failure in any of
        # them leaves no church behind and the submit can be retried
        with transaction.atomic():
            # 4 + 5. Church record, always pending and unverified
            fields = form_to_church_fields(form)
            church = _run_step(
                self.log, 'registration.create_church',
                self._create_church, fields, location, image_url, user,
                **context
            )
            context['church_id'] = church.pk

            # 6. Move the image under the real church id
            if image is not None:
                try:
                    with transaction.atomic():
                        church.image_url = self.storage.upload_church_image(image, church.pk)
                        church.save(update_fields=['image_url', 'updated_at'])
                except Exception:
                    church.image_url = image_url
                    self.log.exception(
                        f"Re-uploading image for church {church.pk} failed; keeping temporary image",
                        extra={'operation': 'registration.reupload_image', **context}
                    )

            # 7. Admin linkage
            _run_step(
                self.log, 'registration.link_admin',
                lambda: ChurchAdmin.objects.get_or_create(user=user, church=church),
                **context
            )

            # 8. Role elevation
            _run_step(
                self.log, 'registration.update_role',
                self.identity.update_role, user.pk, UserRole.CHURCH_ADMIN,
                **context
            )

        self.church_id = church.pk
        self.log.info(
            f"Created pending church {church.pk}",
            extra={'operation': 'registration.create_church', **context}
        )

        # Operators hear about it; failing to tell them does not undo anything
        if self.notifier is not None:
            try:
                self.notifier.notify(church)
            except Exception:
                self.log.exception(
                    f"Registration notice for church {church.pk} failed",
                    extra={'operation': 'registration.notify', **context}
                )

        # 9. Done
        self.step = STEP_SUBMITTED
        return church

    def _create_church(self, fields: Dict, location: Dict, image_url: str, user) -> Church:
        church = Church(
            **fields,
            image_url=image_url,
            members=0,
            status=ChurchStatus.PENDING,
            is_verified=False,
            admin=user,
        )
        church.set_coordinates(location['lat'], location['lng'])
        church.save()
        return church


def update_church_listing(church: Church, user, form: Dict, geocoder, storage,
                          image=None, log=None) -> Church:
    """
    Apply an edit made by one of the church's admins.

    Runs the same validation as registration, re-geocodes only when the
    address changed, and never touches status, verification or ownership.
    """
    log = log or logger
    if not is_church_admin(user, church, log):
        raise ChurchPermissionDenied('You are not an administrator of this church.')

    validate_admin_info(form)
    validate_church_info(form)
    validate_church_details(form)
    validate_church_record(form)

    fields = form_to_church_fields(form)
    context = {'user_id': user.pk, 'church_id': church.pk}

    address_changed = any(
        fields[field] != getattr(church, field)
        for field in ['street_address', 'city', 'state', 'zip_code']
    )
    location = None
    if address_changed or not church.has_coordinates:
        location = _run_step(
            log, 'church_edit.geocode',
            geocoder.geocode_address_components,
            fields['street_address'], fields['city'], fields['state'], fields['zip_code'],
            **context
        )

    image_url = church.image_url
    if image is not None:
        image_url = _run_step(
            log, 'church_edit.upload_image',
            storage.upload_church_image, image, church.pk,
            **context
        )

    for field, value in fields.items():
        setattr(church, field, value)
    church.image_url = image_url
    if location is not None:
        church.set_coordinates(location['lat'], location['lng'])

    _run_step(log, 'church_edit.save', church.save, **context)
    log.info(f"Church {church.pk} updated by user {user.pk}")
    return church

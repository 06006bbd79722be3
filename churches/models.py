from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class ChurchStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'


class UserRole(models.TextChoices):
    USER = 'user', 'User'
    CHURCH_ADMIN = 'church_admin', 'Church admin'
    SUPER_ADMIN = 'super_admin', 'Super admin'


class Church(models.Model):
    """
    A church listing in the directory.
    Stores location, contact, schedule and review status for a parish.
    """

    # Basic church information
    name = models.CharField(
        max_length=200,
        help_text="Official name of the church"
    )
    description = models.TextField(blank=True)

    # Address fields
    street_address = models.CharField(
        max_length=300,
        help_text="Street address of the church"
    )
    city = models.CharField(
        max_length=100,
        help_text="City where the church is located"
    )
    state = models.CharField(
        max_length=50,
        help_text="State where the church is located"
    )
    zip_code = models.CharField(
        max_length=10,
        blank=True,
        help_text="ZIP code of the church location"
    )

    latitude = models.DecimalField(
        max_digits=10,
        decimal_places=7,
        null=True,
        blank=True,
        validators=[
            MinValueValidator(-90.0),
            MaxValueValidator(90.0)
        ],
        help_text="Latitude coordinate (-90 to 90)"
    )
    longitude = models.DecimalField(
        max_digits=10,
        decimal_places=7,
        null=True,
        blank=True,
        validators=[
            MinValueValidator(-180.0),
            MaxValueValidator(180.0)
        ],
        help_text="Longitude coordinate (-180 to 180)"
    )

    # Contact information
    phone = models.CharField(
        max_length=20,
        blank=True,
        help_text="Church phone number"
    )

    # Images (public URLs returned by the storage service)
    image_url = models.CharField(max_length=500, blank=True)
    interior_image_url = models.CharField(max_length=500, blank=True)

    members = models.PositiveIntegerField(default=0)

    # Service information
    services = models.JSONField(
        default=list,
        blank=True,
        help_text="Offered service categories, e.g. ['Sunday Service', 'Bible Study']"
    )
    service_schedule = models.JSONField(
        default=list,
        blank=True,
        help_text="List of {day, time, description} entries"
    )
    languages = models.JSONField(
        default=list,
        blank=True,
        help_text="Languages spoken during services"
    )

    # Features
    has_english_service = models.BooleanField(default=False)
    has_parking = models.BooleanField(default=False)
    wheelchair_accessible = models.BooleanField(default=False)
    has_school = models.BooleanField(
        default=False,
        help_text="Sunday school or cultural school"
    )

    # Donation contact info (displayed only)
    donation_zelle = models.CharField(max_length=200, blank=True)
    donation_website = models.URLField(blank=True)

    # Review status
    status = models.CharField(
        max_length=10,
        choices=ChurchStatus.choices,
        default=ChurchStatus.PENDING,
        db_index=True
    )
    is_verified = models.BooleanField(default=False)

    # Legacy single owner, kept alongside the ChurchAdmin join
    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='owned_churches'
    )
    verification_document_url = models.CharField(max_length=500, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Church"
        verbose_name_plural = "Churches"
        ordering = ['name']
        indexes = [
            models.Index(fields=['state', 'city'], name='church_state_city_idx'),
            models.Index(fields=['latitude', 'longitude'], name='church_lat_lng_idx'),
        ]

    def __str__(self):
        return f"{self.name} - {self.city}, {self.state}"

    def clean(self):
        super().clean()

        # Validate that both latitude and longitude are provided together
        if (self.latitude is None) != (self.longitude is None):
            raise ValidationError(
                "Both latitude and longitude must be provided together, or both left empty."
            )

        if not self.name.strip():
            raise ValidationError("Church name is required.")

        if not self.street_address.strip():
            raise ValidationError("Street address is required.")

        if not self.city.strip():
            raise ValidationError("City is required.")

        if not self.state.strip():
            raise ValidationError("State is required.")

        if self.is_verified and self.status != ChurchStatus.APPROVED:
            raise ValidationError("Only approved churches can be verified.")

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def full_address(self):
        """
        Returns the complete formatted address.
        """
        address_parts = [self.street_address, self.city, self.state]
        if self.zip_code:
            address_parts.append(self.zip_code)
        return ", ".join(part.strip() for part in address_parts if part.strip())

    @property
    def geocoding_address(self):
        """
        Returns address formatted for the geocoding service.
        """
        from .services import compose_address

        return compose_address(self.street_address, self.city, self.state, self.zip_code)

    @property
    def coordinates(self):
        """
        Returns coordinates as a tuple (latitude, longitude) or None if not available.
        """
        if self.latitude is not None and self.longitude is not None:
            return (float(self.latitude), float(self.longitude))
        return None

    @property
    def has_coordinates(self):
        return self.coordinates is not None

    @property
    def features(self):
        return {
            'has_english_service': self.has_english_service,
            'has_parking': self.has_parking,
            'wheelchair_accessible': self.wheelchair_accessible,
            'has_school': self.has_school,
        }

    @property
    def donation_info(self):
        info = {}
        if self.donation_zelle:
            info['zelle'] = self.donation_zelle
        if self.donation_website:
            info['website'] = self.donation_website
        return info

    def distance_to_point(self, latitude, longitude):
        """
        Great-circle distance in miles to a point, or None without coordinates.
        """
        from .search import haversine_miles

        if not self.has_coordinates:
            return None
        lat, lng = self.coordinates
        return haversine_miles(lat, lng, float(latitude), float(longitude))

    def set_coordinates(self, latitude, longitude):
        """
        Set coordinates for the church with validation.
        """
        if not (-90 <= float(latitude) <= 90):
            raise ValueError("Latitude must be between -90 and 90 degrees.")

        if not (-180 <= float(longitude) <= 180):
            raise ValueError("Longitude must be between -180 and 180 degrees.")

        # Convert to Decimal with proper precision (7 decimal places)
        self.latitude = Decimal(str(latitude)).quantize(Decimal('0.0000001'))
        self.longitude = Decimal(str(longitude)).quantize(Decimal('0.0000001'))


class ClergyMember(models.Model):
    church = models.ForeignKey(Church, on_delete=models.CASCADE, related_name='clergy')
    name = models.CharField(max_length=200)
    role = models.CharField(max_length=100, help_text='e.g. "Head Priest", "Deacon"')
    image_url = models.CharField(max_length=500, blank=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.role})"


class ChurchEvent(models.Model):
    """
    An event hosted by a church. Deleting a church that still has events is refused.
    """

    title = models.CharField(max_length=200)
    type = models.CharField(max_length=50, help_text='e.g. "Holiday", "Bible Study"')
    date = models.DateTimeField(db_index=True)
    location = models.CharField(max_length=300, blank=True)
    description = models.TextField(blank=True)
    image_url = models.CharField(max_length=500, blank=True)
    church = models.ForeignKey(
        Church,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='events'
    )
    church_name = models.CharField(max_length=200, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['date']

    def __str__(self):
        return f"{self.title} ({self.date:%Y-%m-%d})"

    def save(self, *args, **kwargs):
        if self.church_id and not self.church_name:
            self.church_name = self.church.name
        super().save(*args, **kwargs)


class Profile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='profile'
    )
    display_name = models.CharField(max_length=200, blank=True)
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.USER
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} ({self.role})"

    @property
    def email(self):
        return self.user.email

    @property
    def is_super_admin(self):
        return self.role == UserRole.SUPER_ADMIN


class ChurchAdmin(models.Model):
    """Links a user to a church they may manage."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='church_admin_links'
    )
    church = models.ForeignKey(Church, on_delete=models.CASCADE, related_name='admin_links')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'church'], name='unique_church_admin'),
        ]

    def __str__(self):
        return f"{self.user} -> {self.church.name}"


class FollowedChurch(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='followed_churches'
    )
    church = models.ForeignKey(Church, on_delete=models.CASCADE, related_name='followers')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'church'], name='unique_followed_church'),
        ]

    def __str__(self):
        return f"{self.user} follows {self.church.name}"

"""
Serializers for the churches API endpoints.
"""

from rest_framework import serializers

from .models import Church, ChurchEvent, ClergyMember, FollowedChurch, Profile


class CoordinatesMixin:
    def get_coordinates(self, obj):
        """
        Return coordinates as a dictionary with lat/lng keys for frontend convenience.
        """
        if obj.has_coordinates:
            return {
                'lat': float(obj.latitude),
                'lng': float(obj.longitude)
            }
        return None


class ClergyMemberSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClergyMember
        fields = ['id', 'name', 'role', 'image_url']
        read_only_fields = ['id']


class ChurchSerializer(CoordinatesMixin, serializers.ModelSerializer):
    """
    Serializer for Church model with all fields for detailed views.
    """
    coordinates = serializers.SerializerMethodField()
    full_address = serializers.ReadOnlyField()
    features = serializers.ReadOnlyField()
    donation_info = serializers.ReadOnlyField()
    clergy = ClergyMemberSerializer(many=True, read_only=True)
    distance = serializers.SerializerMethodField()

    class Meta:
        model = Church
        fields = [
            'id',
            'name',
            'description',
            'street_address',
            'city',
            'state',
            'zip_code',
            'full_address',
            'coordinates',
            'distance',
            'phone',
            'image_url',
            'interior_image_url',
            'members',
            'services',
            'service_schedule',
            'languages',
            'features',
            'donation_info',
            'clergy',
            'status',
            'is_verified',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields

    def get_distance(self, obj):
        """
        Distance from the user's location, set by the search engine when one was given.
        """
        distance = getattr(obj, 'distance', None)
        return round(distance, 1) if distance is not None else None


class ChurchListSerializer(CoordinatesMixin, serializers.ModelSerializer):
    """
    Lightweight serializer for church list views with essential fields only.
    """
    coordinates = serializers.SerializerMethodField()
    distance = serializers.SerializerMethodField()

    class Meta:
        model = Church
        fields = [
            'id',
            'name',
            'street_address',
            'city',
            'state',
            'zip_code',
            'coordinates',
            'distance',
            'phone',
            'image_url',
            'services',
            'languages',
            'is_verified'
        ]

    def get_distance(self, obj):
        distance = getattr(obj, 'distance', None)
        return round(distance, 1) if distance is not None else None


class ChurchMapSerializer(CoordinatesMixin, serializers.ModelSerializer):
    """
    Serializer optimized for map display with essential fields for popups.
    """
    coordinates = serializers.SerializerMethodField()

    class Meta:
        model = Church
        fields = [
            'id',
            'name',
            'full_address',
            'coordinates',
            'phone',
        ]


class AdminChurchSerializer(ChurchSerializer):
    """Adds ownership and review fields for admins."""

    admin_email = serializers.SerializerMethodField()

    class Meta(ChurchSerializer.Meta):
        fields = ChurchSerializer.Meta.fields + ['admin_email', 'verification_document_url']
        read_only_fields = fields

    def get_admin_email(self, obj):
        return obj.admin.email if obj.admin_id else None


class ChurchEventSerializer(serializers.ModelSerializer):
    church_id = serializers.PrimaryKeyRelatedField(source='church', read_only=True)

    class Meta:
        model = ChurchEvent
        fields = [
            'id',
            'title',
            'type',
            'date',
            'location',
            'description',
            'image_url',
            'church_id',
            'church_name',
            'created_at',
            'updated_at'
        ]
        read_only_fields = ['id', 'image_url', 'church_id', 'church_name', 'created_at', 'updated_at']

    def validate_title(self, value):
        if not value.strip():
            raise serializers.ValidationError('Title is required.')
        return value.strip()


class FollowedChurchSerializer(serializers.ModelSerializer):
    church = ChurchListSerializer(read_only=True)

    class Meta:
        model = FollowedChurch
        fields = ['church', 'created_at']


class ProfileSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(source='user.id', read_only=True)
    email = serializers.ReadOnlyField()

    class Meta:
        model = Profile
        fields = ['id', 'email', 'display_name', 'role']
        read_only_fields = fields


class SignUpSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)
    display_name = serializers.CharField(required=False, allow_blank=True, default='')


class SignInSerializer(serializers.Serializer):
    email = serializers.CharField()
    password = serializers.CharField(write_only=True)


class GeocodingRequestSerializer(serializers.Serializer):
    address = serializers.CharField(allow_blank=True, trim_whitespace=True)


class AssistantRequestSerializer(serializers.Serializer):
    question = serializers.CharField(max_length=1000)

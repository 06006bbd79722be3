from django.contrib import admin, messages

from .approval import approve_church, reject_church
from .exceptions import InvalidStatusTransition
from .models import Church, ChurchAdmin, ChurchEvent, ClergyMember, FollowedChurch, Profile


class ClergyMemberInline(admin.TabularInline):
    model = ClergyMember
    extra = 0


class ChurchAdminInline(admin.TabularInline):
    model = ChurchAdmin
    extra = 0
    raw_id_fields = ['user']


@admin.register(Church)
class ChurchModelAdmin(admin.ModelAdmin):
    """
    Admin interface for Church model with review actions.
    """

    list_display = [
        'name',
        'city',
        'state',
        'status',
        'is_verified',
        'has_coordinates',
        'updated_at'
    ]

    list_filter = [
        'status',
        'is_verified',
        'state',
        'created_at',
    ]

    search_fields = [
        'name',
        'city',
        'state',
        'street_address',
        'zip_code'
    ]

    readonly_fields = [
        'created_at',
        'updated_at',
        'full_address',
        'coordinates'
    ]

    fieldsets = (
        ('Basic Information', {
            'fields': ('name', 'description', 'members', 'status', 'is_verified', 'admin')
        }),
        ('Address', {
            'fields': ('street_address', 'city', 'state', 'zip_code', 'full_address')
        }),
        ('Coordinates', {
            'fields': ('latitude', 'longitude', 'coordinates'),
            'description': 'Geographic coordinates for mapping. Both latitude and longitude must be provided together.'
        }),
        ('Contact Information', {
            'fields': ('phone', 'image_url', 'interior_image_url'),
            'classes': ('collapse',)
        }),
        ('Service Information', {
            'fields': ('services', 'service_schedule', 'languages', 'has_english_service',
                       'has_parking', 'wheelchair_accessible', 'has_school'),
            'classes': ('collapse',)
        }),
        ('Donations', {
            'fields': ('donation_zelle', 'donation_website'),
            'classes': ('collapse',)
        }),
        ('Metadata', {
            'fields': ('verification_document_url', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        })
    )

    raw_id_fields = ['admin']
    inlines = [ClergyMemberInline, ChurchAdminInline]
    actions = ['approve_selected', 'reject_selected']
    ordering = ['status', 'state', 'city', 'name']

    def has_coordinates(self, obj):
        """Display whether the church has coordinates."""
        return obj.has_coordinates
    has_coordinates.boolean = True
    has_coordinates.short_description = 'Has Coordinates'

    def _review(self, request, queryset, transition, verb):
        done = 0
        for church in queryset:
            try:
                transition(church.pk, reviewer=request.user)
                done += 1
            except InvalidStatusTransition:
                self.message_user(request, f"{church.name} was already {church.status}.", messages.WARNING)
        if done:
            self.message_user(request, f"{verb} {done} church(es).", messages.SUCCESS)

    @admin.action(description='Approve selected pending churches')
    def approve_selected(self, request, queryset):
        self._review(request, queryset, approve_church, 'Approved')

    @admin.action(description='Reject selected pending churches')
    def reject_selected(self, request, queryset):
        self._review(request, queryset, reject_church, 'Rejected')


@admin.register(ChurchEvent)
class ChurchEventAdmin(admin.ModelAdmin):
    list_display = ['title', 'type', 'date', 'church_name']
    list_filter = ['type', 'date']
    search_fields = ['title', 'location', 'church_name']
    raw_id_fields = ['church']


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'display_name', 'role', 'created_at']
    list_filter = ['role']
    search_fields = ['user__email', 'display_name']


@admin.register(FollowedChurch)
class FollowedChurchAdmin(admin.ModelAdmin):
    list_display = ['user', 'church', 'created_at']
    raw_id_fields = ['user', 'church']

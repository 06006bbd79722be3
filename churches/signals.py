from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Profile


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_profile(sender, instance, created, **kwargs):
    """Every account gets a profile with the default 'user' role."""
    if created:
        Profile.objects.get_or_create(
            user=instance,
            defaults={'display_name': instance.get_full_name() or ''}
        )

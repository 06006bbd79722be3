from django.apps import AppConfig, apps


class ChurchesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'churches'
    verbose_name = 'Churches'

    def ready(self):
        # Registers the profile signal handlers
        from . import signals  # noqa: F401
        from .identity import IdentityGateway
        from .services import (
            AssistantService,
            GeocodingService,
            RegistrationNotifier,
            StorageService,
        )

        # Gateways live as long as the app does and are injected into the
        # workflows by the views
        self.identity = IdentityGateway()
        self.geocoder = GeocodingService()
        self.storage = StorageService()
        self.assistant = AssistantService()
        self.notifier = RegistrationNotifier()


def get_gateways() -> ChurchesConfig:
    return apps.get_app_config('churches')

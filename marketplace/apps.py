from django.apps import AppConfig


class MarketplaceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "marketplace"

    def ready(self):
        from django.conf import settings

        if getattr(settings, "TRACING_ENABLED", False):
            from marketplace.infra.observability.tracing import setup_tracing

            setup_tracing(
                service_name=getattr(settings, "TRACING_SERVICE_NAME", "marketplace-orders"),
                console_export=getattr(settings, "TRACING_CONSOLE_EXPORT", False),
            )

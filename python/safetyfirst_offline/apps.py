from django.apps import AppConfig


class SafetyFirstOfflineConfig(AppConfig):
    name = "safetyfirst_offline"
    verbose_name = "SafetyFirst offline sync"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        # Import checks module so @register() decorators are executed
        import safetyfirst_offline.checks  # noqa: F401

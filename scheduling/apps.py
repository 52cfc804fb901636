from django.apps import AppConfig


class SchedulingConfig(AppConfig):
    """Day-specific escort assignments for talent and talent groups."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "scheduling"
    verbose_name = "Escort Scheduling"

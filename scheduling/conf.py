from django.conf import settings

DEFAULTS = {
    "STORAGE_CONFLICT_RETRIES": 1,
    "EMIT_CHANGE_EVENTS": True,
}


def get_setting(name: str):
    """Read an engine option from the ``SCHEDULING`` setting, falling back to DEFAULTS."""
    overrides = getattr(settings, "SCHEDULING", None) or {}
    return overrides.get(name, DEFAULTS[name])

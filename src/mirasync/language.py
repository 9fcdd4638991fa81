"""Display language detection and resolution."""

from __future__ import annotations

import locale

SUPPORTED_LANGUAGES = ("en", "fr", "es", "de", "it", "pt")
SYSTEM_LANGUAGE = "system"
_FALLBACK = "en"


def get_device_language(locale_code: str | None = None) -> str:
    """Map a locale code (``fr_FR``, ``pt-BR``...) to a supported language.

    Without an explicit code the process locale is used. Anything not
    supported falls back to English.
    """
    if not locale_code:
        locale_code = locale.getlocale()[0] or ""
    code = locale_code.lower()
    for language in SUPPORTED_LANGUAGES:
        if code.startswith(language):
            return language
    return _FALLBACK


def resolve_language(preference: str, device_language: str | None = None) -> str:
    """Return the effective display language for a stored preference."""
    if preference == SYSTEM_LANGUAGE:
        return get_device_language(device_language)
    return preference

"""Internationalization module - provides t("key") for alert text.

Every string the engine shows to the user (alert titles, bodies, in-app
messages) goes through t("key"). Placeholders use {name} and are filled
by the caller with str.format.
"""
from typing import Dict

from config import LANGUAGE

_current_language: str = "en"

LANGUAGES: Dict[str, Dict[str, str]] = {
    "en": {"name": "English", "flag": "🇬🇧", "code": "EN"},
    "es": {"name": "Español", "flag": "🇪🇸", "code": "ES"},
}

_TRANSLATIONS: Dict[str, Dict[str, str]] = {
    # Generic note used when the original session note is not available (restored timers)
    "unnamed_location": {"en": "Your parked car", "es": "Ubicación sin nombre"},

    # Reminder alert
    "reminder_title": {"en": "⏰ Parking reminder", "es": "⏰ Recordatorio de aparcamiento"},
    "reminder_body": {
        "en": "{note}: parking expires in {time}",
        "es": "{note}: el aparcamiento expira en {time}",
    },

    # Expiry alert
    "expiry_title": {"en": "🚨 Parking expired!", "es": "🚨 ¡Tiempo agotado!"},
    "expiry_body": {
        "en": "{note}: your parking time has ended. Time to move the car.",
        "es": "{note}: tu tiempo de aparcamiento ha finalizado. Es hora de mover el coche.",
    },

    # Passive in-app messages
    "notifications_unsupported": {
        "en": "Notifications are not available on this device",
        "es": "Las notificaciones no están disponibles en este dispositivo",
    },
    "notifications_denied": {
        "en": "Notifications are blocked - enable them in system settings",
        "es": "Las notificaciones están bloqueadas - actívalas en los ajustes",
    },
    "timer_extended": {
        "en": "Timer extended {minutes} min for {note}",
        "es": "Temporizador extendido {minutes} minutos para: {note}",
    },

    # Test alerts
    "test_title": {"en": "🧪 Test notification", "es": "🧪 Notificación de prueba"},
    "test_body": {
        "en": "Notifications are working",
        "es": "Las notificaciones funcionan",
    },
    "test_scheduled_title": {"en": "🧪 Scheduled test", "es": "🧪 Prueba programada"},
    "test_scheduled_body": {
        "en": "This alert was scheduled {seconds} seconds ago",
        "es": "Esta alerta se programó hace {seconds} segundos",
    },

    # Device recommendations
    "hint_unsupported": {
        "en": "This device cannot show notifications - keep Aparky open to see alerts",
        "es": "Este dispositivo no puede mostrar notificaciones - mantén Aparky abierta",
    },
    "hint_enable_permission": {
        "en": "Enable notifications for Aparky in system settings",
        "es": "Activa las notificaciones de Aparky en los ajustes del sistema",
    },
    "hint_grant_permission": {
        "en": "Allow notifications when asked so alerts arrive in the background",
        "es": "Permite las notificaciones para recibir alertas en segundo plano",
    },
    "hint_keep_open": {
        "en": "Background alerts are unavailable - alerts only arrive while Aparky runs",
        "es": "Sin alertas en segundo plano - solo llegan con Aparky abierta",
    },
}


def get_language() -> str:
    """Get the current language code."""
    return _current_language


def set_language(lang: str) -> None:
    """Set the current language. Unknown codes are ignored."""
    global _current_language
    if lang in LANGUAGES:
        _current_language = lang


def t(key: str) -> str:
    """Get translated string for the given key.

    Falls back to English, then to the key itself.
    """
    translations = _TRANSLATIONS.get(key)
    if translations is None:
        return key
    return translations.get(_current_language) or translations.get("en") or key


set_language(LANGUAGE)

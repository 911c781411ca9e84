"""Centralized configuration.

Quick start::

    from taskward.core.config import get_settings

    settings = get_settings()
    print(settings.retry_window_minutes)   # 60

Guardrails:
    ❌ Parsing env vars ad-hoc in each module
    ✅ ``get_settings().database_url`` from the cached singleton
"""

from .settings import TaskwardSettings, clear_settings_cache, get_settings

__all__ = [
    "TaskwardSettings",
    "get_settings",
    "clear_settings_cache",
]

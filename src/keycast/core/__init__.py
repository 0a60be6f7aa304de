"""keycast core module.

Shared components used across the worker and the command line:
- Configuration management
- Settings accessor
"""

from keycast.core.config import (
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    MessageSettings,
    ProvisioningSettings,
    ScheduleSettings,
    Settings,
    TelegramSettings,
)
from keycast.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "MessageSettings",
    "ProvisioningSettings",
    "ScheduleSettings",
    "Settings",
    "TelegramSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]

"""
Configuration Module

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, metric names, span names and HTTP headers
"""

from genai_relay.core.config.constants import ErrorClass, RequestStatus, Stage
from genai_relay.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    "ErrorClass",
    "RequestStatus",
    "Settings",
    "Stage",
    "get_settings",
    "reload_settings",
]

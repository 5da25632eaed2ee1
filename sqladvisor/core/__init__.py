"""
Core module - Configuration, constants, exceptions, and logging

Provides:
- Settings/Config management
- Custom exceptions
- Logging
"""

from sqladvisor.core.config import Settings, AISettings, LoggingSettings, get_settings, reset_settings
from sqladvisor.core.constants import *
from sqladvisor.core.exceptions import *
from sqladvisor.core.logger import (
    get_logger,
    setup_logging,
    setup_logging_from_settings,
    request_scope,
    current_request_id,
    LogContext,
)

__all__ = [
    # Config
    "Settings",
    "AISettings",
    "LoggingSettings",
    "get_settings",
    "reset_settings",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_settings",
    "request_scope",
    "current_request_id",
    "LogContext",
]

from .models import (
    EXIT_CODE_UNKNOWN,
    READ_CHUNK_SIZE_DEFAULT,
    VAR_PATTERN,
    CommandSpec,
    LoggingSettings,
    LogLevel,
    OnText,
    ProcessEnvSettings,
    ProcessSettings,
    Settings,
    StartConfig,
)
from .loader import load_settings

__all__ = [
    "EXIT_CODE_UNKNOWN",
    "READ_CHUNK_SIZE_DEFAULT",
    "VAR_PATTERN",
    "CommandSpec",
    "LoggingSettings",
    "LogLevel",
    "OnText",
    "ProcessEnvSettings",
    "ProcessSettings",
    "Settings",
    "StartConfig",
    "load_settings",
]

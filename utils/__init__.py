"""
Utils Module
Logging setup and error taxonomy.
"""
from .logger import configure_package_loggers, get_logger, setup_logger
from .exceptions import (
    ConfigurationError,
    LedgerError,
    PodcastEngineError,
    ResponseDecodeError,
    RetryableStepError,
    ScriptGateError,
    SelectionValidationError,
    StepError,
    StepFailedError,
    StorageError,
)

__all__ = [
    "configure_package_loggers",
    "setup_logger",
    "get_logger",
    "PodcastEngineError",
    "ConfigurationError",
    "StorageError",
    "LedgerError",
    "StepError",
    "RetryableStepError",
    "StepFailedError",
    "ResponseDecodeError",
    "ScriptGateError",
    "SelectionValidationError",
]

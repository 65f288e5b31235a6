"""
Configuration Management Module
Environment-backed settings resolved once per invocation.
"""
from .settings import (
    DigestSettings,
    ScriptGateSettings,
    SelectionSettings,
    Settings,
    StepSettings,
    StorageSettings,
    get_selection_settings,
    get_settings,
    get_step_settings,
    get_storage_settings,
    split_csv,
)

__all__ = [
    "Settings",
    "SelectionSettings",
    "DigestSettings",
    "ScriptGateSettings",
    "StepSettings",
    "StorageSettings",
    "get_settings",
    "get_selection_settings",
    "get_step_settings",
    "get_storage_settings",
    "split_csv",
]

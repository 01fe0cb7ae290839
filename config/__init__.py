"""
Configuration Management Module
"""
from .settings import (
    BudgetSettings,
    FetchSettings,
    GenerationSettings,
    OriginalitySettings,
    RunSettings,
    Settings,
    ValidationSettings,
    get_fetch_settings,
    get_generation_settings,
    get_run_settings,
    get_settings,
)

__all__ = [
    "Settings",
    "FetchSettings",
    "GenerationSettings",
    "ValidationSettings",
    "OriginalitySettings",
    "BudgetSettings",
    "RunSettings",
    "get_settings",
    "get_fetch_settings",
    "get_generation_settings",
    "get_run_settings",
]

"""Configuration module for loading and managing application settings"""
from typing import Dict, Any
from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS
import os

__all__ = ['settings_conf', 'load_settings_conf', 'reload_settings', 'SettingsError', 'DEFAULTS']

SETTINGS_PATH_ENV = 'SPLIT_SETTINGS_PATH'


def reload_settings() -> Dict[str, Any]:
    """Re-read settings.conf and environment overrides in place."""
    fresh = load_settings_conf(os.environ.get(SETTINGS_PATH_ENV, '.'))
    settings_conf.clear()
    settings_conf.update(fresh)
    return settings_conf


try:
    settings_conf: Dict[str, Any] = load_settings_conf(os.environ.get(SETTINGS_PATH_ENV, '.'))

except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "See examples/settings.conf.example for the available settings."
    )

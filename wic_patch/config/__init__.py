"""Configuration for wic-patch."""

from .settings import DEFAULT_SETTINGS, PatchSettings, load_settings, save_settings


__all__ = ["DEFAULT_SETTINGS", "PatchSettings", "load_settings", "save_settings"]

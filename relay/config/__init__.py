"""Configuration module for the attendance relay."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]

"""Configuration module"""
from .settings import StrestSettings, get_settings

__all__ = ["StrestSettings", "get_settings"]

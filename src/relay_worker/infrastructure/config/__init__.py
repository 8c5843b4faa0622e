"""
Configuration Infrastructure
"""

from .settings import WorkerSettings, load_settings, parse_duration

__all__ = ["WorkerSettings", "load_settings", "parse_duration"]

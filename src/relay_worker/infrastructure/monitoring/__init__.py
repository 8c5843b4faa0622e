"""
Monitoring Infrastructure
"""

from .metrics import MetricsCollector, current_rss_mb

__all__ = ["MetricsCollector", "current_rss_mb"]

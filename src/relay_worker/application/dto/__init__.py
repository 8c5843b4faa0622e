"""
Data Transfer Objects
"""

from .job_context import RequestContextDTO, ResponseContextDTO

__all__ = ["RequestContextDTO", "ResponseContextDTO"]

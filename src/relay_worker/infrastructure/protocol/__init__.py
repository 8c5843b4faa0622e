"""
Wire Protocol

Frame envelope and job payload codecs.
"""

from .frame_codec import HEADER_SIZE, FrameCodec
from .job_codec import JobCodec

__all__ = ["HEADER_SIZE", "FrameCodec", "JobCodec"]

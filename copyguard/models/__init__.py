"""
Pydantic models for collection records, assessment runs and API payloads.
"""

from .image import *
from .assessment import *
from .responses import *

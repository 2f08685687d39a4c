"""
Core screening pipeline: collection state, background indexing,
candidate selection and assessment orchestration.
"""

from .collection import *
from .selector import *
from .indexer import *
from .orchestrator import *

"""
Image fingerprinting, distance metrics and external oracle adapters.
"""

from .image_hash import *
from .similarity import *
from .oracles import *

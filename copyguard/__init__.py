"""
CopyGuard - Copyright Risk Screening for Images

Finds the images in a protected collection that a newly submitted image
most likely copies, using perceptual fingerprints and embedding similarity
to short-list candidates before handing them to a multimodal verifier.
"""

__version__ = "1.0.0"
__author__ = "CopyGuard Team"
__description__ = "Copyright risk screening for images"

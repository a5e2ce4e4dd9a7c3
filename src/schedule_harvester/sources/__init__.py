"""Source extractors.

Site-specific document parsing lives here, behind the ``Extractor`` interface.
"""

from .base import Extractor, clean_url
from .kpopofficial import KpopOfficialExtractor
from .sections import Block, window_sections

__all__ = [
    "Block",
    "Extractor",
    "KpopOfficialExtractor",
    "clean_url",
    "window_sections",
]

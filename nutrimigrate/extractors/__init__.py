"""Legacy source readers."""

from .base import BaseExtractor
from .parse_extractor import ParseExtractor

__all__ = ["BaseExtractor", "ParseExtractor"]

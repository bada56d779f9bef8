"""
In-memory dedup state for the crawler.
"""

from .duplicate_detector import URLHistory, FingerprintIndex, alias_group

__all__ = ['URLHistory', 'FingerprintIndex', 'alias_group']

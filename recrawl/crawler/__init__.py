"""
Web crawler core components.
"""

from .url_frontier import URLFrontier
from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser
from .resolver import URLResolver, normalize_url
from .scope import Scope
from .traps import is_trapped
from .scheduler import CrawlerScheduler, CrawlResult, CrawlStats, SeedError

__all__ = [
    'URLFrontier',
    'WebFetcher', 'FetchResult',
    'ContentParser',
    'URLResolver', 'normalize_url',
    'Scope', 'is_trapped',
    'CrawlerScheduler', 'CrawlResult', 'CrawlStats', 'SeedError'
]

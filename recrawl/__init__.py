"""
recrawl

A concurrent web crawler that mines every in-scope URL it can reach from
response bodies and robots.txt, skipping repeated URLs, link traps and
near-duplicate pages.
"""

__version__ = "1.0.0"
__description__ = "Concurrent web crawler for URL discovery"

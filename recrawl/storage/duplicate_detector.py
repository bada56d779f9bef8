"""
Duplicate detection for URLs and response content.

Two independent layers keep a crawl from doing the same work twice:
URLHistory remembers which canonical URLs (and their query aliases) were
already claimed for fetching, and FingerprintIndex remembers fuzzy hashes of
accepted bodies per host so that near-identical pages are only processed once.
All state lives in memory for a single crawler instance.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set
from urllib.parse import parse_qsl, urlsplit

import ppdeep


# Bodies shorter than this are too small for a meaningful fuzzy hash
MIN_FINGERPRINT_SIZE = 4096
DEFAULT_SIMILARITY_THRESHOLD = 97


def alias_group(query: str) -> Dict[str, str]:
    """Map each query parameter name to its first value."""
    params: Dict[str, str] = {}
    for name, value in parse_qsl(query, keep_blank_values=True):
        params.setdefault(name, value)
    return params


class URLHistory:
    """
    Visited URLs and hosts for one crawl.

    URLs are compared by host and path, ignoring the scheme. A query-bearing
    URL also counts as visited when the same path was visited with any query,
    or when another URL with the same path already carried all of its parameters
    with the same first values.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        self.visited: Set[str] = set()
        self.hosts: Set[str] = set()

        self._bare_keys: Set[str] = set()
        self._query_keys: Set[str] = set()
        self._aliases: Dict[str, List[Dict[str, str]]] = defaultdict(list)

        self.stats = {
            'total_checks': 0,
            'exact_duplicates': 0,
            'path_duplicates': 0,
            'alias_duplicates': 0,
        }

    def is_visited(self, url: str) -> bool:
        """Check if this exact canonical URL was claimed."""
        return url in self.visited

    def is_visited_host(self, host: str) -> bool:
        """Check if robots.txt was already scheduled for a host."""
        return host in self.hosts

    def redundancy(self, url: str) -> Optional[str]:
        """
        Explain why a URL would repeat earlier work.

        Returns:
            'exact', 'path' or 'alias', or None if the URL is new
        """
        if url in self.visited:
            return 'exact'

        parts = urlsplit(url)
        key = parts.netloc + parts.path

        if not parts.query:
            return 'path' if key in self._bare_keys else None

        if key in self._bare_keys:
            return 'path'

        params = alias_group(parts.query)
        # linear in the number of query URLs visited on this path
        for other in self._aliases.get(key, ()):
            if all(other.get(name) == value for name, value in params.items()):
                return 'alias'

        return 'path' if key in self._query_keys else None

    def is_redundant(self, url: str) -> bool:
        """Check if a URL is a duplicate or alias of a visited URL."""
        return self.redundancy(url) is not None

    def claim(self, url: str) -> bool:
        """
        Mark a URL as visited unless it repeats earlier work.

        The check and the insert happen without yielding to the event loop,
        so two workers can never both claim the same URL.

        Returns:
            True if the caller may fetch the URL
        """
        self.stats['total_checks'] += 1

        reason = self.redundancy(url)
        if reason is not None:
            self.stats[f'{reason}_duplicates'] += 1
            self.logger.debug(f"Duplicate URL ({reason}): {url}")
            return False

        self.visited.add(url)

        parts = urlsplit(url)
        key = parts.netloc + parts.path
        if parts.query:
            self._query_keys.add(key)
            self._aliases[key].append(alias_group(parts.query))
        else:
            self._bare_keys.add(key)

        return True

    def claim_host(self, host: str) -> bool:
        """
        Mark a host as having its robots.txt scheduled.

        Returns:
            True the first time a host is claimed, False afterwards
        """
        if host in self.hosts:
            return False
        self.hosts.add(host)
        return True

    def get_stats(self) -> Dict[str, int]:
        """Get URL history statistics."""
        return {
            **self.stats,
            'total_visited': len(self.visited),
            'total_hosts': len(self.hosts),
        }


class FingerprintIndex:
    """
    Near-duplicate content detection with ssdeep fuzzy hashes.

    Every accepted body leaves its fuzzy hash under its host. A new body whose
    similarity score against any stored hash of the same host reaches the
    threshold is reported as a near-duplicate and is not stored.
    """

    def __init__(self, threshold: int = DEFAULT_SIMILARITY_THRESHOLD,
                 min_size: int = MIN_FINGERPRINT_SIZE):
        self.threshold = threshold
        self.min_size = min_size
        self.logger = logging.getLogger(__name__)

        self.fingerprints: Dict[str, List[str]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        self.stats = {
            'total_checks': 0,
            'content_duplicates': 0,
            'too_small': 0,
        }

    @staticmethod
    def fingerprint(body: bytes) -> str:
        """Compute the fuzzy hash of a body."""
        return ppdeep.hash(body)

    def similarity(self, host: str, fingerprint: str) -> int:
        """Highest similarity score (0-100) against the stored hashes of a host."""
        return max(
            (ppdeep.compare(existing, fingerprint) for existing in self.fingerprints.get(host, ())),
            default=0
        )

    async def is_near_duplicate(self, host: str, body: bytes) -> bool:
        """
        Check a body against the host's accepted bodies and remember it if new.

        Hashing, comparison and insertion run under a per-host lock so that two
        workers cannot both accept the same near-duplicate.

        Returns:
            True if the body is a near-duplicate and should be dropped
        """
        self.stats['total_checks'] += 1

        if len(body) < self.min_size:
            self.stats['too_small'] += 1
            return False

        async with self._locks[host]:
            fingerprint = await asyncio.to_thread(self.fingerprint, body)

            score = self.similarity(host, fingerprint)
            if score >= self.threshold:
                self.stats['content_duplicates'] += 1
                self.logger.debug(f"Near-duplicate content on {host} (score {score})")
                return True

            self.fingerprints[host].append(fingerprint)
            return False

    def get_stats(self) -> Dict[str, int]:
        """Get content fingerprint statistics."""
        return {
            **self.stats,
            'total_fingerprints': sum(len(hashes) for hashes in self.fingerprints.values()),
            'total_hosts': len(self.fingerprints),
        }

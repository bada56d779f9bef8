"""
Host scope matching for include/exclude rules.
"""

import fnmatch
import ipaddress
import logging
from typing import Iterable, List, Optional


class Scope:
    """
    Decides which hosts are eligible for crawling.

    Patterns can be an exact host name, a wildcard such as ``*.example.com``
    or a CIDR network (``10.0.0.0/24``) for IP hosts. Exclusions always win;
    with no inclusions every host that is not excluded is in scope.
    """

    def __init__(self, include: Optional[Iterable[str]] = None,
                 exclude: Optional[Iterable[str]] = None):
        self.includes: List[str] = []
        self.excludes: List[str] = []
        self.logger = logging.getLogger(__name__)

        for pattern in include or []:
            self.add_include(pattern)
        for pattern in exclude or []:
            self.add_exclude(pattern)

    @staticmethod
    def _clean(pattern: str) -> str:
        """Reduce a pattern to a bare lowercase host pattern."""
        pattern = pattern.strip().lower()
        if '://' in pattern:
            pattern = pattern.split('://', 1)[1]
        if not _is_network(pattern):
            pattern = pattern.split('/', 1)[0]
        if pattern.startswith('['):
            return pattern[1:].split(']', 1)[0]
        # host:port, but not a bare IPv6 address
        if pattern.count(':') == 1:
            pattern = pattern.split(':', 1)[0]
        return pattern

    def add_include(self, pattern: str):
        """Add a host pattern to the inclusion list."""
        pattern = self._clean(pattern)
        if pattern and pattern not in self.includes:
            self.includes.append(pattern)
            self.logger.debug(f"Scope include added: {pattern}")

    def add_exclude(self, pattern: str):
        """Add a host pattern to the exclusion list."""
        pattern = self._clean(pattern)
        if pattern and pattern not in self.excludes:
            self.excludes.append(pattern)
            self.logger.debug(f"Scope exclude added: {pattern}")

    def is_in_scope(self, host: str) -> bool:
        """Check if a host is allowed by the current rules."""
        if not host:
            return False

        host = self._clean(host)

        if any(_matches(host, pattern) for pattern in self.excludes):
            return False

        if not self.includes:
            return True

        return any(_matches(host, pattern) for pattern in self.includes)


def _is_network(pattern: str) -> bool:
    try:
        ipaddress.ip_network(pattern, strict=False)
        return '/' in pattern
    except ValueError:
        return False


def _matches(host: str, pattern: str) -> bool:
    if host == pattern:
        return True

    if _is_network(pattern):
        try:
            return ipaddress.ip_address(host) in ipaddress.ip_network(pattern, strict=False)
        except ValueError:
            return False

    return fnmatch.fnmatchcase(host, pattern)

"""
Response body parser for extracting candidate paths and URLs.

Bodies are never rendered or parsed as HTML. Candidates are scraped from
quoted string literals, which also covers links hidden in scripts, JSON and
inline styles; robots.txt files are mined for their Allow/Disallow paths.
"""

import logging
import re
from typing import Iterable, Iterator, Tuple
from urllib.parse import urlsplit


# Token classes of the path grammar, tried in order inside a quoted literal
TOKEN_CLASSES: Tuple[Tuple[str, str], ...] = (
    # scheme://host.tld/... or //host.tld/...
    ('absolute', r"""(?:[a-zA-Z]{1,10}:(?:\\)?/(?:\\)?/|//)[^"'/]+\.[a-zA-Z]{2,}[^"']*"""),
    # /path
    ('rooted', r"""(?:/|\\/)[^"'><,;|*()%$^/\\\[\]][^"'><,;|()]*"""),
    # ./path and ../path
    ('relative', r"""(?:\.\./|\./)[^"'><,;|*()%$^/\\\[\]][^"'><,;|()]*"""),
    # dir/file.ext with an optional query or fragment
    ('filename', r"""[a-zA-Z0-9_\-/]+/[a-zA-Z0-9_\-/]*\.[a-zA-Z0-9_]+(?:[?|#][^"|']*)?"""),
    # dir/longer-segment with an optional query or fragment
    ('long_path', r"""[a-zA-Z0-9_\-/]+/[a-zA-Z0-9_\-/]{3,}(?:[?|#][^"|']*)?"""),
    # example.com, script.js
    ('domain', r"""[a-zA-Z0-9_\-]+(?:\.[a-zA-Z0-9_]+)+"""),
    # some/dir/
    ('bare_path', r"""[a-zA-Z0-9_\-/]+/"""),
)

PATH_PATTERN = re.compile(
    r"""(?:"|')(?:"""
    + '|'.join(f'(?P<{name}>{pattern})' for name, pattern in TOKEN_CLASSES)
    + r""")(?:"|')"""
)

ROBOTS_PATTERN = re.compile(r'(?:Allow|Disallow): \s*(.*)')
ROBOTS_EXTENSION_PATTERN = re.compile(r'/\.[a-z0-9]+$')


def _unique(values: Iterable[str]) -> Iterator[str]:
    seen = set()
    for value in values:
        if value not in seen:
            seen.add(value)
            yield value


class ContentParser:
    """
    Extracts candidate paths from raw response bodies.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def is_robots_txt(url: str) -> bool:
        """Check if a URL points at a robots.txt file."""
        return urlsplit(url).path.endswith('robots.txt')

    def parse(self, url: str, body: bytes) -> Iterator[str]:
        """
        Scrape candidate paths from a response body.

        Args:
            url: The URL the body was fetched from
            body: Raw response body

        Returns:
            A lazy iterator of unique path tokens
        """
        text = self._decode(body)

        if self.is_robots_txt(url):
            self.logger.debug(f"Scraping robots.txt directives from {url}")
            return self.scrape_robots_txt(text)

        self.logger.debug(f"Scraping paths from {url}")
        return self.scrape_paths(text)

    def scrape_paths(self, text: str) -> Iterator[str]:
        """Yield the contents of quoted literals that look like paths or URLs."""
        return _unique(
            match.group(match.lastgroup)
            for match in PATH_PATTERN.finditer(text)
        )

    def scrape_robots_txt(self, text: str) -> Iterator[str]:
        """Yield the paths named by Allow and Disallow directives."""
        def _paths():
            for match in ROBOTS_PATTERN.finditer(text):
                path = match.group(1).strip().replace('*', '').replace('$', '')
                if path.endswith('?'):
                    path = path[:-1]
                path = ROBOTS_EXTENSION_PATTERN.sub('/', path)

                if len(path) > 1:
                    yield path

        return _unique(_paths())

    def _decode(self, body: bytes) -> str:
        """Decode a body, ignoring bytes that are not valid UTF-8."""
        if isinstance(body, str):
            return body
        return body.decode('utf-8', errors='ignore')

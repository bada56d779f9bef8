"""
URL resolution and canonicalization.

Turns the loose path tokens found by the parser into absolute URLs and
reduces every URL to a canonical string so that visited checks compare
like with like.
"""

import ipaddress
import logging
import re
import string
from typing import Iterable, Iterator
from urllib.parse import SplitResult, parse_qsl, quote, urlencode, urlsplit, urlunsplit

import tldextract


DEFAULT_PORTS = {'http': 80, 'https': 443}

MEDIA_PREFIXES = (
    'audio/', 'application/', 'font/', 'image/',
    'multipart/', 'text/', 'video/',
)

UNRESERVED = frozenset(string.ascii_letters + string.digits + '-._~')

_PATH_SAFE = "/:@!$&'()*+,;=-._~%"
_ESCAPE_RE = re.compile(r'%([0-9a-fA-F]{2})')
_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*://')
_EXTENSION_RE = re.compile(r'\.[a-zA-Z0-9]{1,8}$')
_NUMERIC_OCTET_RE = re.compile(r'^(?:0x[0-9a-f]+|[0-9]+)$')
_HOSTNAME_RE = re.compile(
    r'^(?=.{1,253}$)(?!-)[a-z0-9_-]{1,63}(?<!-)(?:\.(?!-)[a-z0-9_-]{1,63}(?<!-))+$',
    re.IGNORECASE
)

# Bundled public suffix snapshot only, no network fetch and no disk cache
_tld_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def has_scheme(value: str) -> bool:
    """Check if a value starts with a URL scheme such as ``https://``."""
    return bool(_SCHEME_RE.match(value))


def has_file_extension(value: str) -> bool:
    """Check if the last path segment of a value carries a file extension."""
    path = value.split('?', 1)[0].split('#', 1)[0]
    return bool(_EXTENSION_RE.search(path.rsplit('/', 1)[-1]))


def has_params(value: str) -> bool:
    """Check if a value carries a query string."""
    return '?' in value


def is_media(value: str) -> bool:
    """Check if a value looks like a MIME type rather than a path."""
    return value.startswith(MEDIA_PREFIXES)


def is_domain_name(value: str) -> bool:
    """Check if a value is a bare domain name with a known public suffix."""
    if not _HOSTNAME_RE.match(value):
        return False
    extracted = _tld_extract(value)
    return bool(extracted.domain and extracted.suffix)


def is_binary(value: str) -> bool:
    """Check if a value holds binary garbage rather than text."""
    return '\x00' in value or '\ufffd' in value or not value.isprintable()


def _normalize_escapes(value: str, safe: str) -> str:
    """Decode unreserved escapes, uppercase the rest and encode what needs it."""
    def _decode(match):
        char = chr(int(match.group(1), 16))
        if char in UNRESERVED:
            return char
        return '%' + match.group(1).upper()

    return quote(_ESCAPE_RE.sub(_decode, value), safe=safe)


def _decode_host(host: str) -> str:
    """Lowercase a host, drop stray dots and decode numeric IPv4 notations."""
    host = re.sub(r'\.{2,}', '.', host.lower()).strip('.')

    if host.isdigit():
        value = int(host)
        if value <= 0xFFFFFFFF:
            return str(ipaddress.IPv4Address(value))
        return host

    octets = host.split('.')
    if len(octets) != 4 or not all(_NUMERIC_OCTET_RE.match(octet) for octet in octets):
        return host

    try:
        values = []
        for octet in octets:
            if octet.startswith('0x'):
                values.append(int(octet, 16))
            elif len(octet) > 1 and octet.startswith('0'):
                values.append(int(octet, 8))
            else:
                values.append(int(octet))
    except ValueError:
        return host

    if any(value > 255 for value in values):
        return host
    return '.'.join(str(value) for value in values)


def _remove_dot_segments(path: str) -> str:
    output = []
    for segment in path.split('/'):
        if segment == '..':
            if len(output) > 1:
                output.pop()
        elif segment != '.':
            output.append(segment)

    result = '/'.join(output)
    if path.endswith(('/.', '/..')):
        result += '/'
    if path.startswith('/') and not result.startswith('/'):
        result = '/' + result
    return result


def _normalize_path(path: str) -> str:
    path = _normalize_escapes(path, _PATH_SAFE)
    path = re.sub(r'/{2,}', '/', path)
    path = _remove_dot_segments(path)
    if path.endswith('/'):
        path = path[:-1]
    return path


def _normalize_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)


def normalize_url(url: str) -> str:
    """
    Reduce a URL to its canonical form.

    Lowercases scheme and host, strips default ports, decodes numeric hosts,
    removes dot segments, duplicate and trailing slashes, normalizes percent
    escapes, sorts the query by parameter name and drops the fragment.
    Applying it twice gives the same string.

    Raises:
        ValueError: if the URL has an invalid port or cannot be split
    """
    url = url.strip().replace('\\', '%5C')
    parts = urlsplit(url)
    scheme = parts.scheme.lower()

    netloc = parts.netloc
    if netloc:
        userinfo = netloc.rpartition('@')[0]
        host = _decode_host(parts.hostname or '')
        if ':' in host:
            host = f"[{host}]"

        port = parts.port
        if port is not None and DEFAULT_PORTS.get(scheme) != port:
            host = f"{host}:{port}"

        netloc = f"{userinfo}@{host}" if userinfo else host

    return urlunsplit((
        scheme,
        netloc,
        _normalize_path(parts.path),
        _normalize_query(parts.query),
        ''
    ))


def format_url(base: SplitResult, path: str) -> str:
    """
    Build an absolute URL for a path token found on the page at ``base``.

    The first matching rule wins:
    absolute, protocol-relative and bare domain tokens keep their host;
    tokens with a dot are rooted at the host unless they are relative to the
    page; rooted directories get a trailing slash; files and queries are
    placed under the base path; anything else is a directory under it.
    """
    path = path.replace('\\', '')

    if not path.startswith('/') and not path.startswith('http') and '.' in path:
        path = '/' + path

    if has_scheme(path):
        return path
    if path.startswith('//'):
        return f"{base.scheme}:{path}"
    if is_domain_name(path):
        return f"{base.scheme}://{path}"

    origin = f"{base.scheme}://{base.netloc}"

    if '.' in path:
        if path.startswith('/'):
            return origin + path
        return f"{origin}{base.path}/{path}"

    if path.startswith('/'):
        return origin + path + '/'

    if has_file_extension(path) or has_params(path):
        return f"{origin}{base.path}/{path}"

    return f"{origin}{base.path}/{path}/"


class URLResolver:
    """
    Resolves scraped path tokens against the URL they were found on.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def _should_skip(self, base: SplitResult, path: str) -> bool:
        """Check if a token is not worth resolving."""
        return (
            not path
            or path == base.netloc
            or is_media(path)
            or base.netloc.endswith(path)
            or is_binary(path)
        )

    def resolve(self, base_url: str, paths: Iterable[str]) -> Iterator[str]:
        """
        Resolve path tokens into canonical absolute URLs.

        Args:
            base_url: Canonical URL of the page the tokens were found on
            paths: Raw tokens from the parser

        Yields:
            Canonical absolute URLs, possibly more than one per token
        """
        base = urlsplit(base_url)

        # base looks like a file, do not descend any further
        if base.path.count('.') >= 2:
            self.logger.debug(f"Not resolving links below file-like URL: {base_url}")
            return

        page = f"{base.scheme}://{base.netloc}{base.path}"

        for path in paths:
            if self._should_skip(base, path):
                continue

            try:
                if is_domain_name(path):
                    yield normalize_url(f"{page}/{path}")
                yield normalize_url(format_url(base, path))
            except ValueError as e:
                self.logger.debug(f"Could not resolve {path!r} against {base_url}: {e}")

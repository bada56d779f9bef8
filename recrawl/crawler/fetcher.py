"""
Web page fetcher implementation with manual redirects and request pacing.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from .resolver import has_scheme


DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    body: bytes = b''
    headers: Dict[str, str] = field(default_factory=dict)
    location: Optional[str] = None
    error: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code <= 399


class WebFetcher:
    """
    Fetches single URLs without following redirects.

    Owns the aiohttp session and with it every transport concern: timeouts,
    user agent, proxy, TLS verification, custom DNS resolvers, and the delay
    with optional jitter that is waited before each request.
    """

    def __init__(self, user_agent: str, request_timeout: float = 10,
                 response_header_timeout: Optional[float] = None,
                 max_concurrent_requests: int = 20, delay: float = 0.0,
                 delay_jitter: float = 0.0, proxy: Optional[str] = None,
                 resolvers: Optional[List[str]] = None, verify_tls: bool = False,
                 max_body_size: int = DEFAULT_MAX_BODY_SIZE):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.response_header_timeout = response_header_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.delay = delay
        self.delay_jitter = delay_jitter
        self.proxy = self._proxy_url(proxy)
        self.resolvers = resolvers or []
        self.verify_tls = verify_tls
        self.max_body_size = max_body_size

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    @staticmethod
    def _proxy_url(proxy: Optional[str]) -> Optional[str]:
        """Default a scheme-less proxy to http://."""
        if not proxy:
            return None
        if not has_scheme(proxy):
            return 'http://' + proxy
        return proxy

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(
                total=self.request_timeout,
                sock_read=self.response_header_timeout
            )
            headers = {'User-Agent': self.user_agent}

            resolver = None
            if self.resolvers:
                resolver = aiohttp.AsyncResolver(nameservers=self.resolvers)

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=self.max_concurrent_requests,
                    ttl_dns_cache=300,
                    use_dns_cache=True,
                    ssl=self.verify_tls,
                    resolver=resolver
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    def _next_delay(self) -> float:
        """Seconds to wait before the next request."""
        if self.delay_jitter:
            return self.delay + random.uniform(0, self.delay_jitter)
        return self.delay

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Redirects are never followed; a 3xx response is returned as is, with
        its Location header resolved against the request URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult object containing the response data or error information
        """
        if self.session is None:
            raise RuntimeError("WebFetcher session not started")

        delay = self._next_delay()
        if delay > 0:
            await asyncio.sleep(delay)

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, allow_redirects=False, proxy=self.proxy) as response:
                body = await self._read_body(response)
                fetch_time = time.time() - start_time

                location = response.headers.get('Location')
                if location:
                    location = urljoin(url, location)

                self.stats['successful_requests'] += 1
                self.stats['total_bytes_downloaded'] += len(body)
                self.logger.debug(f"Fetched {url}: {response.status} ({len(body)} bytes)")

                return FetchResult(
                    url=url,
                    status_code=response.status,
                    body=body,
                    headers=dict(response.headers),
                    location=location,
                    fetch_time=fetch_time
                )

        except asyncio.TimeoutError:
            error_msg = "Request timeout"
            self.logger.info(f"Timeout fetching {url}")

        except ClientError as e:
            error_msg = f"Client error: {e}"
            self.logger.info(f"Client error fetching {url}: {e}")

        except ValueError as e:
            # yarl rejects some URLs only when the request is built
            error_msg = f"Invalid URL: {e}"
            self.logger.info(f"Invalid URL {url}: {e}")

        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=0,
            error=error_msg,
            fetch_time=time.time() - start_time
        )

    async def _read_body(self, response) -> bytes:
        """
        Read a response body, truncated to max_body_size.

        Args:
            response: aiohttp response object

        Returns:
            The raw body bytes
        """
        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            chunks.append(chunk)
            size += len(chunk)
            if size > self.max_body_size:
                self.logger.warning(f"Body exceeded size limit, truncating: {response.url}")
                break

        return b''.join(chunks)[:self.max_body_size]

    async def probe_scheme(self, host: str) -> Optional[str]:
        """
        Find the scheme a host answers on, trying https before http.

        Args:
            host: Host name with an optional port

        Returns:
            'https' or 'http', or None if the host answers on neither
        """
        if self.session is None:
            raise RuntimeError("WebFetcher session not started")

        for scheme in ('https', 'http'):
            try:
                async with self.session.get(f"{scheme}://{host}", allow_redirects=False,
                                            proxy=self.proxy) as response:
                    self.logger.debug(f"Probed {scheme}://{host}: {response.status}")
                    return scheme
            except (asyncio.TimeoutError, ClientError, ValueError) as e:
                self.logger.debug(f"Probe of {scheme}://{host} failed: {e}")

        return None

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()

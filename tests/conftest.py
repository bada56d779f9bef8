import random
import string
from typing import AsyncIterator

import pytest
from aiohttp import web

from recrawl.utils.config import Config, CrawlerConfig


def large_body(seed: int, size: int = 8192) -> str:
    """Body big enough to be fingerprinted, with no quoted tokens in it."""
    rng = random.Random(seed)
    return ''.join(rng.choices(string.ascii_letters + ' \n', k=size))


async def serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield its base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', port)
    await site.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        await runner.cleanup()


@pytest.fixture()
def make_config():
    """Factory for configs with short timeouts suitable for local servers."""
    def _make(**overrides) -> Config:
        values = dict(timeout=2.0, response_header_timeout=2.0, idle_timeout=0.3)
        values.update(overrides)
        return Config(crawler=CrawlerConfig(**values))
    return _make

import asyncio
import logging
from typing import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web

from conftest import large_body, serve_app
from recrawl.crawler.scheduler import CrawlerScheduler, CrawlResult
from recrawl.crawler.url_frontier import URLFrontier


async def crawl(config, *targets):
    async with CrawlerScheduler(config) as scheduler:
        results = await asyncio.wait_for(scheduler.crawl(*targets), timeout=30)
    return scheduler, results


def by_url(results):
    return {result.url: result for result in results}


# --------------------------------------------------------------------------- #
#                                Test servers                                 #
# --------------------------------------------------------------------------- #


@pytest_asyncio.fixture
async def site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_root(_):
        return web.Response(
            text='<html><a href="/about.html">About</a>'
                 '<a href="https://other.com/x">Elsewhere</a></html>',
            content_type="text/html",
        )

    async def handle_about(_):
        return web.Response(text="<html>About us</html>", content_type="text/html")

    app.router.add_get("/", handle_root)
    app.router.add_get("/about.html", handle_about)

    async for url in serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def robots_site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_root(_):
        return web.Response(text="<html>nothing linked here</html>", content_type="text/html")

    async def handle_robots(_):
        return web.Response(text="User-agent: *\nDisallow: /secret/*\n", content_type="text/plain")

    async def handle_secret(_):
        return web.Response(text="hidden", content_type="text/plain")

    app.router.add_get("/", handle_root)
    app.router.add_get("/robots.txt", handle_robots)
    app.router.add_get("/secret", handle_secret)

    async for url in serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def redirect_site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_hop(request):
        hop = int(request.match_info["hop"])
        if hop > 10:
            return web.Response(text="done")
        return web.Response(status=302, headers={"Location": f"/r{hop + 1}"})

    async def handle_no_location(_):
        return web.Response(status=302)

    app.router.add_get("/r{hop:\\d+}", handle_hop)
    app.router.add_get("/nowhere", handle_no_location)

    async for url in serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def cross_host_redirect(unused_tcp_port_factory) -> AsyncIterator[tuple]:
    landing_port, start_port = unused_tcp_port_factory(), unused_tcp_port_factory()
    landing_url = f"http://localhost:{landing_port}"

    landing = web.Application()

    async def handle_landing(_):
        return web.Response(text='<a href="/deeper">more</a>', content_type="text/html")

    landing.router.add_get("/landing", handle_landing)

    start = web.Application()

    async def handle_go(_):
        return web.Response(status=302, headers={"Location": f"{landing_url}/landing"})

    start.router.add_get("/go", handle_go)

    async for _ in serve_app(landing, landing_port):
        async for start_url in serve_app(start, start_port):
            yield start_url, landing_url


@pytest_asyncio.fixture
async def slow_site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_slow(_):
        await asyncio.sleep(1)
        return web.Response(text="late")

    app.router.add_get("/{tail:.*}", handle_slow)

    async for url in serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def duplicate_site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()
    same = large_body(7)

    async def handle_root(_):
        return web.Response(
            text='<a href="/a">A</a><a href="/b">B</a><a href="/c">C</a>',
            content_type="text/html",
        )

    async def handle_same(_):
        return web.Response(text=same)

    async def handle_different(_):
        return web.Response(text=large_body(8))

    app.router.add_get("/", handle_root)
    app.router.add_get("/a", handle_same)
    app.router.add_get("/b", handle_same)
    app.router.add_get("/c", handle_different)

    async for url in serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def trap_site(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()

    async def handle_any(request):
        # every page links one level deeper into itself
        return web.Response(text=f'"{request.path.rstrip("/")}/loop"')

    app.router.add_get("/{tail:.*}", handle_any)

    async for url in serve_app(app, unused_tcp_port):
        yield url


# --------------------------------------------------------------------------- #
#                                    Tests                                    #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_end_to_end_crawl(site, make_config):
    _, results = await crawl(make_config(), site)
    found = by_url(results)

    assert set(found) == {site, f"{site}/robots.txt", f"{site}/about.html"}
    assert found[site].status_code == 200
    assert found[f"{site}/about.html"].status_code == 200
    assert found[f"{site}/robots.txt"].status_code == 404
    assert not any("other.com" in url for url in found)
    assert all(result.error is None for result in results)


@pytest.mark.asyncio
async def test_each_url_is_fetched_once(site, make_config):
    scheduler, results = await crawl(make_config(concurrency=4), site, site, f"{site}/")

    urls = [result.url for result in results]
    assert len(urls) == len(set(urls))
    assert scheduler.stats.urls_fetched == 3


@pytest.mark.asyncio
async def test_robots_txt_paths_are_crawled(robots_site, make_config):
    scheduler, results = await crawl(make_config(), robots_site)
    found = by_url(results)

    assert found[f"{robots_site}/robots.txt"].status_code == 200
    assert found[f"{robots_site}/secret"].status_code == 200
    assert scheduler.stats.robots_scheduled == 1


@pytest.mark.asyncio
async def test_redirect_chain_is_capped(redirect_site, make_config):
    _, results = await crawl(make_config(), f"{redirect_site}/r0")

    assert [result.url for result in results] == [f"{redirect_site}/r{hop}" for hop in range(10)]
    assert all(result.status_code == 302 for result in results)
    assert all(result.error is None for result in results)


@pytest.mark.asyncio
async def test_short_redirect_chain_is_followed(redirect_site, make_config):
    _, results = await crawl(make_config(), f"{redirect_site}/r9")

    assert [(result.url, result.status_code) for result in results] == [
        (f"{redirect_site}/r9", 302),
        (f"{redirect_site}/r10", 302),
        (f"{redirect_site}/r11", 200),
    ]


@pytest.mark.asyncio
async def test_redirect_without_location_ends_chain(redirect_site, make_config):
    _, results = await crawl(make_config(), f"{redirect_site}/nowhere")

    assert results == [CrawlResult(f"{redirect_site}/nowhere", 302)]


@pytest.mark.asyncio
async def test_transport_error_becomes_status_zero(unused_tcp_port, make_config):
    url = f"http://127.0.0.1:{unused_tcp_port}/down"

    scheduler, results = await crawl(make_config(), url)

    assert len(results) == 1
    assert results[0].url == url
    assert results[0].status_code == 0
    assert results[0].error
    assert scheduler.stats.errors == 1


@pytest.mark.asyncio
async def test_near_duplicate_pages_are_dropped(duplicate_site, make_config):
    scheduler, results = await crawl(make_config(), duplicate_site)
    found = by_url(results)

    same = {f"{duplicate_site}/a", f"{duplicate_site}/b"} & set(found)
    assert len(same) == 1
    assert f"{duplicate_site}/c" in found
    assert scheduler.stats.content_duplicates == 1


@pytest.mark.asyncio
async def test_traps_are_not_followed(trap_site, make_config):
    scheduler, results = await crawl(make_config(), trap_site)

    assert results
    assert scheduler.stats.traps_skipped >= 1
    assert all(result.url.count("/loop") < 10 for result in results)


@pytest.mark.asyncio
async def test_scheme_is_probed_for_bare_hosts(site, make_config):
    bare = site[len("http://"):]

    _, results = await crawl(make_config(), bare)

    assert site in by_url(results)


@pytest.mark.asyncio
async def test_unreachable_bare_host_is_skipped(unused_tcp_port, make_config):
    scheduler, results = await crawl(make_config(), f"127.0.0.1:{unused_tcp_port}")

    assert results == []
    assert scheduler.stats.seeds_rejected == 1


@pytest.mark.asyncio
async def test_results_stream_while_running(site, make_config):
    async with CrawlerScheduler(make_config()) as scheduler:
        run = asyncio.create_task(scheduler.run(site))
        streamed = [result async for result in scheduler.results()]
        stats = await run

    assert len(streamed) == 3
    assert stats.results == 3
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_redirect_to_another_host_is_followed(cross_host_redirect, make_config):
    start, landing = cross_host_redirect

    _, results = await crawl(make_config(), f"{start}/go")

    assert [(result.url, result.status_code) for result in results] == [
        (f"{start}/go", 302),
        (f"{landing}/landing", 200),
    ]


@pytest.mark.asyncio
async def test_cancelled_run_collects_its_tasks(slow_site, make_config):
    scheduler = CrawlerScheduler(make_config())
    run = asyncio.create_task(scheduler.run(slow_site))
    await asyncio.sleep(0.3)

    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run

    pending = [
        task for task in asyncio.all_tasks()
        if task.get_coro().__qualname__.startswith(("CrawlerScheduler.", "URLFrontier."))
    ]
    assert pending == []
    assert not scheduler.is_running
    await scheduler.close()


@pytest.mark.asyncio
async def test_progress_report_logs_rate(caplog):
    scheduler = CrawlerScheduler()
    scheduler.frontier = URLFrontier(scheduler.scope, scheduler.history, idle_timeout=1.0)

    with caplog.at_level(logging.INFO, logger="recrawl.crawler.scheduler"):
        scheduler._log_current_stats()

    stats = [record for record in caplog.records if getattr(record, "event_type", None) == "crawler_stat"]
    assert [record.stat_name for record in stats] == ["pages_per_minute"]
    assert any(record.getMessage().startswith("Crawl Progress") for record in caplog.records)

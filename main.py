#!/usr/bin/env python3
"""
Main entry point for the recrawl crawler.
"""

import asyncio
import argparse
import dataclasses
import logging
import signal
import sys
from typing import List, Optional

from recrawl import __version__
from recrawl.utils.config import Config, load_config, validate_config
from recrawl.utils.logger import setup_logging, log_system_info
from recrawl.utils.monitoring import initialize_monitoring
from recrawl.crawler.scheduler import CrawlerScheduler


# Command line options that override CrawlerConfig fields of the same name
CRAWLER_OVERRIDES = (
    'concurrency', 'timeout', 'response_header_timeout', 'delay', 'delay_jitter',
    'user_agent', 'proxy', 'resolvers', 'include', 'exclude',
)


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._shutdown_event.set)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass

    async def run(self, config: Config, targets: List[str]) -> int:
        """Crawl the targets and print every result to stdout."""
        self.setup_signal_handlers()

        self.logger.info("=== RECRAWL STARTING ===")
        self.logger.info(f"Targets: {targets}")
        self.logger.info(f"Concurrency: {config.crawler.concurrency}")
        self.logger.info(f"Include: {config.crawler.include} Exclude: {config.crawler.exclude}")

        monitor = initialize_monitoring(
            config.monitoring.metrics_enabled,
            config.monitoring.prometheus_port
        )
        self.scheduler = CrawlerScheduler(config, monitor=monitor)

        async with self.scheduler:
            crawl_task = asyncio.create_task(self.scheduler.run(*targets))
            print_task = asyncio.create_task(self._print_results())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, _ = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                self.logger.info("Shutdown requested, stopping crawler...")
                crawl_task.cancel()
            else:
                shutdown_task.cancel()

            # The result stream ends even when the crawl is cancelled
            await asyncio.gather(crawl_task, return_exceptions=True)
            await print_task

            if not crawl_task.cancelled() and crawl_task.exception():
                self.logger.error("Crawl failed", exc_info=crawl_task.exception())
                return 1

        self.logger.info(f"Metrics summary: {monitor.get_summary()}")
        self.logger.info("=== RECRAWL FINISHED ===")
        return 0

    async def _print_results(self):
        async for result in self.scheduler.results():
            print(result, flush=True)


def build_parser() -> argparse.ArgumentParser:
    """Command line interface."""
    parser = argparse.ArgumentParser(
        description="Crawl hosts and print every URL discovered in their pages and robots.txt",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py example.com                      # Crawl one host
  python main.py -i hosts.txt -c 50               # Crawl hosts from a file
  cat hosts.txt | python main.py --exclude '*.cdn.example.com'
  python main.py --config my_config.yaml example.com
        """
    )

    parser.add_argument('targets', nargs='*', help='Hosts or URLs to crawl')
    parser.add_argument('-i', '--infile', help='File with one target per line')
    parser.add_argument('--config', help='Path to a YAML configuration file')

    parser.add_argument('-c', '--concurrency', type=int, help='Number of concurrent workers')
    parser.add_argument('-t', '--timeout', type=float, help='Request timeout in seconds')
    parser.add_argument('--response-header-timeout', type=float,
                        help='Time to wait for response data in seconds')
    parser.add_argument('-d', '--delay', type=float, help='Delay before each request in seconds')
    parser.add_argument('-dj', '--delay-jitter', type=float,
                        help='Maximum random extra delay in seconds')
    parser.add_argument('-ua', '--user-agent', help='User-Agent header')
    parser.add_argument('--proxy', help='HTTP proxy, e.g. 127.0.0.1:8080')
    parser.add_argument('-r', '--resolvers', type=lambda value: value.split(','),
                        help='Comma-separated DNS resolvers')
    parser.add_argument('--include', action='append',
                        help='Host pattern to include (repeatable, supports *. and CIDR)')
    parser.add_argument('--exclude', action='append',
                        help='Host pattern to exclude (repeatable, supports *. and CIDR)')

    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Increase log verbosity (-v info, -vv debug)')
    parser.add_argument('-s', '--silence', action='store_true', help='Only log critical errors')
    parser.add_argument('--version', action='version', version=f'recrawl {__version__}')

    return parser


def build_config(args: argparse.Namespace) -> Config:
    """
    Load the configuration file, if any, and apply command line overrides.

    Raises:
        FileNotFoundError: if --config points to a missing file
        ValueError: if a value is invalid
    """
    config = load_config(args.config) if args.config else Config.default()

    overrides = {
        option: getattr(args, option)
        for option in CRAWLER_OVERRIDES
        if getattr(args, option) is not None
    }
    crawler = dataclasses.replace(config.crawler, **overrides)

    logging_config = config.logging
    if args.verbose or args.silence:
        logging_config = dataclasses.replace(
            logging_config,
            verbose=max(args.verbose, logging_config.verbose),
            silence=args.silence or logging_config.silence
        )

    config = dataclasses.replace(config, crawler=crawler, logging=logging_config)
    validate_config(config)
    return config


def read_targets(args: argparse.Namespace) -> List[str]:
    """Targets from the command line, the input file, or stdin."""
    lines: List[str] = list(args.targets)

    if args.infile:
        with open(args.infile, 'r') as file:
            lines.extend(file)
    elif not lines and not sys.stdin.isatty():
        lines.extend(sys.stdin)

    return [line.strip() for line in lines if line.strip()]


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        targets = read_targets(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not targets:
        parser.print_usage(sys.stderr)
        print("Error: no targets given", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    log_system_info()

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, targets))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""
Main application entry point for the site crawler

Loads configuration (defaults < YAML < environment < command line), sets up
logging, runs the crawl, prints the internal/external URL report and writes
the requested exports.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from rich.console import Console
from rich.text import Text

from crawler_core import CrawlReport, PageFetcher, WebCrawler, parse_seed_url
from crawler_main import TRACE, CrawlerConfig, CrawlerError, ResourceMonitor, current_directory
from crawler_storage import PageStorage, export_urls

ENV_MAPPING = {
    'CRAWLER_WORKERS': 'workers',
    'CRAWLER_DELAY_MS': 'request_delay_ms',
    'CRAWLER_MAX_URL_LENGTH': 'max_url_length',
    'REQUEST_TIMEOUT': 'request_timeout',
    'USER_AGENT': 'user_agent',
    'DOWNLOAD_DIR': 'download_dir',
    'LOG_LEVEL': 'log_level',
    'LOG_FILE': 'log_file',
    'MAX_MEMORY_MB': 'max_memory_mb',
}

INT_KEYS = {'workers', 'request_delay_ms', 'max_url_length', 'request_timeout', 'max_memory_mb'}

# argparse dest -> config field
ARG_MAPPING = {
    'download': 'download',
    'crawl_external': 'crawl_external',
    'max_url_length': 'max_url_length',
    'exclude': 'exclude',
    'export': 'export_all',
    'export_internal': 'export_internal',
    'export_external': 'export_external',
    'timeout': 'request_delay_ms',
    'workers': 'workers',
    'log_level': 'log_level',
}


def comma_list(value: str) -> List[str]:
    return [item for item in value.split(',') if item]


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recursive site crawler")
    parser.add_argument('url', help="Url of the website you want to crawl")
    parser.add_argument('-d', '--download', action='store_true', default=None,
                        help="Download all files")
    parser.add_argument('-c', '--crawl-external', action='store_true', default=None,
                        help="Whether or not to crawl other websites it finds a link to")
    parser.add_argument('-m', '--max-url-length', type=int,
                        help="Maximum url length it allows (default: 300)")
    parser.add_argument('-e', '--exclude', type=comma_list,
                        help="Will ignore paths that start with these strings (comma-separated)")
    parser.add_argument('--export', help="Where to export found URLs")
    parser.add_argument('--export-internal', help="Where to export internal URLs")
    parser.add_argument('--export-external', help="Where to export external URLs")
    parser.add_argument('-t', '--timeout', type=int,
                        help="Timeout between requests in milliseconds (default: 100)")
    parser.add_argument('-w', '--workers', type=int,
                        help="Number of concurrent crawl workers (default: 10)")
    parser.add_argument('--config', default=os.getenv('CONFIG_PATH', 'config.yaml'),
                        help="Path to YAML configuration file")
    parser.add_argument('--log-level', help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace, environ: Dict[str, str] = None) -> CrawlerConfig:
    """Load configuration from file, environment and arguments"""
    environ = os.environ if environ is None else environ
    config_data = {}
    known = set(CrawlerConfig.field_names())

    # Load from YAML file if provided
    config_path = getattr(args, 'config', None)
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            file_data = yaml.safe_load(f) or {}
        for key, value in file_data.items():
            if key in known:
                config_data[key] = value
        if isinstance(config_data.get('exclude'), str):
            config_data['exclude'] = comma_list(config_data['exclude'])

    # Override with environment variables
    for env_var, config_key in ENV_MAPPING.items():
        if env_var in environ:
            value = environ[env_var]
            if config_key in INT_KEYS:
                value = int(value)
            config_data[config_key] = value

    # Explicit command line flags win
    for dest, config_key in ARG_MAPPING.items():
        value = getattr(args, dest, None)
        if value is not None:
            config_data[config_key] = value

    if 'exclude' in config_data:
        config_data['exclude'] = tuple(config_data['exclude'] or ())

    return CrawlerConfig(**config_data)


def setup_logging(config: CrawlerConfig):
    """Setup logging configuration"""
    log_level = logging.getLevelName(config.log_level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    # Reduce noise from external libraries
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


class CrawlerApp:
    """Main crawler application"""

    def __init__(self, config: CrawlerConfig, seed_url: str, console: Console = None):
        self.config = config
        self.seed_url = seed_url
        self.console = console or Console()
        self.resource_monitor = ResourceMonitor(config)
        self.logger = logging.getLogger("site_crawler")

    def _storage(self) -> Optional[PageStorage]:
        if not self.config.download:
            return None
        root = self.config.download_dir or current_directory()
        self.logger.debug(f"Working directory: {root}")
        return PageStorage(root, logger=self.logger)

    async def run(self) -> CrawlReport:
        """Crawl, report and export"""
        self.logger.debug("Parsing url...")
        seed = parse_seed_url(self.seed_url)
        storage = self._storage()

        self.logger.debug("Crawling...")
        async with PageFetcher(self.config, logger=self.logger) as fetcher:
            crawler = WebCrawler(
                self.config,
                fetcher=fetcher,
                storage=storage,
                logger=self.logger,
                resource_monitor=self.resource_monitor
            )
            report = await crawler.crawl(seed)

        self.print_report(report)
        await self.export(report)
        return report

    def print_report(self, report: CrawlReport):
        self.console.print(Text("Internal urls:", style="bright_green"))
        for url in report.internal:
            self.console.print(url, markup=False, highlight=False, soft_wrap=True)

        self.console.print(Text("External urls:", style="red"))
        for url in report.external:
            self.console.print(url, markup=False, highlight=False, soft_wrap=True)

    async def export(self, report: CrawlReport):
        """Write each configured URL list export"""
        exports = [
            (self.config.export_all, report.urls),
            (self.config.export_internal, report.internal),
            (self.config.export_external, report.external),
        ]
        for file_name, urls in exports:
            if file_name:
                await export_urls(file_name, urls)


def main(argv: Optional[Iterable[str]] = None):
    """Main entry point"""
    args = parse_args(argv)
    try:
        config = load_config(args)
    except (ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    logging.log(TRACE, f"{config}")

    app = CrawlerApp(config, args.url)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logging.info("Crawl interrupted by user")
        sys.exit(130)
    except CrawlerError as e:
        logging.error(f"{e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

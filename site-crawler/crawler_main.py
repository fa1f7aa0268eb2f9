#!/usr/bin/env python3
"""
Core configuration and monitoring classes for the site crawler

The configuration is immutable for the whole run and shared read-only by
every crawl worker.
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Optional, Tuple

import psutil

# Finer than DEBUG, used for per-link and per-step events
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class CrawlerError(Exception):
    """Base class for all crawler errors"""


# Configuration
@dataclass(frozen=True)
class CrawlerConfig:
    """Crawler configuration, frozen for the duration of a crawl"""
    # Admission and fan-out policy
    max_url_length: int = 300
    crawl_external: bool = False
    exclude: Tuple[str, ...] = ()

    # Politeness
    request_delay_ms: int = 100  # Global minimum spacing between fetch starts

    # Request settings
    workers: int = 10
    request_timeout: int = 30
    user_agent: str = "SiteCrawler/1.0 (+https://github.com/site-crawler)"

    # Persistence
    download: bool = False
    download_dir: Optional[str] = None  # None = current working directory

    # Output
    export_all: Optional[str] = None
    export_internal: Optional[str] = None
    export_external: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Resource limits
    max_memory_mb: int = 450

    def __post_init__(self):
        # YAML and env sources hand us lists and strings
        object.__setattr__(self, 'exclude', tuple(p for p in self.exclude if p))
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.request_delay_ms < 0:
            raise ValueError(f"request delay cannot be negative, got {self.request_delay_ms}")

    @property
    def delay(self) -> float:
        """Inter-request delay in seconds"""
        return self.request_delay_ms / 1000.0

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))


class ResourceMonitor:
    """Monitor process resources for crawl statistics"""

    def __init__(self, config: CrawlerConfig):
        self.config = config
        self.process = psutil.Process()

    def get_memory_usage_mb(self) -> float:
        """Get current memory usage in MB"""
        return self.process.memory_info().rss / 1024 / 1024

    def get_cpu_percent(self) -> float:
        """Get current CPU usage percentage"""
        return self.process.cpu_percent()

    def memory_pressure(self) -> bool:
        """Check if memory usage is close to the configured limit"""
        return self.get_memory_usage_mb() > self.config.max_memory_mb * 0.8


def current_directory() -> str:
    """Return the working directory used as the default mirror root"""
    try:
        return os.getcwd()
    except OSError as e:
        raise CrawlerError(f"Cannot get current working directory: {e}") from e

"""
Error types.

Every fatal condition of a crawl or conversion run is raised as a subclass of
PaulScrapeError so the CLI can report it and exit with a non-zero code.
Nothing in this package turns these errors into silently skipped records.
"""

from __future__ import annotations


class PaulScrapeError(Exception):
    """Base class for all reported failures."""


class ConfigError(PaulScrapeError):
    """A setting from the environment or the command line is invalid."""


class FetchError(PaulScrapeError):
    """A bounded retry policy ran out of attempts."""

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        super().__init__(f"giving up on {url} after {attempts} attempt(s): {reason}")
        self.url = url
        self.attempts = attempts
        self.reason = reason


class ExtractionError(PaulScrapeError):
    """An expected markup element is missing or a breadcrumb is malformed."""


class ReferentialError(PaulScrapeError):
    """The snapshot references small groups that do not exist, or defines one twice."""


class CrawlAborted(PaulScrapeError):
    """A task handler failed; the crawl stopped and nothing was persisted."""

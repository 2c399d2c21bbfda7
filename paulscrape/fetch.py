"""
Page fetching with a retry policy.

The portal is flaky under load, so a request is repeated until it returns a
2xx status. By default this happens forever and without any pause between
attempts; a bounded RetryPolicy (mostly for tests and careful runs) raises
FetchError instead once its attempts are used up.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter

from paulscrape.errors import FetchError


LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60
DEFAULT_POOL_SIZE = 64


# ---------------------------------------------------------------------------
# Backoff strategies (attempt number -> seconds to wait before the next try)
# ---------------------------------------------------------------------------


def no_backoff(attempt: int) -> float:
    return 0.0


def constant_backoff(seconds: float) -> Callable[[int], float]:
    def _backoff(attempt: int) -> float:
        return seconds

    return _backoff


def exponential_backoff(base: float = 0.5, cap: float = 30.0) -> Callable[[int], float]:
    """
    base, 2*base, 4*base, ... never more than cap.
    """

    def _backoff(attempt: int) -> float:
        return min(cap, base * (2 ** max(attempt - 1, 0)))

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts=None means: retry until the server answers with 2xx.
    """

    max_attempts: Optional[int] = None
    backoff: Callable[[int], float] = no_backoff

    def allows(self, attempt: int) -> bool:
        """True if another attempt may follow attempt number `attempt`."""
        return self.max_attempts is None or attempt < self.max_attempts


RETRY_FOREVER = RetryPolicy()


def _build_session(pool_size: int) -> requests.Session:
    """
    Every handler thread shares this session, so the pool must hold one
    connection per concurrent request.
    """
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def decode_body(resp: requests.Response) -> str:
    """
    Body text of a response.

    Without a charset in Content-Type requests falls back to ISO-8859-1 for
    text/html, which garbles PAUL's UTF-8 umlauts ("Mär" -> "MÃ¤r"). In that
    case the encoding is detected from the content instead.
    """
    content_type = resp.headers.get("Content-Type", "")
    if "charset" not in content_type.lower():
        resp.encoding = resp.apparent_encoding
    return resp.text


class Fetcher:
    """
    Performs GET requests and returns the body text of the first 2xx response.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        policy: RetryPolicy = RETRY_FOREVER,
        *,
        user_agent: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        pool_size: int = DEFAULT_POOL_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session if session is not None else _build_session(pool_size)
        if user_agent:
            self.session.headers["User-Agent"] = user_agent
        self.policy = policy
        self.timeout = timeout
        self._sleep = sleep

    def fetch(self, url: str) -> str:
        attempt = 0
        while True:
            attempt += 1
            LOGGER.debug("GET %s (attempt %d)", url, attempt)
            try:
                resp = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as exc:
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if 200 <= resp.status_code < 300:
                    return decode_body(resp)
                reason = f"status {resp.status_code}"

            LOGGER.warning("Request for %s failed: %s", url, reason)
            if not self.policy.allows(attempt):
                raise FetchError(url, attempt, reason)

            delay = self.policy.backoff(attempt)
            if delay > 0:
                self._sleep(delay)

    __call__ = fetch

    def close(self) -> None:
        self.session.close()

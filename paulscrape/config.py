"""
Runtime settings.

Precedence (lowest to highest):
    built-in defaults  <  environment (.env is loaded too)  <  CLI flags
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from paulscrape.errors import ConfigError


PACKAGE_DIR = Path(__file__).resolve().parent


def _read_version() -> str:
    try:
        return (PACKAGE_DIR / "VERSION").read_text(encoding="utf-8").strip()
    except OSError:
        return "0.1.0"


VERSION = _read_version()

DEFAULT_BASE_URL = "https://paul.uni-paderborn.de"
DEFAULT_SEMESTER = "Wintersemester 2023/24"
DEFAULT_REQUESTS_PER_SECOND = 20.0
DEFAULT_SNAPSHOT_PATH = "state.json"
DEFAULT_SEMESTER_PATH = "semester.json"
DEFAULT_USER_AGENT = f"paulscrape/{VERSION}"


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    semester: str = DEFAULT_SEMESTER
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND
    max_attempts: Optional[int] = None
    backoff_seconds: float = 0.0
    snapshot_path: Path = Path(DEFAULT_SNAPSHOT_PATH)
    semester_path: Path = Path(DEFAULT_SEMESTER_PATH)
    user_agent: str = DEFAULT_USER_AGENT

    @property
    def tick_interval(self) -> float:
        """Seconds between two scheduler dispatches."""
        return 1.0 / self.requests_per_second

    def with_overrides(self, **overrides: Any) -> "Settings":
        """
        Return a copy with every non-None override applied and validated.
        """
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        for key in ("snapshot_path", "semester_path"):
            if key in changes:
                changes[key] = Path(changes[key])
        return _validated(replace(self, **changes))


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _validated(settings: Settings) -> Settings:
    if settings.requests_per_second <= 0:
        raise ConfigError(f"requests per second must be positive, got {settings.requests_per_second}")
    if settings.max_attempts is not None and settings.max_attempts < 1:
        raise ConfigError(f"max attempts must be at least 1, got {settings.max_attempts}")
    if settings.backoff_seconds < 0:
        raise ConfigError(f"backoff must not be negative, got {settings.backoff_seconds}")
    if not settings.base_url.strip():
        raise ConfigError("base URL must not be empty")
    if not settings.semester.strip():
        raise ConfigError("semester label must not be empty")
    return settings


def settings_from_env(environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> Settings:
    """
    Build Settings from defaults overridden by environment variables.

    Pass `environ` explicitly (mainly for tests) to skip the process environment.
    """
    if environ is None:
        if dotenv:
            load_dotenv()
        environ = os.environ

    settings = Settings()
    overrides: dict[str, Any] = {}

    if environ.get("BASE_URL"):
        overrides["base_url"] = environ["BASE_URL"].strip()
    if environ.get("SEMESTER"):
        overrides["semester"] = environ["SEMESTER"].strip()
    if environ.get("REQUESTS_PER_SECOND"):
        overrides["requests_per_second"] = _parse_float("REQUESTS_PER_SECOND", environ["REQUESTS_PER_SECOND"])
    if environ.get("MAX_ATTEMPTS"):
        overrides["max_attempts"] = _parse_int("MAX_ATTEMPTS", environ["MAX_ATTEMPTS"])
    if environ.get("BACKOFF_SECONDS"):
        overrides["backoff_seconds"] = _parse_float("BACKOFF_SECONDS", environ["BACKOFF_SECONDS"])
    if environ.get("SNAPSHOT_PATH"):
        overrides["snapshot_path"] = environ["SNAPSHOT_PATH"]
    if environ.get("SEMESTER_PATH"):
        overrides["semester_path"] = environ["SEMESTER_PATH"]
    if environ.get("USER_AGENT"):
        overrides["user_agent"] = environ["USER_AGENT"]

    return settings.with_overrides(**overrides)

"""
Crawling (PAUL -> CrawlSnapshot).

The crawl is a rate-limited work-queue loop:

- the Scheduler pops one random entry per tick and runs it in its own thread
- a handler fetches the page, extracts it, pushes new entries and appends records
- the crawl is finished when the queue is empty AND no handler is running

Important rules (DO NOT CHANGE):
- in_flight is incremented before the handler thread starts
- a handler decrements in_flight only after all its pushes and appends
- a failing handler aborts the whole crawl, no partial snapshot is written
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from paulscrape.errors import CrawlAborted
from paulscrape.model import (
    Course,
    CourseLeafEntry,
    CrawlSnapshot,
    MainEntry,
    Path,
    QueueEntry,
    SmallGroup,
    SmallGroupLeafEntry,
    TreeEntry,
)
from paulscrape.parse import PageExtractor
from paulscrape.work_queue import QueueStats, WorkQueue


LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared crawl state
# ---------------------------------------------------------------------------


class InFlightCounter:
    """Number of handlers that were dispatched but have not finished yet."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value <= 0:
                raise RuntimeError("in-flight counter would drop below zero")
            self._value -= 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class Aggregator:
    """
    Collects courses and small groups from all handlers.

    Records are kept as they arrive; the same course may show up twice if it is
    reachable through two branches.
    """

    def __init__(self, semester: str, start_time: Optional[datetime] = None) -> None:
        self.semester = semester
        self.start_time = start_time or datetime.now(timezone.utc)
        self._courses: List[Course] = []
        self._courses_lock = threading.Lock()
        self._small_groups: List[SmallGroup] = []
        self._small_groups_lock = threading.Lock()

    def add_course(self, course: Course) -> None:
        with self._courses_lock:
            self._courses.append(course)

    def add_small_group(self, small_group: SmallGroup) -> None:
        with self._small_groups_lock:
            self._small_groups.append(small_group)

    @property
    def course_count(self) -> int:
        with self._courses_lock:
            return len(self._courses)

    @property
    def small_group_count(self) -> int:
        with self._small_groups_lock:
            return len(self._small_groups)

    def snapshot(self) -> CrawlSnapshot:
        with self._courses_lock:
            courses = list(self._courses)
        with self._small_groups_lock:
            small_groups = list(self._small_groups)
        return CrawlSnapshot(
            semester=self.semester,
            start_time=self.start_time,
            courses=courses,
            small_groups=small_groups,
        )


@dataclass
class CrawlContext:
    """
    Everything a handler may touch. Each field synchronizes itself.
    """

    fetch: Callable[[str], str]
    extractor: PageExtractor
    base_url: str
    semester: str
    queue: WorkQueue = field(default_factory=WorkQueue)
    in_flight: InFlightCounter = field(default_factory=InFlightCounter)
    aggregator: Optional[Aggregator] = None
    _failure: Optional[BaseException] = field(default=None, init=False, repr=False)
    _failure_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.aggregator is None:
            self.aggregator = Aggregator(self.semester)

    def fail(self, exc: BaseException) -> None:
        """Remember the first fatal handler error."""
        with self._failure_lock:
            if self._failure is None:
                self._failure = exc

    @property
    def failure(self) -> Optional[BaseException]:
        with self._failure_lock:
            return self._failure


# ---------------------------------------------------------------------------
# Task handler
# ---------------------------------------------------------------------------


def _handle_main(ctx: CrawlContext) -> None:
    semesters = ctx.extractor.discover_semesters(ctx.fetch, ctx.base_url)
    LOGGER.info("Found %d semester(s): %s", len(semesters), ", ".join(label for label, _ in semesters))

    matches = [(label, url) for label, url in semesters if label == ctx.semester]
    if not matches:
        LOGGER.warning("Semester %r not offered by %s, nothing to crawl", ctx.semester, ctx.base_url)
    for label, url in matches:
        ctx.queue.push_back(TreeEntry(url, Path((label,))))


def _handle_tree(ctx: CrawlContext, entry: TreeEntry) -> None:
    page = ctx.extractor.extract_tree(ctx.fetch(entry.url), entry.url, entry.path)
    ctx.queue.push_many(page.branches)
    ctx.queue.push_many(page.course_leaves)


def _handle_course(ctx: CrawlContext, entry: CourseLeafEntry) -> None:
    page = ctx.extractor.extract_course(ctx.fetch(entry.url), entry.url, entry.path)
    ctx.queue.push_many(page.small_group_links)
    ctx.aggregator.add_course(page.course)


def _handle_small_group(ctx: CrawlContext, entry: SmallGroupLeafEntry) -> None:
    small_group = ctx.extractor.extract_small_group(ctx.fetch(entry.url), entry.url, entry.path)
    ctx.aggregator.add_small_group(small_group)


def handle_entry(ctx: CrawlContext, entry: QueueEntry) -> None:
    """
    Process one queue entry. Errors propagate to the caller.
    """
    if isinstance(entry, MainEntry):
        _handle_main(ctx)
    elif isinstance(entry, TreeEntry):
        _handle_tree(ctx, entry)
    elif isinstance(entry, CourseLeafEntry):
        _handle_course(ctx, entry)
    elif isinstance(entry, SmallGroupLeafEntry):
        _handle_small_group(ctx, entry)
    else:
        raise TypeError(f"Unknown queue entry: {entry!r}")


def run_handler(ctx: CrawlContext, entry: QueueEntry) -> None:
    """
    Thread body: handle the entry, then (and only then) leave the in-flight set.
    """
    LOGGER.debug("starting %s %s", entry.kind, getattr(entry, "path", ""))
    try:
        handle_entry(ctx, entry)
    except Exception as exc:
        LOGGER.error("Handler for %s %s failed: %s", entry.kind, getattr(entry, "url", ""), exc)
        ctx.fail(exc)
    finally:
        ctx.in_flight.decrement()
        LOGGER.debug("finished %s %s", entry.kind, getattr(entry, "path", ""))


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class SchedulerState(enum.Enum):
    RUNNING = "running"
    HALTED = "halted"


@dataclass(frozen=True)
class SchedulerStats:
    queue: QueueStats
    in_flight: int
    dispatched: int
    courses: int
    small_groups: int


def _spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


class Scheduler:
    """
    Dispatches at most one queue entry per tick until the crawl is complete.
    """

    def __init__(
        self,
        ctx: CrawlContext,
        tick_interval: float = 1 / 20,
        *,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
        sleep: Callable[[float], None] = time.sleep,
        on_tick: Optional[Callable[[SchedulerStats], None]] = None,
    ) -> None:
        self.ctx = ctx
        self.tick_interval = tick_interval
        self.state = SchedulerState.RUNNING
        self.dispatched = 0
        self._spawn = spawn
        self._sleep = sleep
        self._on_tick = on_tick

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            queue=self.ctx.queue.stats(),
            in_flight=self.ctx.in_flight.value,
            dispatched=self.dispatched,
            courses=self.ctx.aggregator.course_count,
            small_groups=self.ctx.aggregator.small_group_count,
        )

    def tick(self) -> SchedulerState:
        """One dispatch step. Raises CrawlAborted if a handler failed."""
        failure = self.ctx.failure
        if failure is not None:
            self.state = SchedulerState.HALTED
            raise CrawlAborted(f"crawl aborted: {failure}") from failure

        entry = self.ctx.queue.pop()
        if entry is not None:
            self.ctx.in_flight.increment()
            self.dispatched += 1
            self._spawn(lambda: run_handler(self.ctx, entry))
        elif self.ctx.in_flight.value == 0 and len(self.ctx.queue) == 0:
            # in_flight is read before the queue: a finished handler has already
            # pushed everything it found, so an empty queue now is final
            failure = self.ctx.failure
            self.state = SchedulerState.HALTED
            if failure is not None:
                raise CrawlAborted(f"crawl aborted: {failure}") from failure

        if self._on_tick is not None:
            self._on_tick(self.stats())
        return self.state

    def run(self) -> CrawlSnapshot:
        """Tick until halted, then return the aggregated snapshot."""
        while self.tick() is SchedulerState.RUNNING:
            self._sleep(self.tick_interval)

        LOGGER.info(
            "Crawl finished: %d task(s), %d course(s), %d small group(s)",
            self.dispatched,
            self.ctx.aggregator.course_count,
            self.ctx.aggregator.small_group_count,
        )
        return self.ctx.aggregator.snapshot()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def crawl_semester(
    fetch: Callable[[str], str],
    extractor: PageExtractor,
    *,
    base_url: str,
    semester: str,
    tick_interval: float = 1 / 20,
    queue: Optional[WorkQueue] = None,
    on_tick: Optional[Callable[[SchedulerStats], None]] = None,
) -> CrawlSnapshot:
    """
    Crawl one semester of the catalog and return the raw snapshot.
    """
    ctx = CrawlContext(
        fetch=fetch,
        extractor=extractor,
        base_url=base_url,
        semester=semester,
        queue=queue if queue is not None else WorkQueue(),
    )
    ctx.queue.push_back(MainEntry())

    LOGGER.info("Crawling %r from %s", semester, base_url)
    return Scheduler(ctx, tick_interval, on_tick=on_tick).run()

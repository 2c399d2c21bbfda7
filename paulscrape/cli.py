"""
CLI (Command Line Interface).

Two commands, run one after the other:

    paulscrape crawl   [--semester "Wintersemester 2023/24"] [--out state.json]
    paulscrape convert [--in state.json] [--out semester.json]

Defaults come from the environment (see paulscrape/config.py), flags win.

Note:
- crawl needs the network, convert only reads the snapshot file
- fatal errors are logged and turned into exit code 1
"""

from __future__ import annotations

import argparse
import logging
import random
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from paulscrape.config import VERSION, Settings, settings_from_env
from paulscrape.convert import convert_snapshot
from paulscrape.errors import PaulScrapeError
from paulscrape.fetch import DEFAULT_POOL_SIZE, Fetcher, RetryPolicy, constant_backoff, no_backoff
from paulscrape.parse import PaulExtractor
from paulscrape.scrape import SchedulerStats, crawl_semester
from paulscrape.storage import load_snapshot, save_semester, save_snapshot
from paulscrape.work_queue import WorkQueue


LOGGER = logging.getLogger("paulscrape")

console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # urllib3 logs every connection at DEBUG, far too noisy next to our own lines
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _retry_policy(settings: Settings) -> RetryPolicy:
    backoff = constant_backoff(settings.backoff_seconds) if settings.backoff_seconds > 0 else no_backoff
    return RetryPolicy(max_attempts=settings.max_attempts, backoff=backoff)


def _describe(stats: SchedulerStats) -> str:
    return (
        f"trees {stats.queue.trees}  leaves {stats.queue.leaves}  "
        f"in flight {stats.in_flight}  courses {stats.courses}  small groups {stats.small_groups}"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_crawl(args: argparse.Namespace, settings: Settings) -> int:
    """
    Crawl one semester and write the raw snapshot.
    """
    settings = settings.with_overrides(
        base_url=args.base_url,
        semester=args.semester,
        requests_per_second=args.rate,
        max_attempts=args.max_attempts,
        backoff_seconds=args.backoff,
        snapshot_path=args.out,
    )

    # a few seconds worth of dispatches may be waiting on the server at once
    pool_size = max(DEFAULT_POOL_SIZE, int(settings.requests_per_second * 4))
    fetcher = Fetcher(policy=_retry_policy(settings), user_agent=settings.user_agent, pool_size=pool_size)
    queue = WorkQueue(random.Random(args.seed) if args.seed is not None else None)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("starting", total=None)

            def on_tick(stats: SchedulerStats) -> None:
                progress.update(task, description=_describe(stats))

            snapshot = crawl_semester(
                fetcher,
                PaulExtractor(),
                base_url=settings.base_url,
                semester=settings.semester,
                tick_interval=settings.tick_interval,
                queue=queue,
                on_tick=on_tick,
            )
    finally:
        fetcher.close()

    save_snapshot(snapshot, settings.snapshot_path)
    return 0


def _cmd_convert(args: argparse.Namespace, settings: Settings) -> int:
    """
    Convert a snapshot into the published semester document.
    """
    settings = settings.with_overrides(snapshot_path=args.input, semester_path=args.out)

    snapshot = load_snapshot(settings.snapshot_path)
    document = convert_snapshot(snapshot)
    save_semester(document, settings.semester_path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="paulscrape", description="PAUL course catalog crawler")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every request and task")
    sub = parser.add_subparsers(dest="command", required=True)

    p_crawl = sub.add_parser("crawl", help="Crawl one semester into a snapshot file")
    p_crawl.add_argument("--base-url", type=str, default=None, help="Portal start URL (env BASE_URL)")
    p_crawl.add_argument(
        "--semester", "-s", type=str, default=None, help='Semester label, e.g. "Wintersemester 2023/24" (env SEMESTER)'
    )
    p_crawl.add_argument("--rate", type=float, default=None, help="Dispatches per second (env REQUESTS_PER_SECOND)")
    p_crawl.add_argument(
        "--max-attempts", type=int, default=None, help="Give up on a page after N attempts (default: never)"
    )
    p_crawl.add_argument("--backoff", type=float, default=None, help="Seconds to wait between attempts (default: 0)")
    p_crawl.add_argument("--out", type=str, default=None, help="Snapshot output path (env SNAPSHOT_PATH)")
    p_crawl.add_argument("--seed", type=int, default=None, help="Seed for the random traversal order")

    p_convert = sub.add_parser("convert", help="Convert a snapshot into a semester document")
    p_convert.add_argument("--in", dest="input", type=str, default=None, help="Snapshot path (env SNAPSHOT_PATH)")
    p_convert.add_argument("--out", type=str, default=None, help="Semester output path (env SEMESTER_PATH)")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        settings = settings_from_env()
        if args.command == "crawl":
            raise SystemExit(_cmd_crawl(args, settings))
        if args.command == "convert":
            raise SystemExit(_cmd_convert(args, settings))
    except PaulScrapeError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc

    raise SystemExit(2)

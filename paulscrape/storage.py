"""
Persistent storage for crawl snapshots and semester documents.

This module manages two files:

    state.json      raw CrawlSnapshot written once at the end of a crawl
    semester.json   published SemesterDocument written by the converter

The crawl phase and the convert phase only talk to each other through the
snapshot file, so the converter never needs the network.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from paulscrape.errors import PaulScrapeError
from paulscrape.model import Course, CrawlSnapshot, SemesterDocument, SmallGroup


LOGGER = logging.getLogger(__name__)


def _write_json_atomic(payload: Any, path: str | Path) -> Path:
    """
    Write JSON next to the target and rename it into place.

    Readers never see a half-written file.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{out.name}.", suffix=".tmp", dir=out.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
        os.replace(tmp_name, out)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return out


def _parse_instant(raw: str) -> datetime:
    # fromisoformat() only learned the "Z" suffix in Python 3.11
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def snapshot_to_dict(snapshot: CrawlSnapshot) -> dict[str, Any]:
    return {
        "semester": snapshot.semester,
        "start_time": snapshot.start_time.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "courses": [c.to_dict() for c in snapshot.courses],
        "small_groups": [sg.to_dict() for sg in snapshot.small_groups],
    }


def snapshot_from_dict(data: dict[str, Any]) -> CrawlSnapshot:
    try:
        return CrawlSnapshot(
            semester=str(data["semester"]),
            start_time=_parse_instant(str(data["start_time"])),
            courses=[Course.from_dict(c) for c in data.get("courses", [])],
            small_groups=[SmallGroup.from_dict(sg) for sg in data.get("small_groups", [])],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PaulScrapeError(f"Malformed snapshot: {exc!r}") from exc


def save_snapshot(snapshot: CrawlSnapshot, path: str | Path) -> Path:
    out = _write_json_atomic(snapshot_to_dict(snapshot), path)
    LOGGER.info(
        "Wrote snapshot with %d course(s) and %d small group(s) to %s",
        len(snapshot.courses),
        len(snapshot.small_groups),
        out,
    )
    return out


def load_snapshot(path: str | Path) -> CrawlSnapshot:
    """
    Load a snapshot written by save_snapshot().

    Unlike user state, a missing or broken snapshot is an error: converting
    an empty dataset would publish nothing.
    """
    snapshot_path = Path(path)
    try:
        data = json.loads(snapshot_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise PaulScrapeError(f"Snapshot file not found: {snapshot_path}") from None
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PaulScrapeError(f"Cannot read snapshot {snapshot_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise PaulScrapeError(f"Snapshot {snapshot_path} is not a JSON object")
    return snapshot_from_dict(data)


# ---------------------------------------------------------------------------
# Semester document
# ---------------------------------------------------------------------------


def save_semester(document: SemesterDocument, path: str | Path) -> Path:
    out = _write_json_atomic(document.to_dict(), path)
    LOGGER.info("Wrote semester %r with %d course(s) to %s", document.name, len(document.courses), out)
    return out

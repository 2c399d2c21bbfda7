"""
Unit tests for snapshot and semester file storage.

Storage contract:
- a saved snapshot loads back into equal records
- start_time is written as an ISO-8601 UTC instant
- a missing or broken snapshot is an error, never an empty dataset
"""

import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path as FsPath

from crawl_fixtures import appt

from paulscrape.convert import convert_snapshot
from paulscrape.errors import PaulScrapeError
from paulscrape.model import Course, CrawlSnapshot, Path, SmallGroup
from paulscrape.storage import load_snapshot, save_semester, save_snapshot


SEMESTER = "Wintersemester 2023/24"


def _snapshot() -> CrawlSnapshot:
    group = SmallGroup("https://x.test/g1", Path((SEMESTER, "Übung 1")), [appt("04")])
    course = Course(
        path=Path((SEMESTER, "Informatik", "L.079.05401\nGrundlagen")),
        instructors="Prof. Dr. Ada Lovelace",
        organizational_unit=None,
        appointments=[appt("02"), appt("09")],
        small_group_urls=[group.url],
    )
    return CrawlSnapshot(
        semester=SEMESTER,
        start_time=datetime(2023, 10, 1, 12, 30, tzinfo=timezone.utc),
        courses=[course],
        small_groups=[group],
    )


class TestSnapshotStorage(unittest.TestCase):
    def test_save_and_load(self) -> None:
        snapshot = _snapshot()
        with tempfile.TemporaryDirectory() as d:
            p = FsPath(d) / "nested" / "state.json"
            save_snapshot(snapshot, p)

            data = json.loads(p.read_text(encoding="utf-8"))
            self.assertEqual(data["semester"], SEMESTER)
            self.assertEqual(data["start_time"], "2023-10-01T12:30:00Z")
            self.assertEqual(data["courses"][0]["path"]["fragments"][-1], "L.079.05401\nGrundlagen")
            self.assertEqual(data["small_groups"][0]["url"], "https://x.test/g1")

            loaded = load_snapshot(p)
            self.assertEqual(loaded, snapshot)

            # no temporary files are left behind
            self.assertEqual([x.name for x in p.parent.iterdir()], ["state.json"])

    def test_load_missing_file_is_error(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(PaulScrapeError):
                load_snapshot(FsPath(d) / "missing.json")

    def test_load_broken_file_is_error(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = FsPath(d) / "state.json"
            p.write_text("{not json", encoding="utf-8")
            with self.assertRaises(PaulScrapeError):
                load_snapshot(p)

            p.write_text(json.dumps({"courses": []}), encoding="utf-8")
            with self.assertRaises(PaulScrapeError):
                load_snapshot(p)


class TestSemesterStorage(unittest.TestCase):
    def test_semester_document_schema(self) -> None:
        document = convert_snapshot(_snapshot())
        with tempfile.TemporaryDirectory() as d:
            p = save_semester(document, FsPath(d) / "semester.json")
            data = json.loads(p.read_text(encoding="utf-8"))

        self.assertEqual(data["name"], SEMESTER)
        self.assertEqual(data["created"], "2023-10-01T12:30:00")
        (course,) = data["courses"]
        self.assertEqual(
            sorted(course),
            ["appointments", "description", "id", "instructors", "name", "organizational_unit", "small_groups"],
        )
        self.assertEqual(course["small_groups"][0]["name"], "Übung 1")
        self.assertEqual(
            sorted(course["appointments"][0]),
            ["end_time", "instructors", "room", "start_time"],
        )


if __name__ == "__main__":
    unittest.main()

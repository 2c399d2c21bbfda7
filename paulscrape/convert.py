"""
Conversion (CrawlSnapshot -> SemesterDocument).

- Resolves the small-group references of every course
- Derives course code and name from the course breadcrumb
- Assigns stable ids: "<code>|<hash>" or "<code>|<hash>:<rank>"

Important rules (DO NOT CHANGE):
- Any inconsistency is fatal, nothing is published from a broken snapshot
- The same snapshot always yields the same ids
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import timezone
from typing import Any, Dict, List, Tuple

from paulscrape.errors import ExtractionError, ReferentialError
from paulscrape.model import (
    CanonicalCourse,
    CanonicalSmallGroup,
    Course,
    CrawlSnapshot,
    SemesterDocument,
    SmallGroup,
)
from paulscrape.parse import strip_small_group_prefix


LOGGER = logging.getLogger(__name__)

CREATED_FORMAT = "%Y-%m-%dT%H:%M:%S"
HASH_SUFFIX_LENGTH = 2


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def split_code_title(course: Course) -> Tuple[str, str]:
    """
    The last breadcrumb of a course is "code\\ntitle".
    """
    if not course.path.fragments:
        raise ExtractionError("Course without breadcrumb")
    text = course.path.last
    # only "\n" separates lines; a trailing newline does not start a new one
    lines = [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]
    if text.endswith("\n"):
        lines.pop()
    if len(lines) < 2:
        raise ExtractionError(f"Course breadcrumb has no code/title lines: {course.path.last!r} ({course.path})")
    return lines[0], lines[1]


def provisional_id(code: str, title: str, instructors: str) -> str:
    """
    Course codes are reused across courses, so two hex chars of
    sha256(title + instructors) are appended.
    """
    digest = hashlib.sha256(f"{title}{instructors}".encode("utf-8")).hexdigest()
    return f"{code}|{digest[:HASH_SUFFIX_LENGTH]}"


def record_sort_key(course: CanonicalCourse) -> Tuple[Any, ...]:
    """
    Total order over everything except the id. A missing organizational
    unit sorts before any present one.
    """
    return (
        course.name,
        course.description,
        (course.organizational_unit is not None, course.organizational_unit or ""),
        course.instructors,
        tuple(sg.sort_key() for sg in course.small_groups),
        tuple(a.sort_key() for a in course.appointments),
    )


def assign_ids(courses: List[CanonicalCourse]) -> List[CanonicalCourse]:
    """
    Resolve provisional id collisions.

    Singletons keep their id; a group of k courses sharing an id is ordered by
    record_sort_key() and gets ":0" .. ":k-1" appended. The result is
    ordered by final id.
    """
    groups: Dict[str, List[CanonicalCourse]] = defaultdict(list)
    for course in courses:
        groups[course.id].append(course)

    out: List[CanonicalCourse] = []
    for pid, members in groups.items():
        if len(members) == 1:
            out.append(members[0])
            continue
        LOGGER.debug("%d courses share id %s", len(members), pid)
        for rank, course in enumerate(sorted(members, key=record_sort_key)):
            out.append(replace(course, id=f"{pid}:{rank}"))

    out.sort(key=lambda c: c.id)
    return out


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def index_small_groups(small_groups: List[SmallGroup]) -> Dict[str, CanonicalSmallGroup]:
    index: Dict[str, CanonicalSmallGroup] = {}
    for sg in small_groups:
        if sg.url in index:
            raise ReferentialError(f"Small group {sg.url} appears more than once in the snapshot")
        if not sg.path.fragments:
            raise ExtractionError(f"Small group {sg.url} has no breadcrumb")
        index[sg.url] = CanonicalSmallGroup(
            name=strip_small_group_prefix(sg.path.last),
            appointments=tuple(sg.appointments),
        )
    return index


def convert_course(course: Course, small_groups: Dict[str, CanonicalSmallGroup]) -> CanonicalCourse:
    resolved: List[CanonicalSmallGroup] = []
    for url in course.small_group_urls:
        sg = small_groups.get(url)
        if sg is None:
            raise ReferentialError(f"Course {course.path} references unknown small group {url}")
        resolved.append(sg)

    code, title = split_code_title(course)

    return CanonicalCourse(
        id=provisional_id(code, title, course.instructors),
        name=title,
        description="",
        organizational_unit=course.organizational_unit,
        instructors=course.instructors,
        small_groups=tuple(resolved),
        appointments=tuple(course.appointments),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def convert_snapshot(snapshot: CrawlSnapshot) -> SemesterDocument:
    """
    Turn a raw snapshot into the published semester document.
    """
    small_groups = index_small_groups(snapshot.small_groups)

    converted = [convert_course(c, small_groups) for c in snapshot.courses]

    # a course reachable through two branches was recorded twice
    unique = list(dict.fromkeys(converted))
    if len(unique) != len(converted):
        LOGGER.info("Dropped %d duplicate course record(s)", len(converted) - len(unique))

    courses = assign_ids(unique)

    return SemesterDocument(
        name=snapshot.semester,
        created=snapshot.start_time.astimezone(timezone.utc).strftime(CREATED_FORMAT),
        courses=courses,
    )

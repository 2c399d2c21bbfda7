"""
Central data model definitions used across the project.

This module defines the canonical structure of the crawl records so that:
- the crawler, the snapshot file and the converter share the same field names
- raw records (snapshot) and published records (semester document) stay apart
- every record can be turned into plain JSON-ready dicts and back
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Breadcrumbs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Path:
    """
    Breadcrumb trail from the semester root to a node.

    Paths are immutable: push() returns a new Path.
    """

    fragments: Tuple[str, ...] = ()

    def push(self, fragment: str) -> "Path":
        return Path(self.fragments + (fragment,))

    @property
    def last(self) -> str:
        if not self.fragments:
            raise IndexError("empty path has no last fragment")
        return self.fragments[-1]

    def __str__(self) -> str:
        return " > ".join(f.replace("\n", " ") for f in self.fragments)

    def to_dict(self) -> Dict[str, Any]:
        return {"fragments": list(self.fragments)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Path":
        return cls(tuple(str(f) for f in data.get("fragments", [])))


# ---------------------------------------------------------------------------
# Work queue entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MainEntry:
    """Bootstrap task: discover the semester root pages."""

    kind = "main"


@dataclass(frozen=True)
class TreeEntry:
    """Branch page whose body lists further branches and/or course leaves."""

    url: str
    path: Path
    kind = "tree"


@dataclass(frozen=True)
class CourseLeafEntry:
    url: str
    path: Path
    kind = "course"


@dataclass(frozen=True)
class SmallGroupLeafEntry:
    url: str
    path: Path
    kind = "small_group"


QueueEntry = Union[MainEntry, TreeEntry, CourseLeafEntry, SmallGroupLeafEntry]


# ---------------------------------------------------------------------------
# Raw records (crawl snapshot)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Appointment:
    """
    One meeting of a course or small group.

    start_time/end_time are normalized "YYYY-MM-DDTHH:MM:SS" strings.
    """

    start_time: str
    end_time: str
    room: str
    instructors: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "room": self.room,
            "instructors": self.instructors,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Appointment":
        return cls(
            start_time=str(data["start_time"]),
            end_time=str(data["end_time"]),
            room=str(data["room"]),
            instructors=str(data["instructors"]),
        )

    def sort_key(self) -> Tuple[str, str, str, str]:
        return (self.start_time, self.end_time, self.room, self.instructors)


@dataclass
class SmallGroup:
    """
    A small-group section (tutorial, exercise group) of a course.

    url is the unique key courses reference it by.
    """

    url: str
    path: Path
    appointments: List[Appointment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "path": self.path.to_dict(),
            "appointments": [a.to_dict() for a in self.appointments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SmallGroup":
        return cls(
            url=str(data["url"]),
            path=Path.from_dict(data["path"]),
            appointments=[Appointment.from_dict(a) for a in data.get("appointments", [])],
        )


@dataclass
class Course:
    """
    Represents one course as discovered by the crawler.

    The last path fragment holds "code\\ntitle".
    """

    path: Path
    instructors: str
    organizational_unit: Optional[str] = None
    appointments: List[Appointment] = field(default_factory=list)
    small_group_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path.to_dict(),
            "instructors": self.instructors,
            "organizational_unit": self.organizational_unit,
            "appointments": [a.to_dict() for a in self.appointments],
            "small_group_urls": list(self.small_group_urls),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Course":
        ou = data.get("organizational_unit")
        return cls(
            path=Path.from_dict(data["path"]),
            instructors=str(data.get("instructors", "")),
            organizational_unit=None if ou is None else str(ou),
            appointments=[Appointment.from_dict(a) for a in data.get("appointments", [])],
            small_group_urls=[str(u) for u in data.get("small_group_urls", [])],
        )


@dataclass
class CrawlSnapshot:
    """Everything one crawl run produced, before conversion."""

    semester: str
    start_time: datetime
    courses: List[Course] = field(default_factory=list)
    small_groups: List[SmallGroup] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Published records (semester document)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CanonicalSmallGroup:
    name: str
    appointments: Tuple[Appointment, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "appointments": [a.to_dict() for a in self.appointments]}

    def sort_key(self) -> Tuple[Any, ...]:
        return (self.name, tuple(a.sort_key() for a in self.appointments))


@dataclass(frozen=True)
class CanonicalCourse:
    id: str
    name: str
    description: str
    organizational_unit: Optional[str]
    instructors: str
    small_groups: Tuple[CanonicalSmallGroup, ...] = ()
    appointments: Tuple[Appointment, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "organizational_unit": self.organizational_unit,
            "instructors": self.instructors,
            "small_groups": [sg.to_dict() for sg in self.small_groups],
            "appointments": [a.to_dict() for a in self.appointments],
        }


@dataclass
class SemesterDocument:
    name: str
    created: str
    courses: List[CanonicalCourse] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "created": self.created,
            "courses": [c.to_dict() for c in self.courses],
        }

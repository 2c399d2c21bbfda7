"""
Parsing (HTML -> structured records).

This is the only module that knows PAUL's markup. The crawler talks to it
through the PageExtractor interface, one method per page kind:

- semester discovery (start page -> list of (label, url))
- tree pages   -> course leaves + further branches
- course pages -> raw Course + small-group links
- small groups -> SmallGroup

Important rules:
- A missing expected element raises ExtractionError. Never guess, never skip.
- Appointment times are normalized here, the converter uses them unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from paulscrape.errors import ExtractionError
from paulscrape.model import (
    Appointment,
    Course,
    CourseLeafEntry,
    Path,
    SmallGroup,
    SmallGroupLeafEntry,
    TreeEntry,
)


# ---------------------------------------------------------------------------
# Extractor interface
# ---------------------------------------------------------------------------


@dataclass
class TreePage:
    course_leaves: List[CourseLeafEntry] = field(default_factory=list)
    branches: List[TreeEntry] = field(default_factory=list)


@dataclass
class CoursePage:
    course: Course
    small_group_links: List[SmallGroupLeafEntry] = field(default_factory=list)


class PageExtractor(Protocol):
    def discover_semesters(self, fetch: Callable[[str], str], base_url: str) -> List[Tuple[str, str]]:
        ...

    def extract_tree(self, body: str, url: str, path: Path) -> TreePage:
        ...

    def extract_course(self, body: str, url: str, path: Path) -> CoursePage:
        ...

    def extract_small_group(self, body: str, url: str, path: Path) -> SmallGroup:
        ...


# ---------------------------------------------------------------------------
# Time normalization
# ---------------------------------------------------------------------------

MONTHS = {
    "Jan": 1,
    "Feb": 2,
    "Mrz": 3,
    "Mär": 3,
    "Apr": 4,
    "Mai": 5,
    "Jun": 6,
    "Jul": 7,
    "Aug": 8,
    "Sep": 9,
    "Okt": 10,
    "Nov": 11,
    "Dez": 12,
}

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def convert_time(date_str: str, time_str: str) -> str:
    """
    "Mo 02. Okt. 2023" + "10:15" -> "2023-10-02T10:15:00"

    "24:00" (end of day in PAUL) becomes "23:59".
    """
    parts = date_str.replace("\xa0", " ").split()
    if len(parts) != 4:
        raise ExtractionError(f"Unexpected date format: {date_str!r}")

    _weekday, day_s, month_s, year_s = parts
    month = MONTHS.get(month_s.replace(".", ""))
    if month is None:
        raise ExtractionError(f"Unknown month in date: {date_str!r}")
    try:
        day = int(day_s.replace(".", ""))
        year = int(year_s)
    except ValueError:
        raise ExtractionError(f"Unexpected date format: {date_str!r}") from None

    time_str = time_str.strip()
    if time_str == "24:00":
        time_str = "23:59"
    if not _TIME_RE.match(time_str):
        raise ExtractionError(f"Unexpected time format: {time_str!r}")

    return f"{year}-{month:02d}-{day:02d}T{time_str}:00"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SMALL_GROUP_PREFIX = "Kleingruppe:"


def _soup(body: str) -> BeautifulSoup:
    return BeautifulSoup(body, "html.parser")


def _text(el: Tag) -> str:
    """Single-line text with &nbsp; turned into plain spaces."""
    return " ".join(el.get_text(" ", strip=True).replace("\xa0", " ").split())


def _lines(el: Tag) -> str:
    """Text with one line per text node, empty lines dropped."""
    raw = el.get_text("\n").replace("\xa0", " ")
    return "\n".join(line.strip() for line in raw.splitlines() if line.strip())


def _href(a: Tag, base: str) -> str:
    href = a.get("href")
    if not href:
        raise ExtractionError(f"Link without href on {base}: {a!r}")
    return urljoin(base, href)


def _cell(row: Tag, name: str, url: str) -> str:
    td = row.select_one(f"td[name='{name}']")
    if td is None:
        raise ExtractionError(f"Appointment row without {name} cell on {url}")
    return _text(td)


def _extract_appointments(soup: BeautifulSoup, url: str) -> List[Appointment]:
    """
    Read every appointment row. Rows are recognised by their date cell.
    """
    appointments: List[Appointment] = []

    for row in soup.select("tr"):
        if row.select_one("td[name='appointmentDate']") is None:
            continue

        date = _cell(row, "appointmentDate", url)
        start = _cell(row, "appointmentTimeFrom", url)
        end = _cell(row, "appointmentDateTo", url)

        appointments.append(
            Appointment(
                start_time=convert_time(date, start),
                end_time=convert_time(date, end),
                room=_cell(row, "appointmentRooms", url),
                instructors=_cell(row, "appointmentInstructors", url),
            )
        )

    return appointments


def strip_small_group_prefix(title: str) -> str:
    """'Kleingruppe:\\xa0Gruppe 1' -> 'Gruppe 1'"""
    title = title.replace("\xa0", " ").strip()
    if title.startswith(SMALL_GROUP_PREFIX):
        title = title[len(SMALL_GROUP_PREFIX):]
    return title.strip()


# ---------------------------------------------------------------------------
# PAUL extractor
# ---------------------------------------------------------------------------


class PaulExtractor:
    """
    PageExtractor for PAUL (CampusNet) markup.
    """

    def discover_semesters(self, fetch: Callable[[str], str], base_url: str) -> List[Tuple[str, str]]:
        """
        Follow the start page to the course catalog and list its semesters.

        The start page is a meta refresh, the page behind it links to the
        actual portal start page as its second anchor.
        """
        soup = _soup(fetch(base_url))
        meta = soup.select_one("meta[http-equiv=refresh]")
        content = meta.get("content") if meta is not None else None
        if not content or ";" not in content or "=" not in content:
            raise ExtractionError(f"No meta refresh redirect on {base_url}")

        # content is "<seconds>; URL=<target>"
        target = content.split(";", 1)[1].split("=", 1)[1].strip()
        redirect = urljoin(base_url, target)

        anchors = _soup(fetch(redirect)).select("a[href]")
        if len(anchors) < 2:
            raise ExtractionError(f"Expected a start page link on {redirect}")
        start_page = _href(anchors[1], base_url)

        catalog = _soup(fetch(start_page))
        semesters: List[Tuple[str, str]] = []
        for li in catalog.select("li.intern.depth_2.linkItem"):
            title = li.get("title") or ""
            if not (title.startswith("Sommer") or title.startswith("Winter")):
                continue
            a = li.select_one("a")
            if a is None:
                raise ExtractionError(f"Semester item {title!r} has no link on {start_page}")
            semesters.append((title, _href(a, base_url)))

        return semesters

    def extract_tree(self, body: str, url: str, path: Path) -> TreePage:
        soup = _soup(body)
        page = TreePage()

        for a in soup.select("a.courseTitle"):
            label = _lines(a)
            if not label:
                raise ExtractionError(f"Course link without text on {url}")
            page.course_leaves.append(CourseLeafEntry(_href(a, url), path.push(label)))

        for a in soup.select("a.auditRegNodeLink"):
            # branch names live in the title of the surrounding <li>
            parent = a.parent
            title = parent.get("title") if isinstance(parent, Tag) else None
            if not title:
                raise ExtractionError(f"Branch link without title on {url} ({path})")
            page.branches.append(TreeEntry(_href(a, url), path.push(title)))

        return page

    def extract_course(self, body: str, url: str, path: Path) -> CoursePage:
        soup = _soup(body)

        instructors_el = soup.select_one("span#dozenten")
        if instructors_el is None:
            raise ExtractionError(f"No instructors element on course page {url} ({path})")

        ou_el = soup.select_one("span[name='courseOrgUnit']")
        organizational_unit: Optional[str] = _text(ou_el) if ou_el is not None else None

        small_group_links: List[SmallGroupLeafEntry] = []
        small_group_urls: List[str] = []
        for a in soup.select("ul.dl-ul-listview li.listelement a[href]"):
            sg_url = _href(a, url)
            small_group_urls.append(sg_url)
            small_group_links.append(SmallGroupLeafEntry(sg_url, path))

        course = Course(
            path=path,
            instructors=_text(instructors_el),
            organizational_unit=organizational_unit or None,
            appointments=_extract_appointments(soup, url),
            small_group_urls=small_group_urls,
        )
        return CoursePage(course=course, small_group_links=small_group_links)

    def extract_small_group(self, body: str, url: str, path: Path) -> SmallGroup:
        soup = _soup(body)

        title_el = soup.select_one("form h2") or soup.select_one("h2")
        if title_el is None:
            raise ExtractionError(f"No title on small group page {url} ({path})")

        name = strip_small_group_prefix(title_el.get_text(strip=True))
        if not name:
            raise ExtractionError(f"Empty small group name on {url} ({path})")

        return SmallGroup(
            url=url,
            path=path.push(name),
            appointments=_extract_appointments(soup, url),
        )

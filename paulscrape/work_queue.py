"""
Pending crawl tasks.

pop() hands out a uniformly random entry instead of the oldest one. This
spreads requests over unrelated branches of the catalog instead of walking
one subtree to the bottom first.
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

from paulscrape.model import MainEntry, QueueEntry, TreeEntry


@dataclass(frozen=True)
class QueueStats:
    """Pending entries per category. Main and tree pages count as trees."""

    trees: int
    leaves: int

    @property
    def total(self) -> int:
        return self.trees + self.leaves


def _is_tree(entry: QueueEntry) -> bool:
    return isinstance(entry, (MainEntry, TreeEntry))


class WorkQueue:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._entries: List[QueueEntry] = []
        self._trees = 0
        self._leaves = 0
        self._lock = threading.Lock()

    def push_back(self, entry: QueueEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            if _is_tree(entry):
                self._trees += 1
            else:
                self._leaves += 1

    def push_many(self, entries: Iterable[QueueEntry]) -> None:
        for entry in entries:
            self.push_back(entry)

    def pop(self) -> Optional[QueueEntry]:
        with self._lock:
            if not self._entries:
                return None
            # swap the chosen entry to the end so removal is O(1)
            idx = self._rng.randrange(len(self._entries))
            self._entries[idx], self._entries[-1] = self._entries[-1], self._entries[idx]
            entry = self._entries.pop()
            if _is_tree(entry):
                self._trees -= 1
            else:
                self._leaves -= 1
            return entry

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(trees=self._trees, leaves=self._leaves)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

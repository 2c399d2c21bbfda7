"""
Unit tests for the work queue.

Queue contract:
- pop() returns every pushed entry exactly once, in random order
- pop() on an empty queue returns None
- tree/leaf counters always agree with len()
"""

import random
import threading
import unittest

from paulscrape.model import CourseLeafEntry, MainEntry, Path, SmallGroupLeafEntry, TreeEntry
from paulscrape.work_queue import WorkQueue


def _entries(n: int) -> list:
    out = []
    for i in range(n):
        path = Path((f"node {i}",))
        if i % 3 == 0:
            out.append(TreeEntry(f"https://x.test/t{i}", path))
        elif i % 3 == 1:
            out.append(CourseLeafEntry(f"https://x.test/c{i}", path))
        else:
            out.append(SmallGroupLeafEntry(f"https://x.test/g{i}", path))
    return out


class TestWorkQueue(unittest.TestCase):
    def test_pop_empty_returns_none(self) -> None:
        q = WorkQueue()
        self.assertIsNone(q.pop())
        self.assertEqual(len(q), 0)

    def test_pop_is_a_permutation(self) -> None:
        entries = _entries(50)
        q = WorkQueue(random.Random(7))
        for e in entries:
            q.push_back(e)

        popped = [q.pop() for _ in range(len(entries))]

        self.assertEqual(len(q), 0)
        self.assertIsNone(q.pop())
        self.assertCountEqual(popped, entries)

    def test_order_is_random_not_fifo(self) -> None:
        entries = _entries(50)
        q = WorkQueue(random.Random(1))
        q.push_many(entries)
        popped = [q.pop() for _ in range(len(entries))]
        self.assertNotEqual(popped, entries)

    def test_same_seed_same_order(self) -> None:
        entries = _entries(30)
        orders = []
        for _ in range(2):
            q = WorkQueue(random.Random(42))
            q.push_many(entries)
            orders.append([q.pop() for _ in range(len(entries))])
        self.assertEqual(orders[0], orders[1])

    def test_counters_follow_mutations(self) -> None:
        q = WorkQueue(random.Random(3))
        q.push_back(MainEntry())
        q.push_back(TreeEntry("https://x.test/t", Path(("a",))))
        q.push_back(CourseLeafEntry("https://x.test/c", Path(("a", "b"))))

        stats = q.stats()
        self.assertEqual((stats.trees, stats.leaves), (2, 1))
        self.assertEqual(stats.total, len(q))

        while q.pop() is not None:
            stats = q.stats()
            self.assertEqual(stats.total, len(q))

        self.assertEqual((q.stats().trees, q.stats().leaves), (0, 0))

    def test_concurrent_pushes_and_pops_lose_nothing(self) -> None:
        q = WorkQueue(random.Random(5))
        entries = _entries(400)
        popped = []
        popped_lock = threading.Lock()

        def producer(chunk: list) -> None:
            for e in chunk:
                q.push_back(e)

        def consumer() -> None:
            for _ in range(200):
                e = q.pop()
                if e is not None:
                    with popped_lock:
                        popped.append(e)

        threads = [threading.Thread(target=producer, args=(entries[i::4],)) for i in range(4)]
        threads += [threading.Thread(target=consumer) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        while len(q):
            popped.append(q.pop())

        self.assertCountEqual(popped, entries)
        self.assertEqual(q.stats().total, 0)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class Job:
    user_id: str
    activity_id: str


class _Node:
    __slots__ = ("job", "next")

    def __init__(self, job: Job):
        self.job = job
        self.next: _Node | None = None


class WorkQueue:
    """FIFO of pending enrichment jobs.

    Only the drain loop reads from the queue, but poller threads may append
    concurrently, so every mutation happens under one lock. There is no
    deduplication: callers check for an existing activity snapshot before
    adding a job.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._head: _Node | None = None
        self._tail: _Node | None = None
        self._count = 0

    def add(self, job: Job) -> None:
        node = _Node(job)
        with self._lock:
            if self._tail is None:
                self._head = node
            else:
                self._tail.next = node
            self._tail = node
            self._count += 1

    def next(self) -> Job | None:
        with self._lock:
            node = self._head
            if node is None:
                return None
            self._head = node.next
            if self._head is None:
                self._tail = None
            self._count -= 1
            return node.job

    def peek(self) -> Job | None:
        with self._lock:
            return self._head.job if self._head is not None else None

    def size(self) -> int:
        with self._lock:
            return self._count

    def clear(self) -> None:
        """Drop all pending jobs without running them."""
        with self._lock:
            self._head = None
            self._tail = None
            self._count = 0

    def __len__(self) -> int:
        return self.size()

"""
Stage Queue - Bounded queue connecting two pipeline stages.

A plain queue.Queue with two additions the coordinator needs:
- put_unless_cancelled(): blocking put that gives up once the run is cancelled
- join_until(): task-count join that can be abandoned on cancellation

The unfinished task count of each queue doubles as the in-flight counter of
the stage consuming it: an item counts from put() until task_done().
"""

from queue import Queue, Full
from typing import Any, Callable

from .cancellation import CancellationToken


class StageQueue(Queue):
    """Bounded multi-producer/multi-consumer queue with cancellation-aware waits."""

    def __init__(self, name: str, maxsize: int = 0):
        super().__init__(maxsize=maxsize)
        self.name = name

    def put_unless_cancelled(self, item: Any, token: CancellationToken,
                             poll_interval: float = 0.5) -> bool:
        """
        Put an item, blocking while the queue is full.

        Args:
            item: Item to enqueue
            token: Run cancellation token, checked between waits
            poll_interval: Seconds to block before re-checking the token

        Returns:
            True if the item was enqueued, False if the run was cancelled first
        """
        while not token.is_cancelled:
            try:
                self.put(item, timeout=poll_interval)
                return True
            except Full:
                continue
        return False

    def in_flight(self) -> int:
        """Number of items put but not yet marked done."""
        with self.mutex:
            return self.unfinished_tasks

    def join_until(self, should_stop: Callable[[], bool],
                   poll_interval: float = 0.5) -> bool:
        """
        Wait until every queued item has been marked done.

        Args:
            should_stop: Checked between waits; a True result abandons the join
            poll_interval: Maximum seconds per wait

        Returns:
            True if the queue drained, False if abandoned
        """
        with self.all_tasks_done:
            while self.unfinished_tasks:
                if should_stop():
                    return False
                self.all_tasks_done.wait(poll_interval)
        return True

    def __repr__(self) -> str:
        return f"<StageQueue name='{self.name}' size={self.qsize()}/{self.maxsize}>"

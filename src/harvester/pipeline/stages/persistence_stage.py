"""
Persistence Stage - Batches records and commits them to the snapshot.

Flush protocol (all under one mutex, so only one flush runs at a time):
1. load the current snapshot
2. append the batch to an in-memory copy
3. write the combined snapshot to a staging location
4. atomically replace the snapshot with the staged one
5. clear the batch

If any step fails, the previous snapshot is left untouched and the batch
stays in memory for the next attempt.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from ..errors import PersistenceFatalError
from ..models import Record
from ..stage import PipelineStage
from ..stage_queue import StageQueue
from ..storage import SnapshotStorage


@dataclass
class PersistenceConfig:
    """Configuration for persistence stage."""
    snapshot_path: str = "data/snapshot.json"
    batch_size: int = 100  # Flush when this many records are waiting
    flush_interval_seconds: float = 10.0  # Flush a non-empty batch at least this often
    max_flush_failures: int = 3  # Consecutive failed flushes before giving up
    indent: Optional[int] = None  # JSON indentation of the snapshot file


class PersistenceStage(PipelineStage):
    """
    Stage 3: Persistence.

    Responsibilities:
    - Accept records into a shared batch
    - Flush on batch size, on elapsed time, and once more at shutdown
    - Commit through the storage collaborator's stage-then-commit protocol
    - Escalate persistent storage failure as a fatal error

    Multiple workers only parallelize accepting records off the queue;
    flushing is serialized by batch_lock.
    """

    def __init__(self, record_queue: StageQueue, storage: SnapshotStorage,
                 config: PersistenceConfig, token, finished,
                 num_workers: int = 1, poll_interval: float = 0.5):
        super().__init__(
            name="Persistence",
            input_queue=record_queue,
            token=token,
            finished=finished,
            num_workers=num_workers,
            poll_interval=poll_interval
        )
        self.storage = storage
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

        # Batch and flush sequence share this lock
        self.batch: List[Record] = []
        self.batch_lock = threading.Lock()
        self.last_flush = time.monotonic()
        self.consecutive_failures = 0

        self.stats = {
            'records_accepted': 0,
            'records_persisted': 0,
            'batches_flushed': 0,
            'flush_failures': 0,
        }

    def process(self, record: Record) -> None:
        """Add a record to the batch, flushing if a threshold is reached."""
        with self.batch_lock:
            self.batch.append(record)
            with self.stats_lock:
                self.stats['records_accepted'] += 1

            if len(self.batch) >= self.config.batch_size:
                self._flush_locked()
            elif self._interval_elapsed():
                self._flush_locked()

    def on_idle(self) -> None:
        with self.batch_lock:
            if self.batch and self._interval_elapsed():
                self._flush_locked()

    def on_exit(self) -> None:
        """Mandatory final flush when a worker shuts down."""
        with self.batch_lock:
            pending = len(self.batch)
            try:
                self._flush_locked(final=True)
            except PersistenceFatalError:
                self.logger.error(f"Final flush failed; {pending} records were not persisted")
                raise

    def flush(self) -> int:
        """
        Flush the current batch.

        Returns:
            Number of records committed (0 for an empty batch or a failed attempt)

        Raises:
            PersistenceFatalError: after max_flush_failures consecutive failures
        """
        with self.batch_lock:
            return self._flush_locked()

    def pending(self) -> int:
        with self.batch_lock:
            return len(self.batch)

    def _interval_elapsed(self) -> bool:
        return time.monotonic() - self.last_flush >= self.config.flush_interval_seconds

    def _flush_locked(self, final: bool = False) -> int:
        if not self.batch:
            return 0

        try:
            committed = self._commit_batch()
        except Exception as e:
            # Any collaborator failure counts as a failed flush
            self.consecutive_failures += 1
            self.last_flush = time.monotonic()
            with self.stats_lock:
                self.stats['flush_failures'] += 1

            if final or self.consecutive_failures >= self.config.max_flush_failures:
                raise PersistenceFatalError(
                    f"Snapshot commit failed {self.consecutive_failures} time(s)", cause=e
                ) from e

            self.logger.warning(
                f"Flush of {len(self.batch)} records failed "
                f"({self.consecutive_failures}/{self.config.max_flush_failures}), "
                f"keeping batch for retry: {e}"
            )
            return 0

        self.consecutive_failures = 0
        self.last_flush = time.monotonic()
        with self.stats_lock:
            self.stats['records_persisted'] += committed
            self.stats['batches_flushed'] += 1
        return committed

    def _commit_batch(self) -> int:
        snapshot = self.storage.load_snapshot()
        combined = snapshot.appended(self.batch)

        with self.storage.write_staging(combined) as staged:
            self.storage.commit_staging(staged)

        committed = len(self.batch)
        self.batch.clear()
        self.logger.info(f"Flushed {committed} records (snapshot now {len(combined)})")
        return committed

    def get_stats(self) -> dict:
        """Get persistence statistics."""
        base_stats = super().get_stats()
        with self.stats_lock:
            base_stats['persistence_stats'] = self.stats.copy()
        base_stats['persistence_stats']['pending'] = self.pending()
        return base_stats

"""
Pipeline Coordinator - Owns the queues and workers of one harvest run.
File: src/harvester/core/coordinator.py

Completion is detected with a join/drain protocol over the three queues in
order. A stage marks a task done only after everything it emitted has been
enqueued downstream, so once the page queue has drained every item has been
enqueued, and once the item queue has drained every record has been.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..pipeline.cancellation import CancellationToken
from ..pipeline.errors import ShutdownRequested
from ..pipeline.fetcher import Fetcher
from ..pipeline.models import PageTask
from ..pipeline.parsers import DetailParser, ListingParser
from ..pipeline.stage import PipelineStage
from ..pipeline.stage_queue import StageQueue
from ..pipeline.stages.detail_stage import DetailStage
from ..pipeline.stages.discovery_stage import DiscoveryStage, SeenPages
from ..pipeline.stages.persistence_stage import PersistenceConfig, PersistenceStage
from ..pipeline.storage import SnapshotStorage


class RunStatus(Enum):
    """Terminal status of a harvest run."""
    COMPLETED = "completed"
    CANCELLED_FATAL = "cancelled_fatal"


@dataclass
class PipelineConfig:
    """Queue capacities, worker counts and timing of the pipeline."""
    page_queue_size: int = 100
    item_queue_size: int = 1000
    record_queue_size: int = 1000

    # Worker counts per stage
    discovery_workers: int = 1
    detail_workers: int = 8
    persist_workers: int = 1

    poll_interval_seconds: float = 0.5
    shutdown_timeout_seconds: float = 30.0
    max_pages: Optional[int] = None  # Stop following "next" links after this many pages


@dataclass
class RunSummary:
    """Outcome of one harvest run."""
    status: RunStatus
    pages_processed: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0
    items_discovered: int = 0
    items_processed: int = 0
    items_failed: int = 0
    records_persisted: int = 0
    batches_flushed: int = 0
    flush_failures: int = 0
    error: Optional[BaseException] = None
    runtime_seconds: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'pages_processed': self.pages_processed,
            'pages_failed': self.pages_failed,
            'pages_skipped': self.pages_skipped,
            'items_discovered': self.items_discovered,
            'items_processed': self.items_processed,
            'items_failed': self.items_failed,
            'records_persisted': self.records_persisted,
            'batches_flushed': self.batches_flushed,
            'flush_failures': self.flush_failures,
            'error': str(self.error) if self.error else None,
            'runtime_seconds': round(self.runtime_seconds, 2),
        }


class PipelineState:
    """
    Coordination state of a single run: the three queues, the cancellation
    token and the completion signal. Only the coordinator creates it.
    """

    def __init__(self, config: PipelineConfig):
        self.page_queue = StageQueue("pages", maxsize=config.page_queue_size)
        self.item_queue = StageQueue("items", maxsize=config.item_queue_size)
        self.record_queue = StageQueue("records", maxsize=config.record_queue_size)
        self.token = CancellationToken()
        self.finished = threading.Event()

    @property
    def queues(self) -> List[StageQueue]:
        return [self.page_queue, self.item_queue, self.record_queue]

    def in_flight(self) -> Dict[str, int]:
        """Per-stage count of tasks enqueued but not yet done."""
        return {q.name: q.in_flight() for q in self.queues}


class PipelineCoordinator:
    """
    Runs the discovery -> detail -> persistence pipeline.

    Collaborators are injected; the coordinator only creates queues, stages
    and threads, and tears them down at the end of every run.
    """

    def __init__(self, fetcher: Fetcher, listing_parser: ListingParser,
                 detail_parser: DetailParser, storage: SnapshotStorage,
                 config: Optional[PipelineConfig] = None,
                 persistence: Optional[PersistenceConfig] = None):
        self.fetcher = fetcher
        self.listing_parser = listing_parser
        self.detail_parser = detail_parser
        self.storage = storage
        self.config = config or PipelineConfig()
        self.persistence = persistence or PersistenceConfig()
        self.logger = logging.getLogger(self.__class__.__name__)

        self.state: Optional[PipelineState] = None
        self.stages: List[PipelineStage] = []
        self._run_lock = threading.Lock()

    def run(self, seed: Union[PageTask, str], discovery_workers: Optional[int] = None,
            detail_workers: Optional[int] = None,
            persist_workers: Optional[int] = None) -> RunSummary:
        """
        Harvest everything reachable from the seed page.

        Args:
            seed: First listing page (a PageTask or its URL)
            discovery_workers: Override for the configured discovery worker count
            detail_workers: Override for the configured detail worker count
            persist_workers: Override for the configured persistence worker count

        Returns:
            RunSummary with per-stage counts and the first fatal error, if any

        Raises:
            ValueError: a worker count is below one
        """
        if isinstance(seed, str):
            seed = PageTask(url=seed)

        if discovery_workers is None:
            discovery_workers = self.config.discovery_workers
        if detail_workers is None:
            detail_workers = self.config.detail_workers
        if persist_workers is None:
            persist_workers = self.config.persist_workers

        for name, count in (('discovery', discovery_workers), ('detail', detail_workers),
                            ('persistence', persist_workers)):
            if count < 1:
                raise ValueError(f"Stage '{name}' needs at least one worker, got {count}")

        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("A run is already in progress on this coordinator")

        try:
            return self._run(seed, discovery_workers, detail_workers, persist_workers)
        finally:
            self._run_lock.release()

    def _run(self, seed: PageTask, discovery_workers: int, detail_workers: int,
             persist_workers: int) -> RunSummary:
        start_time = time.time()
        state = PipelineState(self.config)
        self.state = state
        poll = self.config.poll_interval_seconds

        discovery = DiscoveryStage(
            state.page_queue, state.item_queue, self.fetcher, self.listing_parser,
            state.token, state.finished,
            num_workers=discovery_workers, poll_interval=poll,
            seen_pages=SeenPages(), max_pages=self.config.max_pages
        )
        detail = DetailStage(
            state.item_queue, state.record_queue, self.fetcher, self.detail_parser,
            state.token, state.finished,
            num_workers=detail_workers, poll_interval=poll
        )
        persistence = PersistenceStage(
            state.record_queue, self.storage, self.persistence,
            state.token, state.finished,
            num_workers=persist_workers, poll_interval=poll
        )
        self.stages = [discovery, detail, persistence]

        self.logger.info(
            f"Starting run from {seed.url} with workers "
            f"discovery={discovery_workers} detail={detail_workers} "
            f"persistence={persist_workers}"
        )

        for stage in self.stages:
            stage.start()
        discovery.seed(seed)

        try:
            drained = self._wait_for_drain(state)
        except KeyboardInterrupt:
            state.token.cancel(ShutdownRequested("Interrupted by user"))
            drained = False

        if drained:
            self.logger.info("All queues drained")

        state.finished.set()
        self._join_stages()

        summary = self._build_summary(state, time.time() - start_time)
        self.logger.info(
            f"Run {summary.status.value}: {summary.pages_processed} pages, "
            f"{summary.items_processed} items, {summary.records_persisted} records "
            f"in {summary.runtime_seconds:.2f}s"
        )

        self.state = None
        self.stages = []
        return summary

    def _wait_for_drain(self, state: PipelineState) -> bool:
        """Join the page, item and record queues in order."""
        poll = self.config.poll_interval_seconds
        for queue in state.queues:
            if not queue.join_until(lambda: state.token.is_cancelled, poll):
                self.logger.warning(
                    f"Cancelled while draining '{queue.name}' "
                    f"(in flight: {state.in_flight()})"
                )
                return False
            self.logger.debug(f"Queue '{queue.name}' drained")
        return True

    def _join_stages(self):
        """Wait for workers of every stage, sharing one overall timeout."""
        deadline = time.time() + self.config.shutdown_timeout_seconds
        for stage in self.stages:
            remaining = max(0.0, deadline - time.time())
            if not stage.join(timeout=remaining):
                self.logger.warning(f"Stage '{stage.name}' did not stop within the shutdown timeout")

    def _build_summary(self, state: PipelineState, runtime: float) -> RunSummary:
        discovery, detail, persistence = self.stages
        discovery_stats = discovery.get_stats()
        detail_stats = detail.get_stats()
        persistence_stats = persistence.get_stats()['persistence_stats']

        error = state.token.error
        status = RunStatus.CANCELLED_FATAL if state.token.is_cancelled else RunStatus.COMPLETED

        return RunSummary(
            status=status,
            pages_processed=discovery_stats['discovery_stats']['pages_processed'],
            pages_failed=discovery_stats['errors'],
            pages_skipped=discovery_stats['discovery_stats']['pages_skipped'],
            items_discovered=discovery_stats['discovery_stats']['items_discovered'],
            items_processed=detail_stats['processed'],
            items_failed=detail_stats['errors'],
            records_persisted=persistence_stats['records_persisted'],
            batches_flushed=persistence_stats['batches_flushed'],
            flush_failures=persistence_stats['flush_failures'],
            error=error,
            runtime_seconds=runtime,
        )

    def get_status(self) -> dict:
        """Live status of the current run (empty when idle)."""
        state = self.state
        if state is None:
            return {'is_running': False}
        return {
            'is_running': True,
            'cancelled': state.token.is_cancelled,
            'in_flight': state.in_flight(),
            'stages': [stage.get_stats() for stage in self.stages],
        }

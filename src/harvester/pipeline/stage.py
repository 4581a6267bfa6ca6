"""
Pipeline Stage - Abstract base class for the harvest stages.

This module defines the PipelineStage abstract base class that the discovery,
detail and persistence stages inherit from. It provides:
- Multi-threaded worker management
- Cancellation-aware dequeue and backpressure-aware enqueue
- Per-task error handling (drop and continue) vs fatal errors (cancel the run)
- Statistics tracking
"""

import threading
import logging
import time
from typing import Optional, Any
from queue import Empty
from abc import ABC, abstractmethod

from .cancellation import CancellationToken
from .errors import FatalError, TaskError
from .stage_queue import StageQueue


class PipelineStage(ABC):
    """
    Abstract base class for all pipeline stages.

    Each stage:
    - Reads tasks from input_queue
    - Processes them (implemented by subclass), emitting downstream as needed
    - Runs multiple worker threads for concurrency

    Lifecycle:
    ---------
    1. Create stage instance
    2. Call start() to spawn workers
    3. Workers process tasks until the run is finished or cancelled
    4. Call join() to wait for workers to exit
    """

    def __init__(self, name: str, input_queue: StageQueue, token: CancellationToken,
                 finished: threading.Event, num_workers: int = 1,
                 poll_interval: float = 0.5):
        """
        Initialize pipeline stage.

        Args:
            name: Stage name (for logging/monitoring)
            input_queue: Queue to read tasks from
            token: Run cancellation token
            finished: Set by the coordinator once every queue has drained
            num_workers: Number of worker threads to spawn
            poll_interval: Seconds a worker blocks on an empty queue before
                re-checking the finished flag
        """
        if num_workers < 1:
            raise ValueError(f"Stage '{name}' needs at least one worker")

        self.name = name
        self.input_queue = input_queue
        self.token = token
        self.finished = finished
        self.num_workers = num_workers
        self.poll_interval = poll_interval

        # Worker threads
        self.workers = []
        self.is_running = False

        # Statistics
        self.processed_count = 0
        self.error_count = 0
        self.abandoned_count = 0  # Tasks cut short by cancellation
        self.start_time = None
        self.total_processing_time = 0.0

        # Thread safety
        self.stats_lock = threading.Lock()
        self.control_lock = threading.Lock()

        self.logger = logging.getLogger(f"{self.__class__.__name__}:{self.name}")
        self.logger.debug(f"Initialized stage '{self.name}' with {num_workers} workers")

    @abstractmethod
    def process(self, task: Any) -> Optional[bool]:
        """
        Process a single task.

        Returns:
            False if the task was abandoned because the run was cancelled
            before its output could be handed downstream; None otherwise

        Raises:
            TaskError: the task is dropped and the stage continues
            FatalError: the run is cancelled
        """
        pass

    def on_idle(self) -> None:
        """Called when a worker's dequeue times out on an empty queue."""
        pass

    def on_exit(self) -> None:
        """Called by each worker right before it exits."""
        pass

    def emit(self, queue: StageQueue, item: Any) -> bool:
        """
        Hand an item to a downstream queue, blocking while it is full.

        Returns:
            False if the run was cancelled before the item could be enqueued
        """
        enqueued = queue.put_unless_cancelled(item, self.token, self.poll_interval)
        if not enqueued:
            self.logger.debug(f"Cancelled while waiting on '{queue.name}', dropped {item!r}")
        return enqueued

    def start(self):
        """Start the stage by spawning worker threads."""
        with self.control_lock:
            if self.is_running:
                self.logger.warning(f"Stage '{self.name}' already running")
                return

            self.is_running = True
            self.start_time = time.time()

            for i in range(self.num_workers):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"{self.name}-Worker-{i+1}",
                    daemon=True
                )
                worker.start()
                self.workers.append(worker)

            self.logger.info(f"Started stage '{self.name}' with {self.num_workers} workers")

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all workers to exit.

        Args:
            timeout: Maximum seconds to wait for all workers together

        Returns:
            True if every worker exited
        """
        start_wait = time.time()
        all_stopped = True
        for worker in self.workers:
            remaining = None
            if timeout is not None:
                remaining = max(0.0, timeout - (time.time() - start_wait))
            worker.join(timeout=remaining)

            if worker.is_alive():
                all_stopped = False
                self.logger.warning(f"Worker {worker.name} did not stop in time")

        with self.control_lock:
            self.is_running = False
        return all_stopped

    def _worker_loop(self):
        """
        Main worker loop - runs in each worker thread.
        Checks cancellation before every dequeue, then processes one task.
        """
        worker_name = threading.current_thread().name
        self.logger.debug(f"{worker_name} started")

        try:
            while not self.token.is_cancelled:
                try:
                    task = self.input_queue.get(timeout=self.poll_interval)
                except Empty:
                    if self.finished.is_set():
                        break
                    self._run_hook(self.on_idle, worker_name)
                    continue

                try:
                    start_time = time.time()
                    completed = self.process(task)
                    processing_time = time.time() - start_time

                    if completed is False:
                        with self.stats_lock:
                            self.abandoned_count += 1
                        continue

                    with self.stats_lock:
                        self.processed_count += 1
                        self.total_processing_time += processing_time

                    self.logger.debug(
                        f"{worker_name} processed {task!r} in {processing_time:.3f}s"
                    )

                except FatalError as e:
                    with self.stats_lock:
                        self.error_count += 1
                    self.token.cancel(e)

                except TaskError as e:
                    with self.stats_lock:
                        self.error_count += 1
                    self.logger.warning(f"{worker_name} dropped {task!r}: {e}")

                except Exception as e:
                    with self.stats_lock:
                        self.error_count += 1
                    self.logger.error(
                        f"{worker_name} error processing {task!r}: {e}",
                        exc_info=True
                    )

                finally:
                    self.input_queue.task_done()
        finally:
            self._run_hook(self.on_exit, worker_name)

        self.logger.debug(f"{worker_name} stopped")

    def _run_hook(self, hook, worker_name: str) -> None:
        """Run on_idle/on_exit. Hooks have no task to drop, so any failure cancels the run."""
        try:
            hook()
        except FatalError as e:
            self.token.cancel(e)
        except Exception as e:
            self.logger.error(f"{worker_name} failed in {hook.__name__}: {e}", exc_info=True)
            self.token.cancel(FatalError(f"Stage '{self.name}' failed in {hook.__name__}: {e}"))

    def get_stats(self) -> dict:
        """
        Get stage statistics.

        Returns:
            dict with statistics
        """
        with self.stats_lock:
            runtime = time.time() - self.start_time if self.start_time else 0

            stats = {
                'name': self.name,
                'is_running': self.is_running,
                'workers': self.num_workers,
                'processed': self.processed_count,
                'errors': self.error_count,
                'abandoned': self.abandoned_count,
                'runtime_seconds': round(runtime, 2),
                'input_queue_size': self.input_queue.qsize(),
            }

            if runtime > 0:
                stats['throughput_items_per_second'] = round(
                    self.processed_count / runtime, 2
                )
            else:
                stats['throughput_items_per_second'] = 0.0

            if self.processed_count > 0:
                stats['avg_processing_time_seconds'] = round(
                    self.total_processing_time / self.processed_count, 3
                )
            else:
                stats['avg_processing_time_seconds'] = 0.0

            return stats

    def __repr__(self) -> str:
        return (f"<{self.__class__.__name__} name='{self.name}' "
                f"workers={self.num_workers} running={self.is_running}>")

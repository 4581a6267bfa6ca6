"""
Discovery Stage - Walks the paginated listing.
Fetches each page, forwards the item references it lists and re-enqueues
the page's "next" link unless that page was already seen in this run.
"""

import logging
import threading
from typing import Optional, Set
from urllib.parse import urldefrag

from ..fetcher import Fetcher
from ..models import PageTask
from ..parsers import ListingParser
from ..stage import PipelineStage
from ..stage_queue import StageQueue


class SeenPages:
    """
    Exact set of page URLs seen during one run.

    Fragments are ignored; otherwise URLs are compared as-is.
    """

    def __init__(self):
        self.seen_urls: Set[str] = set()
        self.lock = threading.Lock()

    @staticmethod
    def normalize(url: str) -> str:
        return urldefrag(url)[0]

    def is_seen(self, url: str) -> bool:
        with self.lock:
            return self.normalize(url) in self.seen_urls

    def mark_seen(self, url: str) -> bool:
        """
        Mark URL as seen.

        Returns:
            True if URL was newly added, False if already existed
        """
        check_url = self.normalize(url)
        with self.lock:
            if check_url in self.seen_urls:
                return False
            self.seen_urls.add(check_url)
            return True

    def count(self) -> int:
        with self.lock:
            return len(self.seen_urls)


class DiscoveryStage(PipelineStage):
    """
    Stage 1: Discovery.

    Responsibilities:
    - Fetch listing pages
    - Forward item references to the detail stage
    - Feed "next" links back to its own input queue
    - Terminate a pagination branch on a repeated link
    """

    def __init__(self, page_queue: StageQueue, item_queue: StageQueue,
                 fetcher: Fetcher, parser: ListingParser, token, finished,
                 num_workers: int = 1, poll_interval: float = 0.5,
                 seen_pages: Optional[SeenPages] = None,
                 max_pages: Optional[int] = None):
        super().__init__(
            name="Discovery",
            input_queue=page_queue,
            token=token,
            finished=finished,
            num_workers=num_workers,
            poll_interval=poll_interval
        )
        self.page_queue = page_queue
        self.item_queue = item_queue
        self.fetcher = fetcher
        self.parser = parser
        self.seen_pages = seen_pages or SeenPages()
        self.max_pages = max_pages
        self.logger = logging.getLogger(self.__class__.__name__)

        self._page_limit_logged = False
        self.stats = {
            'pages_processed': 0,
            'pages_skipped': 0,
            'items_discovered': 0,
        }

    def seed(self, task: PageTask) -> bool:
        """Enqueue the first page of the run."""
        self.seen_pages.mark_seen(task.url)
        self.logger.info(f"Seeding discovery with {task.url}")
        return self.emit(self.page_queue, task)

    def process(self, task: PageTask) -> Optional[bool]:
        payload = self.fetcher.fetch(task.url)
        listing = self.parser.parse_listing(payload, task)

        for reference in listing.items:
            if not self.emit(self.item_queue, reference):
                return False
            with self.stats_lock:
                self.stats['items_discovered'] += 1

        with self.stats_lock:
            self.stats['pages_processed'] += 1
            pages_processed = self.stats['pages_processed']

        self.logger.info(
            f"Page {task.url} (depth {task.depth}): {len(listing.items)} items, "
            f"next={listing.next_url or '-'}"
        )

        if listing.next_url is None:
            return

        if self.max_pages is not None and pages_processed >= self.max_pages:
            with self.stats_lock:
                first_hit = not self._page_limit_logged
                self._page_limit_logged = True
            if first_hit:
                self.logger.warning(
                    f"Reached max pages limit ({self.max_pages}). "
                    f"Not following further pages."
                )
            return

        if not self.seen_pages.mark_seen(listing.next_url):
            with self.stats_lock:
                self.stats['pages_skipped'] += 1
            self.logger.warning(
                f"Next link {listing.next_url} from {task.url} was already seen; "
                f"ending this pagination branch"
            )
            return

        self.emit(self.page_queue, task.next_page(listing.next_url))

    def get_stats(self) -> dict:
        base_stats = super().get_stats()
        with self.stats_lock:
            base_stats['discovery_stats'] = self.stats.copy()
        base_stats['discovery_stats']['pages_seen'] = self.seen_pages.count()
        return base_stats

import json
import threading
import time
from pathlib import Path

import pytest

from harvester.core.coordinator import PipelineConfig, PipelineCoordinator
from harvester.pipeline.errors import FetchError, StorageError
from harvester.pipeline.fetcher import Fetcher
from harvester.pipeline.parsers import JsonDetailParser, JsonListingParser, ParserConfig
from harvester.pipeline.stages.persistence_stage import PersistenceConfig
from harvester.pipeline.storage import Snapshot, SnapshotStorage, StagingHandle


BASE = "https://api.example.test"


class FakeFetcher(Fetcher):
    """Serves canned payloads; an Exception value is raised instead."""

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls = []
        self.lock = threading.Lock()
        self.closed = False

    def fetch(self, url: str) -> bytes:
        with self.lock:
            self.calls.append(url)
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.get(url)
        if response is None:
            raise FetchError(url, "HTTP 404", status_code=404)
        if isinstance(response, BaseException):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


class _MemoryStagingHandle(StagingHandle):
    def __init__(self, storage, snapshot):
        super().__init__(Path("memory-staging"), snapshot)
        self.storage = storage

    def discard(self) -> None:
        if not self.committed:
            self.storage.discarded += 1


class MemoryStorage(SnapshotStorage):
    """In-memory snapshot storage with injectable commit failures."""

    def __init__(self, initial=None, fail_commits=(), fail_all_commits=False,
                 commit_delay: float = 0.0):
        self.snapshot = initial if initial is not None else Snapshot.empty()
        self.fail_commits = set(fail_commits)
        self.fail_all_commits = fail_all_commits
        self.commit_delay = commit_delay
        self.staging_writes = 0
        self.commit_attempts = 0
        self.discarded = 0

    def load_snapshot(self) -> Snapshot:
        return self.snapshot

    def write_staging(self, snapshot: Snapshot) -> StagingHandle:
        self.staging_writes += 1
        return _MemoryStagingHandle(self, snapshot)

    def commit_staging(self, handle: StagingHandle) -> None:
        if self.commit_delay:
            time.sleep(self.commit_delay)
        self.commit_attempts += 1
        if self.fail_all_commits or self.commit_attempts in self.fail_commits:
            raise StorageError(f"commit #{self.commit_attempts} refused")
        self.snapshot = handle.snapshot
        handle.committed = True


def page_url(n: int) -> str:
    return f"{BASE}/items?page={n}"


def item_url(key) -> str:
    return f"{BASE}/items/{key}"


def listing_payload(keys, next_url=None) -> bytes:
    items = [{"id": key, "url": item_url(key), "title": f"Listing {key}", "rank": i}
             for i, key in enumerate(keys)]
    return json.dumps({"items": items, "next": next_url}).encode()


def detail_payload(key) -> bytes:
    return json.dumps({
        "title": f"Detail {key}",
        "description": f"About {key}",
        "updated_at": "2024-01-01T00:00:00Z",
        "size": len(str(key)),
    }).encode()


def build_collection(pages):
    """
    Canned responses for a paginated collection.

    Args:
        pages: list of key lists, one per page; pages link to the next one
    """
    responses = {}
    for n, keys in enumerate(pages, start=1):
        next_url = page_url(n + 1) if n < len(pages) else None
        responses[page_url(n)] = listing_payload(keys, next_url)
        for key in keys:
            responses[item_url(key)] = detail_payload(key)
    return responses


@pytest.fixture
def parser_config():
    return ParserConfig()


@pytest.fixture
def make_coordinator(parser_config):
    def factory(fetcher, storage, persistence=None, **pipeline_overrides):
        settings = dict(
            page_queue_size=10,
            item_queue_size=10,
            record_queue_size=10,
            discovery_workers=1,
            detail_workers=2,
            persist_workers=1,
            poll_interval_seconds=0.02,
            shutdown_timeout_seconds=10.0,
        )
        settings.update(pipeline_overrides)
        return PipelineCoordinator(
            fetcher,
            JsonListingParser(parser_config),
            JsonDetailParser(parser_config),
            storage,
            config=PipelineConfig(**settings),
            persistence=persistence or PersistenceConfig(batch_size=50, flush_interval_seconds=60),
        )
    return factory

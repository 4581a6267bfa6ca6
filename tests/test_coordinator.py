import logging
import threading

import pytest

from harvester.core.coordinator import RunStatus
from harvester.pipeline.errors import AuthorizationError, FetchError, PersistenceFatalError, StorageError
from harvester.pipeline.models import PageTask, Record
from harvester.pipeline.stages.persistence_stage import PersistenceConfig
from harvester.pipeline.storage import Snapshot

from conftest import (
    FakeFetcher,
    MemoryStorage,
    build_collection,
    item_url,
    listing_payload,
    page_url,
)


def test_scenario_three_pages(make_coordinator):
    fetcher = FakeFetcher(build_collection([["a", "b"], ["c"], []]))
    storage = MemoryStorage()

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.error is None
    assert summary.pages_processed == 3
    assert summary.items_processed == 3
    assert summary.records_persisted == 3
    assert sorted(storage.snapshot.keys()) == ["a", "b", "c"]


def test_records_carry_detail_over_listing(make_coordinator):
    fetcher = FakeFetcher(build_collection([["a"]]))
    storage = MemoryStorage()

    make_coordinator(fetcher, storage).run(PageTask(url=page_url(1)))

    record = storage.snapshot.find("a")
    assert record.title == "Detail a"
    assert record.source_page == page_url(1)
    assert record.attributes["rank"] == 0
    assert record.attributes["size"] == 1


@pytest.mark.parametrize("discovery,detail,persist", [
    (1, 1, 1),
    (2, 4, 2),
    (3, 8, 3),
])
def test_worker_counts_do_not_change_results(make_coordinator, discovery, detail, persist):
    pages = [[f"p{p}-i{i}" for i in range(4)] for p in range(5)]
    fetcher = FakeFetcher(build_collection(pages))
    storage = MemoryStorage()
    coordinator = make_coordinator(
        fetcher, storage, persistence=PersistenceConfig(batch_size=3, flush_interval_seconds=60)
    )

    summary = coordinator.run(page_url(1), discovery_workers=discovery,
                              detail_workers=detail, persist_workers=persist)

    assert summary.status is RunStatus.COMPLETED
    assert summary.records_persisted == 20
    assert sorted(storage.snapshot.keys()) == sorted(k for page in pages for k in page)


def test_failed_item_is_dropped_with_warning(make_coordinator, caplog):
    responses = build_collection([["1", "2", "3"]])
    responses[item_url("2")] = FetchError(item_url("2"), "HTTP 503", status_code=503)
    fetcher = FakeFetcher(responses)
    storage = MemoryStorage()

    with caplog.at_level(logging.WARNING):
        summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.items_failed == 1
    assert summary.records_persisted == 2
    assert sorted(storage.snapshot.keys()) == ["1", "3"]
    assert any("dropped" in r.getMessage() and item_url("2") in r.getMessage()
               for r in caplog.records if r.levelno == logging.WARNING)


def test_failed_page_is_dropped(make_coordinator):
    responses = build_collection([["a"], ["b"]])
    responses[page_url(2)] = FetchError(page_url(2), "HTTP 500", status_code=500)
    storage = MemoryStorage()

    summary = make_coordinator(FakeFetcher(responses), storage).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.pages_processed == 1
    assert summary.pages_failed == 1
    assert storage.snapshot.keys() == ["a"]


def test_only_commit_fails_leaves_snapshot_untouched(make_coordinator):
    initial = Snapshot([Record(key="old", detail_url=item_url("old"))])
    storage = MemoryStorage(initial=initial, fail_all_commits=True)
    fetcher = FakeFetcher(build_collection([["a", "b"], ["c"], []]))

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.CANCELLED_FATAL
    assert isinstance(summary.error, PersistenceFatalError)
    assert isinstance(summary.error.cause, StorageError)
    assert storage.commit_attempts == 1
    assert storage.snapshot == initial
    assert summary.records_persisted == 0


def test_next_link_to_seen_page_does_not_loop(make_coordinator):
    responses = build_collection([["a"], ["b"]])
    responses[page_url(2)] = listing_payload(["b"], next_url=page_url(1))
    fetcher = FakeFetcher(responses)
    storage = MemoryStorage()

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.pages_processed == 2
    assert summary.pages_skipped == 1
    assert fetcher.calls.count(page_url(1)) == 1
    assert sorted(storage.snapshot.keys()) == ["a", "b"]


def test_self_referencing_next_link(make_coordinator):
    responses = build_collection([["a"]])
    responses[page_url(1)] = listing_payload(["a"], next_url=page_url(1))
    fetcher = FakeFetcher(responses)

    summary = make_coordinator(fetcher, MemoryStorage()).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.pages_processed == 1
    assert summary.pages_skipped == 1


def test_empty_collection_performs_no_staging_write(make_coordinator):
    storage = MemoryStorage()
    fetcher = FakeFetcher({page_url(1): listing_payload([])})

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.pages_processed == 1
    assert summary.records_persisted == 0
    assert storage.staging_writes == 0


def test_backpressure_with_capacity_one_keeps_every_record(make_coordinator):
    pages = [[f"p{p}-i{i}" for i in range(3)] for p in range(4)]
    storage = MemoryStorage(commit_delay=0.02)
    coordinator = make_coordinator(
        FakeFetcher(build_collection(pages)), storage,
        persistence=PersistenceConfig(batch_size=1, flush_interval_seconds=60),
        page_queue_size=1, item_queue_size=1, record_queue_size=1,
        detail_workers=3,
    )

    summary = coordinator.run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.records_persisted == 12
    assert summary.batches_flushed == 12
    assert len(storage.snapshot) == 12


def test_authorization_failure_cancels_run(make_coordinator):
    responses = build_collection([["a"], ["b"], ["c"]])
    responses[page_url(2)] = AuthorizationError(page_url(2), 401)
    storage = MemoryStorage()
    fetcher = FakeFetcher(responses)

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.CANCELLED_FATAL
    assert isinstance(summary.error, AuthorizationError)
    assert page_url(3) not in fetcher.calls
    assert "c" not in storage.snapshot.keys()
    assert summary.records_persisted == len(storage.snapshot)


def test_max_pages_limits_pagination(make_coordinator):
    fetcher = FakeFetcher(build_collection([["a"], ["b"], ["c"]]))
    storage = MemoryStorage()

    summary = make_coordinator(fetcher, storage, max_pages=2).run(page_url(1))

    assert summary.status is RunStatus.COMPLETED
    assert summary.pages_processed == 2
    assert page_url(3) not in fetcher.calls
    assert sorted(storage.snapshot.keys()) == ["a", "b"]


def test_coordinator_is_reusable_and_tears_down(make_coordinator):
    storage = MemoryStorage()
    coordinator = make_coordinator(FakeFetcher(build_collection([["a"]])), storage)

    first = coordinator.run(page_url(1))
    second = coordinator.run(page_url(1))

    assert first.records_persisted == second.records_persisted == 1
    assert len(storage.snapshot) == 2
    assert coordinator.get_status() == {'is_running': False}
    assert not [t for t in threading.enumerate() if t.name.startswith(("Discovery-", "Detail-", "Persistence-"))]


class _BrokenDiskStorage(MemoryStorage):
    def commit_staging(self, handle):
        self.commit_attempts += 1
        raise OSError("disk gone")


def test_unexpected_storage_failure_on_final_flush_cancels_run(make_coordinator):
    storage = _BrokenDiskStorage()
    fetcher = FakeFetcher(build_collection([["a", "b"]]))

    summary = make_coordinator(fetcher, storage).run(page_url(1))

    assert summary.status is RunStatus.CANCELLED_FATAL
    assert isinstance(summary.error, PersistenceFatalError)
    assert isinstance(summary.error.cause, OSError)
    assert summary.records_persisted == 0
    assert summary.flush_failures == 1


@pytest.mark.parametrize("overrides", [
    {"discovery_workers": 0},
    {"detail_workers": 0},
    {"persist_workers": 0},
])
def test_zero_worker_override_is_rejected(make_coordinator, overrides):
    coordinator = make_coordinator(FakeFetcher(build_collection([["a"]])), MemoryStorage())

    with pytest.raises(ValueError):
        coordinator.run(page_url(1), **overrides)

    assert coordinator.get_status() == {'is_running': False}

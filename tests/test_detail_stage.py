import threading

from harvester.pipeline.cancellation import CancellationToken
from harvester.pipeline.errors import FatalError
from harvester.pipeline.models import ItemReference
from harvester.pipeline.parsers import JsonDetailParser, ParserConfig
from harvester.pipeline.stage_queue import StageQueue
from harvester.pipeline.stages.detail_stage import DetailStage

from conftest import FakeFetcher, build_collection, item_url


class _CancellingFetcher(FakeFetcher):
    """Cancels the run while a detail request is in flight."""

    def __init__(self, responses, token):
        super().__init__(responses)
        self.token = token

    def fetch(self, url: str) -> bytes:
        payload = super().fetch(url)
        self.token.cancel(FatalError("stop requested mid-fetch"))
        return payload


def _stage(fetcher, token, record_queue=None):
    item_queue = StageQueue("items", maxsize=10)
    record_queue = record_queue or StageQueue("records", maxsize=10)
    stage = DetailStage(
        item_queue, record_queue, fetcher, JsonDetailParser(ParserConfig()),
        token, threading.Event(), num_workers=1, poll_interval=0.01
    )
    return stage, item_queue, record_queue


def test_resolved_item_is_emitted_and_counted():
    token = CancellationToken()
    stage, item_queue, record_queue = _stage(FakeFetcher(build_collection([["a"]])), token)
    item_queue.put(ItemReference(key="a", detail_url=item_url("a")))

    stage.start()
    item_queue.join()
    stage.finished.set()
    assert stage.join(timeout=2)

    assert record_queue.get_nowait().title == "Detail a"
    assert stage.get_stats()['processed'] == 1


def test_item_cut_short_by_cancellation_is_not_counted():
    token = CancellationToken()
    fetcher = _CancellingFetcher(build_collection([["a"]]), token)
    stage, item_queue, record_queue = _stage(fetcher, token)
    item_queue.put(ItemReference(key="a", detail_url=item_url("a")))

    stage.start()
    assert stage.join(timeout=2)

    stats = stage.get_stats()
    assert stats['processed'] == 0
    assert stats['abandoned'] == 1
    assert record_queue.empty()

"""
Detail Stage - Resolves item references into full records.
"""

import logging
from typing import Optional

from ..fetcher import Fetcher
from ..models import ItemReference, merge_record
from ..parsers import DetailParser
from ..stage import PipelineStage
from ..stage_queue import StageQueue


class DetailStage(PipelineStage):
    """
    Stage 2: Detail.

    Fetches each item's detail payload, merges it over the listing attributes
    and forwards the resulting Record to persistence. A failing item is
    dropped by the base worker loop with a warning naming the item.
    """

    def __init__(self, item_queue: StageQueue, record_queue: StageQueue,
                 fetcher: Fetcher, parser: DetailParser, token, finished,
                 num_workers: int = 4, poll_interval: float = 0.5):
        super().__init__(
            name="Detail",
            input_queue=item_queue,
            token=token,
            finished=finished,
            num_workers=num_workers,
            poll_interval=poll_interval
        )
        self.record_queue = record_queue
        self.fetcher = fetcher
        self.parser = parser
        self.logger = logging.getLogger(self.__class__.__name__)

    def process(self, reference: ItemReference) -> Optional[bool]:
        payload = self.fetcher.fetch(reference.detail_url)
        details = self.parser.parse_detail(payload, reference)
        record = merge_record(reference, details)

        if not self.emit(self.record_queue, record):
            return False
        self.logger.debug(f"Resolved item '{reference.key}'")

"""
Pipeline Framework Module

Building blocks of the harvest pipeline: the data model, the stage base
class, the bounded stage queues, cancellation, and the collaborator
interfaces (fetcher, parsers, storage) the stages call.

Usage:
------
from harvester.pipeline import PipelineStage, PageTask

class MyCustomStage(PipelineStage):
    def process(self, task: PageTask) -> None:
        ...
"""

from .cancellation import CancellationToken
from .errors import (
    HarvestError,
    TaskError,
    FetchError,
    ParseError,
    FatalError,
    AuthorizationError,
    PersistenceFatalError,
    ShutdownRequested,
    StorageError,
)
from .fetcher import Fetcher, FetchConfig, HTTPFetcher
from .models import PageTask, ItemReference, ItemDetails, ListingPage, Record, merge_record
from .parsers import (
    ParserConfig,
    ListingParser,
    DetailParser,
    JsonListingParser,
    JsonDetailParser,
    HtmlListingParser,
    HtmlDetailParser,
    create_parsers,
)
from .stage import PipelineStage
from .stage_queue import StageQueue
from .storage import Snapshot, StagingHandle, SnapshotStorage, JsonSnapshotStorage

__all__ = [
    'CancellationToken',
    'HarvestError',
    'TaskError',
    'FetchError',
    'ParseError',
    'FatalError',
    'AuthorizationError',
    'PersistenceFatalError',
    'ShutdownRequested',
    'StorageError',
    'Fetcher',
    'FetchConfig',
    'HTTPFetcher',
    'PageTask',
    'ItemReference',
    'ItemDetails',
    'ListingPage',
    'Record',
    'merge_record',
    'ParserConfig',
    'ListingParser',
    'DetailParser',
    'JsonListingParser',
    'JsonDetailParser',
    'HtmlListingParser',
    'HtmlDetailParser',
    'create_parsers',
    'PipelineStage',
    'StageQueue',
    'Snapshot',
    'StagingHandle',
    'SnapshotStorage',
    'JsonSnapshotStorage',
]

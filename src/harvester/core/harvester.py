"""
Harvester - High-level entry point that builds a pipeline from configuration.
This is the interface the CLI uses for running a harvest.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..pipeline.fetcher import Fetcher, FetchConfig, HTTPFetcher
from ..pipeline.parsers import ParserConfig, create_parsers
from ..pipeline.stages.persistence_stage import PersistenceConfig
from ..pipeline.storage import JsonSnapshotStorage, Snapshot, SnapshotStorage
from .coordinator import PipelineConfig, PipelineCoordinator, RunSummary


@dataclass
class HarvesterConfig:
    """Master configuration for a harvest run."""
    seed_url: Optional[str] = None
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


class Harvester:
    """
    Main harvest orchestrator.

    Wires the HTTP fetcher, the configured parsers and the JSON snapshot
    storage into a PipelineCoordinator. Collaborators can be replaced by
    passing them in explicitly.
    """

    def __init__(self, config: HarvesterConfig, fetcher: Optional[Fetcher] = None,
                 storage: Optional[SnapshotStorage] = None):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

        self.fetcher = fetcher or HTTPFetcher(config.fetch)
        self.storage = storage or JsonSnapshotStorage(
            config.persistence.snapshot_path, indent=config.persistence.indent
        )
        listing_parser, detail_parser = create_parsers(config.parser)

        self.coordinator = PipelineCoordinator(
            self.fetcher, listing_parser, detail_parser, self.storage,
            config=config.pipeline, persistence=config.persistence
        )
        self.logger.info(
            f"Harvester initialized ({config.parser.format} payloads, "
            f"snapshot {config.persistence.snapshot_path})"
        )

    def run(self, seed_url: Optional[str] = None) -> RunSummary:
        """
        Run one harvest.

        Args:
            seed_url: First listing page; defaults to the configured seed_url
        """
        url = seed_url or self.config.seed_url
        if not url:
            raise ValueError("No seed URL given and none configured")

        try:
            before = len(self.storage.load_snapshot())
            summary = self.coordinator.run(url)
        finally:
            self.fetcher.close()

        self.logger.info(f"Snapshot grew from {before} to "
                         f"{before + summary.records_persisted} records")
        return summary

    def snapshot(self) -> Snapshot:
        return self.storage.load_snapshot()

    @staticmethod
    def print_summary(summary: RunSummary):
        """Print a formatted run summary."""
        print("\n" + "="*60)
        print("HARVEST SUMMARY")
        print("="*60)
        print(f"Status:            {summary.status.value}")
        print(f"Runtime:           {summary.runtime_seconds:.2f} seconds")
        print(f"Pages processed:   {summary.pages_processed}")
        print(f"Pages failed:      {summary.pages_failed}")
        print(f"Pages skipped:     {summary.pages_skipped}")
        print(f"Items discovered:  {summary.items_discovered}")
        print(f"Items processed:   {summary.items_processed}")
        print(f"Items failed:      {summary.items_failed}")
        print(f"Records persisted: {summary.records_persisted}")
        print(f"Batches flushed:   {summary.batches_flushed}")
        if summary.flush_failures:
            print(f"Flush failures:    {summary.flush_failures}")
        if summary.error:
            print(f"Error:             {summary.error}")
        print("="*60 + "\n")

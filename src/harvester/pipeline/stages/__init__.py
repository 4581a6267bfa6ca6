"""
Pipeline Stages Module

Pipeline Flow:
--------------
1. DiscoveryStage    - Walks listing pages, emits item references, follows "next" links
2. DetailStage       - Fetches item details and merges them into records
3. PersistenceStage  - Batches records and commits them to the snapshot

Usage:
------
from harvester.pipeline.stages import PersistenceStage, PersistenceConfig

stage = PersistenceStage(record_queue, storage, PersistenceConfig(batch_size=50),
                         token, finished)
stage.start()
"""

# Stage 1: Discovery
from .discovery_stage import DiscoveryStage, SeenPages

# Stage 2: Detail
from .detail_stage import DetailStage

# Stage 3: Persistence
from .persistence_stage import PersistenceStage, PersistenceConfig


__all__ = [
    'DiscoveryStage',
    'DetailStage',
    'PersistenceStage',
    'PersistenceConfig',
    'SeenPages',
]

"""
Core Module - High-level harvest orchestration.

Components:
-----------
- PipelineCoordinator: Owns queues and workers, detects completion, cancels on fatal errors
- PipelineConfig: Queue capacities, worker counts and timing
- RunSummary / RunStatus: Outcome of a run
- Harvester / HarvesterConfig: Builds a coordinator from a complete configuration

Usage:
------
from harvester.core import Harvester
from harvester.config import ConfigLoader

config = ConfigLoader.load_from_yaml('config/harvest.yaml')
summary = Harvester(config).run()
print(summary.to_dict())
"""

from .coordinator import (
    PipelineCoordinator,
    PipelineConfig,
    PipelineState,
    RunStatus,
    RunSummary,
)
from .harvester import Harvester, HarvesterConfig

__all__ = [
    'PipelineCoordinator',
    'PipelineConfig',
    'PipelineState',
    'RunStatus',
    'RunSummary',
    'Harvester',
    'HarvesterConfig',
]

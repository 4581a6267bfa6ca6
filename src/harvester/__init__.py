"""
Harvester - A concurrent, pipeline-based harvester for paginated collections.

Features:
- Three-stage pipeline: discovery -> detail -> persistence
- Bounded queues with backpressure between stages
- Worker threads per stage, cooperative cancellation on fatal errors
- Batched, atomically replaced JSON snapshots
- JSON and HTML (BeautifulSoup) payload parsers
- Configurable via YAML
"""

__version__ = "1.0.0"

from .core.coordinator import PipelineCoordinator, PipelineConfig, RunStatus, RunSummary
from .core.harvester import Harvester, HarvesterConfig
from .config.harvester_config import ConfigLoader, validate_config
from .pipeline.models import PageTask, ItemReference, Record

__all__ = [
    'PipelineCoordinator',
    'PipelineConfig',
    'RunStatus',
    'RunSummary',
    'Harvester',
    'HarvesterConfig',
    'ConfigLoader',
    'validate_config',
    'PageTask',
    'ItemReference',
    'Record',
]

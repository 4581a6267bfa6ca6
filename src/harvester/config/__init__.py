"""
Configuration Module - Configuration management and loading.

Components:
-----------
- ConfigLoader: Loads and saves configurations from/to YAML files
- validate_config: Validates configuration objects
- ConfigurationError: Exception raised for invalid configurations

Configuration File Format:
-------------------------
seed_url: https://api.example.com/items?page=1

pipeline:
  detail_workers: 8
  record_queue_size: 1000

fetch:
  timeout_seconds: 30
  headers:
    Authorization: Bearer <token>

parser:
  format: json
  items_path: data.items
  next_path: links.next

persistence:
  snapshot_path: data/snapshot.json
  batch_size: 100
  flush_interval_seconds: 10
"""

from .harvester_config import (
    ConfigLoader,
    validate_config,
    ConfigurationError
)

__all__ = [
    'ConfigLoader',
    'validate_config',
    'ConfigurationError',
]

"""
Harvester Configuration Management - Configuration loading and validation.
Supports loading from YAML files with validation and defaults.
"""

import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

import yaml

from ..core.coordinator import PipelineConfig
from ..core.harvester import HarvesterConfig
from ..pipeline.fetcher import FetchConfig
from ..pipeline.parsers import SUPPORTED_FORMATS, ParserConfig
from ..pipeline.stages.persistence_stage import PersistenceConfig


T = TypeVar('T')


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""
    pass


def _build_section(cls: Type[T], section: Any, name: str) -> T:
    """Create a config dataclass from a mapping, rejecting unknown keys."""
    if section is None:
        return cls()
    if not isinstance(section, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    return cls(**section)


class ConfigLoader:
    """Loads and saves harvester configuration as YAML."""

    @staticmethod
    def load_from_yaml(config_path: str) -> HarvesterConfig:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            HarvesterConfig object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        logger = logging.getLogger(__name__)

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read {config_path}: {e}")

        if not config_dict:
            raise ConfigurationError(f"Empty configuration file: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Top level of {config_path} must be a mapping")

        logger.info(f"Loaded configuration from {config_path}")
        return ConfigLoader.parse_config(config_dict)

    @staticmethod
    def parse_config(config_dict: Dict[str, Any]) -> HarvesterConfig:
        """Parse configuration dictionary into HarvesterConfig object."""
        known_sections = {'seed_url', 'pipeline', 'fetch', 'parser', 'persistence'}
        unknown = sorted(set(config_dict) - known_sections)
        if unknown:
            raise ConfigurationError(f"Unknown section(s): {', '.join(unknown)}")

        try:
            return HarvesterConfig(
                seed_url=config_dict.get('seed_url'),
                pipeline=_build_section(PipelineConfig, config_dict.get('pipeline'), 'pipeline'),
                fetch=_build_section(FetchConfig, config_dict.get('fetch'), 'fetch'),
                parser=_build_section(ParserConfig, config_dict.get('parser'), 'parser'),
                persistence=_build_section(
                    PersistenceConfig, config_dict.get('persistence'), 'persistence'
                ),
            )
        except TypeError as e:
            raise ConfigurationError(f"Failed to parse configuration: {e}")

    @staticmethod
    def save_to_yaml(config: HarvesterConfig, output_path: str):
        """Save configuration to YAML file."""
        logger = logging.getLogger(__name__)

        config_dict = {
            'seed_url': config.seed_url,
            'pipeline': asdict(config.pipeline),
            'fetch': asdict(config.fetch),
            'parser': asdict(config.parser),
            'persistence': asdict(config.persistence),
        }

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
            logger.info(f"Configuration saved to {output_path}")
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}")

    @staticmethod
    def create_default_config() -> HarvesterConfig:
        """Create a default configuration."""
        return HarvesterConfig()


def _require_int(value: Any, name: str, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}")


def _require_positive(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive")


def validate_config(config: HarvesterConfig) -> bool:
    """Validate harvester configuration."""
    logger = logging.getLogger(__name__)
    pipeline = config.pipeline

    for name in ('discovery_workers', 'detail_workers', 'persist_workers',
                 'page_queue_size', 'item_queue_size', 'record_queue_size'):
        _require_int(getattr(pipeline, name), name, 1)

    _require_positive(pipeline.poll_interval_seconds, 'poll_interval_seconds')
    _require_positive(pipeline.shutdown_timeout_seconds, 'shutdown_timeout_seconds')

    if pipeline.max_pages is not None:
        _require_int(pipeline.max_pages, 'max_pages', 1)

    _require_int(config.persistence.batch_size, 'batch_size', 1)
    _require_positive(config.persistence.flush_interval_seconds, 'flush_interval_seconds')
    _require_int(config.persistence.max_flush_failures, 'max_flush_failures', 1)

    if not isinstance(config.parser.format, str) or \
            config.parser.format.lower() not in SUPPORTED_FORMATS:
        raise ConfigurationError(
            f"parser format must be one of {', '.join(SUPPORTED_FORMATS)}"
        )

    _require_positive(config.fetch.timeout_seconds, 'fetch timeout_seconds')
    _require_int(config.fetch.max_retries, 'fetch max_retries', 0)

    logger.info("Configuration validated successfully")
    return True

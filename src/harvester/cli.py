"""
Command Line Interface for the Harvester.

Usage Examples:
--------------

# Harvest a JSON collection with built-in defaults
python -m harvester.cli harvest "https://api.example.com/items?page=1"

# Harvest with a configuration file
python -m harvester.cli harvest -c config/harvest.yaml

# Override worker counts and batch size
python -m harvester.cli harvest -c config/harvest.yaml --detail-workers 16 --batch-size 500

# Create default configuration
python -m harvester.cli config --create-default -o config/default.yaml

# Validate configuration
python -m harvester.cli config --validate config/harvest.yaml

# Inspect a snapshot
python -m harvester.cli snapshot data/snapshot.json --key 42
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config.harvester_config import ConfigLoader, validate_config, ConfigurationError
from .core.harvester import Harvester
from .pipeline.errors import StorageError
from .pipeline.storage import JsonSnapshotStorage


def setup_logging(verbose: bool = False, log_dir: str = 'logs'):
    """
    Setup logging configuration.

    Args:
        verbose: Enable debug-level logging if True
        log_dir: Directory for the log file
    """
    level = logging.DEBUG if verbose else logging.INFO

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_path / 'harvester.log')
        ]
    )

    # Set third-party loggers to WARNING to reduce noise
    if not verbose:
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)


def harvest_command(args) -> int:
    """
    Execute the harvest command.

    Returns:
        Process exit code
    """
    logger = logging.getLogger(__name__)

    try:
        if args.config:
            logger.info(f"Loading configuration from {args.config}")
            config = ConfigLoader.load_from_yaml(args.config)
        else:
            logger.info("Using default configuration")
            config = ConfigLoader.create_default_config()

        # Override with command line arguments
        if args.seed_url:
            config.seed_url = args.seed_url
        if args.snapshot:
            config.persistence.snapshot_path = args.snapshot
        if args.discovery_workers is not None:
            config.pipeline.discovery_workers = args.discovery_workers
        if args.detail_workers is not None:
            config.pipeline.detail_workers = args.detail_workers
        if args.persist_workers is not None:
            config.pipeline.persist_workers = args.persist_workers
        if args.batch_size is not None:
            config.persistence.batch_size = args.batch_size
        if args.max_pages is not None:
            config.pipeline.max_pages = args.max_pages
        if args.format:
            config.parser.format = args.format

        validate_config(config)
        if not config.seed_url:
            raise ConfigurationError("No seed URL given (argument or 'seed_url' in config)")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    harvester = Harvester(config)

    print("\n" + "="*60)
    print("STARTING HARVEST")
    print("="*60)
    try:
        summary = harvester.run()
    except StorageError as e:
        logger.error(f"Cannot use snapshot {config.persistence.snapshot_path}: {e}")
        return 1
    Harvester.print_summary(summary)

    if not summary.completed:
        logger.error(f"Harvest cancelled: {summary.error}")
        return 1

    logger.info("Harvest finished successfully")
    return 0


def config_command(args) -> int:
    """Execute the config command."""
    logger = logging.getLogger(__name__)

    try:
        if args.create_default:
            config = ConfigLoader.create_default_config()
            output_path = args.output or 'config/default.yaml'
            ConfigLoader.save_to_yaml(config, output_path)
            print(f"✓ Default configuration created at: {output_path}")
            return 0

        if args.validate:
            print(f"Validating configuration: {args.validate}")
            config = ConfigLoader.load_from_yaml(args.validate)
            validate_config(config)
            print(f"✓ Configuration is valid: {args.validate}")
            return 0

        print("Error: Please specify --create-default or --validate")
        return 1

    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}")
        logger.error(f"Configuration error: {e}")
        return 1


def snapshot_command(args) -> int:
    """Print the size of a snapshot, or one record from it."""
    try:
        snapshot = JsonSnapshotStorage(args.path).load_snapshot()
    except StorageError as e:
        print(f"✗ {e}")
        return 1

    if args.key is None:
        print(f"{args.path}: {len(snapshot)} records")
        return 0

    record = snapshot.find(args.key)
    if record is None:
        print(f"✗ No record with key '{args.key}'")
        return 1

    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='harvester',
        description='Harvester - concurrent paginated collection harvester',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s harvest https://api.example.com/items
  %(prog)s harvest -c config/harvest.yaml --detail-workers 16
  %(prog)s config --create-default -o config/default.yaml
  %(prog)s config --validate config/harvest.yaml
  %(prog)s snapshot data/snapshot.json
        """
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose (debug) logging'
    )
    parser.add_argument(
        '--log-dir',
        default='logs',
        metavar='DIR',
        help='Directory for harvester.log (default: logs)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========================================================================
    # HARVEST COMMAND
    # ========================================================================
    harvest_parser = subparsers.add_parser(
        'harvest',
        help='Harvest a paginated collection',
        description='Walk a paginated listing, resolve every item and persist the records'
    )
    harvest_parser.add_argument(
        'seed_url',
        nargs='?',
        help='First listing page (default: seed_url from the configuration)'
    )
    harvest_parser.add_argument(
        '-c', '--config',
        help='Path to YAML configuration file (default: use built-in defaults)'
    )
    harvest_parser.add_argument(
        '-s', '--snapshot',
        metavar='FILE',
        help='Snapshot file to write'
    )
    harvest_parser.add_argument(
        '--format',
        choices=['json', 'html'],
        help='Payload format of listing and detail pages'
    )
    harvest_parser.add_argument('--discovery-workers', type=int, metavar='N')
    harvest_parser.add_argument('--detail-workers', type=int, metavar='N')
    harvest_parser.add_argument('--persist-workers', type=int, metavar='N')
    harvest_parser.add_argument(
        '-b', '--batch-size',
        type=int,
        metavar='N',
        help='Records per snapshot flush'
    )
    harvest_parser.add_argument(
        '-p', '--max-pages',
        type=int,
        metavar='N',
        help='Maximum number of listing pages to follow'
    )
    harvest_parser.set_defaults(func=harvest_command)

    # ========================================================================
    # CONFIG COMMAND
    # ========================================================================
    config_parser = subparsers.add_parser(
        'config',
        help='Configuration management',
        description='Create or validate configuration files'
    )
    config_parser.add_argument(
        '--create-default',
        action='store_true',
        help='Create a default configuration file'
    )
    config_parser.add_argument(
        '--validate',
        metavar='FILE',
        help='Validate a configuration file'
    )
    config_parser.add_argument(
        '-o', '--output',
        metavar='FILE',
        help='Output path for created configuration (default: config/default.yaml)'
    )
    config_parser.set_defaults(func=config_command)

    # ========================================================================
    # SNAPSHOT COMMAND
    # ========================================================================
    snapshot_parser = subparsers.add_parser(
        'snapshot',
        help='Inspect a snapshot file',
        description='Print the record count of a snapshot, or one record by key'
    )
    snapshot_parser.add_argument('path', help='Snapshot file')
    snapshot_parser.add_argument('-k', '--key', help='Print the record with this key')
    snapshot_parser.set_defaults(func=snapshot_command)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_dir)

    if not hasattr(args, 'func'):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
# MARKETSCOPE_FEAT: main-entry-001
"""
MARKETSCOPE - Main Entry Point
==============================

Starts the kernel, loads every plugin manifest found in the plugin
directory and runs until interrupted.

Usage:
    python -m marketscope.main --config config/research.yaml
    python -m marketscope.main --plugins plugins --debug
    python -m marketscope.main --config config/research.yaml --dry-run

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from marketscope.core.exceptions import KernelError
from marketscope.core.kernel import Kernel, KernelOptions


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="MARKETSCOPE - Market Research Platform",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        default=None,
        help="Path to a YAML or JSON configuration file",
    )

    parser.add_argument(
        "-p", "--plugins",
        type=str,
        default="./plugins",
        help="Plugin directory to scan for manifests (default: ./plugins)",
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log every event published on the bus",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and plugin manifests, then exit",
    )

    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging("DEBUG" if args.debug else args.log_level)
    logger = logging.getLogger("MARKETSCOPE_MAIN")

    logger.info("=" * 60)
    logger.info("MARKETSCOPE - Market Research Platform")
    logger.info("=" * 60)

    if args.config and not Path(args.config).exists():
        logger.error(f"Configuration file not found: {args.config}")
        return 1

    kernel = Kernel(KernelOptions(
        plugin_directory=args.plugins,
        config_file=args.config,
        enable_debug_mode=args.debug,
    ))

    # Dry run - validate only
    if args.dry_run:
        logger.info("Dry run mode - validating configuration...")
        try:
            await kernel.config_manager.load()
        except KernelError as e:
            logger.error(f"Validation error: {e}")
            return 1

        manifests = kernel.plugin_registry.discover_plugins()
        logger.info("Configuration valid!")
        logger.info(f"Environment: {kernel.get_config('app.environment')}")
        logger.info(f"Plugin manifests: {[m.id for m in manifests]}")
        return 0

    try:
        await kernel.start()
    except KernelError as e:
        logger.error(f"Failed to start kernel: {e}")
        return 1

    try:
        for manifest in kernel.plugin_registry.discover_plugins():
            try:
                await kernel.load_plugin(manifest)
            except KernelError as e:
                logger.error(f"Skipping plugin {manifest.id}: {e}")

        logger.info("MARKETSCOPE running. Press Ctrl+C to stop.")
        await kernel.run_forever()
    except KeyboardInterrupt:
        logger.info("Shutdown requested...")
    finally:
        await kernel.stop()

    logger.info("MARKETSCOPE shutdown complete")
    return 0


def run() -> None:
    """Synchronous entry point."""
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()

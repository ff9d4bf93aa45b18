#!/usr/bin/env python3

"""Command-line entry point: sudo setup-data-disk [--dry-run] [--force]"""

from __future__ import annotations

import argparse
import sys
from logging import Logger
from typing import Optional, Sequence

import argcomplete

from disk_provision.config import ProvisionConfig
from disk_provision.exceptions import PrivilegeError, UsageError
from disk_provision.logging_utils import get_service_logger
from disk_provision.pipeline import provision
from disk_provision.system_tools import SystemTools
from disk_provision.system_utils import is_root

SERVICE_NAME = "setup_data_disk"


class ProvisionArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports bad arguments as UsageError instead of exiting 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def create_argument_parser() -> ProvisionArgumentParser:
    parser = ProvisionArgumentParser(
        prog="setup-data-disk",
        description="Idempotent disk setup: ensure an ext4 filesystem, a UUID-based "
                    "/etc/fstab entry and a mounted data disk."
    )
    parser.add_argument("--dry-run", action="store_true",
                        help="Print actions without changing the system")
    parser.add_argument("--force", action="store_true",
                        help="Allow destructive mkfs when an existing filesystem is not ext4")
    return parser


def print_run_header(config: ProvisionConfig, logger: Logger) -> None:
    if config.dry_run:
        logger.info("*** DRY RUN MODE - No changes will be made ***")
        logger.info("")
    logger.info("=== Disk Setup (Idempotent) ===")
    logger.info(f"Device: {config.device}")
    logger.info(f"Mount Point: {config.mount_point}")
    logger.info(f"Dry-run: {'Yes' if config.dry_run else 'No'}")
    logger.info(f"Force: {'Yes' if config.force else 'No'}")


def main(argv: Optional[Sequence[str]] = None, tools: Optional[SystemTools] = None) -> int:
    parser = create_argument_parser()
    argcomplete.autocomplete(parser)
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    config = ProvisionConfig.from_args(args)
    privileged = is_root()
    logger = get_service_logger(SERVICE_NAME, config.log_dir if privileged else None)

    if not config.dry_run and not privileged:
        error = PrivilegeError("This script must be run as root (use sudo)")
        logger.error(f"Error: {error}")
        return error.exit_code

    print_run_header(config, logger)
    return provision(config, logger, tools)


if __name__ == "__main__":
    sys.exit(main())

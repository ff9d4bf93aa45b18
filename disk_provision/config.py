#!/usr/bin/env python3

import argparse
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any


DEFAULT_DEVICE = "/dev/sda1"
DEFAULT_MOUNT_POINT = "/var/lib/awidedbdata"
DEFAULT_FSTYPE = "ext4"
DEFAULT_MOUNT_OPTIONS = "defaults"
DEFAULT_FSTAB_PATH = "/etc/fstab"
DEFAULT_LOG_DIR = "/var/log/disk_provision"

# Placeholder reported for the filesystem UUID during a dry run
SIMULATED_UUID = "12345678-1234-1234-1234-123456789abc"


@dataclass(frozen=True)
class ProvisionConfig:
    device: str = DEFAULT_DEVICE
    mount_point: str = DEFAULT_MOUNT_POINT
    fstype: str = DEFAULT_FSTYPE
    options: str = DEFAULT_MOUNT_OPTIONS
    dump: int = 0
    passno: int = 2
    fstab_path: str = DEFAULT_FSTAB_PATH
    dry_run: bool = False
    force: bool = False
    settle_seconds: float = 1.0
    timezone: str = "UTC"
    log_dir: Optional[str] = DEFAULT_LOG_DIR

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> 'ProvisionConfig':
        from disk_provision.system_utils import get_local_timezone

        dry_run = getattr(args, 'dry_run', False)
        return cls(
            dry_run=dry_run,
            force=getattr(args, 'force', False),
            timezone=get_local_timezone(),
            # A dry run may be started without root, so skip the file log
            log_dir=None if dry_run else DEFAULT_LOG_DIR,
        )

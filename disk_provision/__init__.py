"""disk_provision - Idempotent data disk setup: filesystem, fstab record and mount."""

from __future__ import annotations

from .config import ProvisionConfig
from .exceptions import (
    ProvisionError, UsageError, PrivilegeError, ConflictError, ResolutionError, MountError, FormatError
)
from .fstab import FstabFile, MountRecord
from .pipeline import provision, run_stages, build_context

__all__ = [
    "ProvisionConfig",
    "ProvisionError",
    "UsageError",
    "PrivilegeError",
    "ConflictError",
    "ResolutionError",
    "MountError",
    "FormatError",
    "FstabFile",
    "MountRecord",
    "provision",
    "run_stages",
    "build_context",
]

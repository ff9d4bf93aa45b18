"""Disk space reporting for the provisioned mount."""

from __future__ import annotations
import shutil
from typing import Optional


def get_disk_usage_details(path: str) -> Optional[dict[str, int]]:
    """Get detailed disk usage information.

    Args:
        path: Path to analyze

    Returns:
        Dict with disk usage details in MB, None if the path cannot be read
    """
    try:
        stat = shutil.disk_usage(path)
    except OSError:
        return None
    return {
        'total_mb': stat.total // (1024 * 1024),
        'used_mb': stat.used // (1024 * 1024),
        'free_mb': stat.free // (1024 * 1024),
        'usage_percent': int((stat.used / stat.total) * 100) if stat.total > 0 else 0
    }


def format_disk_usage(path: str, details: dict[str, int]) -> str:
    return (
        f"{path}: {details['total_mb']} MB total, {details['used_mb']} MB used, "
        f"{details['free_mb']} MB free ({details['usage_percent']}% used)"
    )

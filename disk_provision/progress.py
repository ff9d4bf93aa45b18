"""Progress display for provisioning steps."""

from __future__ import annotations


def progress_bar(current: int, total: int, width: int = 20) -> str:
    filled = int(width * current / total) if total > 0 else 0
    bar = "█" * filled + "░" * (width - filled)
    percent = int(100 * current / total) if total > 0 else 0
    return f"[{bar}] {percent}%"


def step_header(current: int, total: int, name: str) -> str:
    return f"\n{progress_bar(current, total)} [{current}/{total}] {name}"

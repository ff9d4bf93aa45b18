"""Command execution with dry-run support."""

from __future__ import annotations

import shlex
import subprocess
from logging import Logger
from typing import Sequence


class CommandRunner:
    """Run external commands, printing instead of executing mutating ones in dry-run mode."""

    def __init__(self, logger: Logger, dry_run: bool = False):
        self.logger = logger
        self.dry_run = dry_run

    def run(self, args: Sequence[str], mutating: bool = True) -> subprocess.CompletedProcess[str]:
        """Run a command and capture its output.

        Args:
            args: Command and arguments
            mutating: Whether the command changes system state

        Returns:
            CompletedProcess; a missing executable yields returncode 127
        """
        cmd = shlex.join(args)
        if self.dry_run and mutating:
            self.logger.info(f"[DRY RUN] {cmd}")
            return subprocess.CompletedProcess(args=list(args), returncode=0, stdout="", stderr="")

        self.logger.debug(f"  Running: {cmd[:80]}..." if len(cmd) > 80 else f"  Running: {cmd}")
        try:
            return subprocess.run(list(args), capture_output=True, text=True)
        except FileNotFoundError as e:
            return subprocess.CompletedProcess(args=list(args), returncode=127, stdout="", stderr=str(e))

    def query(self, args: Sequence[str]) -> str:
        """Run a read-only command; return stripped stdout, or "" on failure."""
        result = self.run(args, mutating=False)
        if result.returncode != 0:
            return ""
        return (result.stdout or "").strip()

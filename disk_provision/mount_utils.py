"""Mount point inspection helpers.

``findmnt --target PATH`` reports the filesystem backing PATH, which for an
ordinary directory is simply its nearest mounted ancestor. Deciding whether
PATH itself is a mount point therefore goes through ``mountpoint -q``, and
only falls back to comparing the findmnt TARGET with PATH when the
``mountpoint`` binary is missing.
"""

from __future__ import annotations

import os

from disk_provision.commands import CommandRunner

COMMAND_NOT_FOUND = 127


def is_mountpoint(path: str, runner: CommandRunner) -> bool:
    """Return True only if ``path`` is itself a mount point."""
    result = runner.run(['mountpoint', '-q', path], mutating=False)
    if result.returncode != COMMAND_NOT_FOUND:
        return result.returncode == 0

    target = findmnt_field(path, 'TARGET', runner)
    return bool(target) and target == os.path.normpath(path)


def findmnt_field(path: str, field: str, runner: CommandRunner) -> str:
    """Return a single findmnt column for the filesystem backing ``path``."""
    return runner.query(['findmnt', '-n', '-o', field, '--target', path])

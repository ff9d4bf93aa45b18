"""Interfaces to the disk utilities the provisioning stages rely on.

The stages only talk to these interfaces, so they can run against the real
system (blkid, mkfs, mountpoint, findmnt, mount) or an in-memory fake.
"""

from __future__ import annotations

import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass

from disk_provision.commands import CommandRunner
from disk_provision.exceptions import ResolutionError
from disk_provision.mount_utils import findmnt_field, is_mountpoint


class DeviceInspector(ABC):
    """Read-only lookups on block devices"""

    @abstractmethod
    def resolve(self, device: str) -> str:
        """Return the canonical path of ``device``; raise ResolutionError if absent."""

    @abstractmethod
    def filesystem_type(self, device: str) -> str:
        """Return the filesystem type on ``device``, or "" if there is none."""

    @abstractmethod
    def filesystem_uuid(self, device: str) -> str:
        """Return the filesystem UUID of ``device``, or "" if unreadable."""


class FilesystemTool(ABC):
    """Filesystem creation"""

    @abstractmethod
    def make_filesystem(self, device: str, fstype: str) -> subprocess.CompletedProcess[str]:
        """Create ``fstype`` on ``device``, destroying whatever is there."""


class MountTool(ABC):
    """Mount point inspection and mounting"""

    @abstractmethod
    def is_mountpoint(self, path: str) -> bool:
        """Return True only if ``path`` itself is a mount point."""

    @abstractmethod
    def mounted_source(self, path: str) -> str:
        """Return the source device of the filesystem mounted at ``path``."""

    @abstractmethod
    def mounted_uuid(self, path: str) -> str:
        """Return the UUID of the filesystem mounted at ``path``."""

    @abstractmethod
    def ensure_directory(self, path: str) -> None:
        """Create ``path`` and its parents if missing."""

    @abstractmethod
    def mount_target(self, path: str) -> subprocess.CompletedProcess[str]:
        """Mount ``path`` using its fstab record."""

    @abstractmethod
    def mount_device(self, device: str, path: str) -> subprocess.CompletedProcess[str]:
        """Mount ``device`` at ``path`` directly."""


class BlkidInspector(DeviceInspector):
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def resolve(self, device: str) -> str:
        real_device = os.path.realpath(device)
        if not os.path.exists(real_device):
            raise ResolutionError(f"Device {device} does not exist (resolved to {real_device})")
        return real_device

    def filesystem_type(self, device: str) -> str:
        return self.runner.query(['blkid', '-o', 'value', '-s', 'TYPE', device])

    def filesystem_uuid(self, device: str) -> str:
        return self.runner.query(['blkid', '-s', 'UUID', '-o', 'value', device])


class MkfsTool(FilesystemTool):
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def make_filesystem(self, device: str, fstype: str) -> subprocess.CompletedProcess[str]:
        # -F: whether overwriting is acceptable has already been decided by the caller
        return self.runner.run([f'mkfs.{fstype}', '-F', device])


class SystemMountTool(MountTool):
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_mountpoint(self, path: str) -> bool:
        return is_mountpoint(path, self.runner)

    def mounted_source(self, path: str) -> str:
        return findmnt_field(path, 'SOURCE', self.runner)

    def mounted_uuid(self, path: str) -> str:
        return findmnt_field(path, 'UUID', self.runner)

    def ensure_directory(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def mount_target(self, path: str) -> subprocess.CompletedProcess[str]:
        return self.runner.run(['mount', path])

    def mount_device(self, device: str, path: str) -> subprocess.CompletedProcess[str]:
        return self.runner.run(['mount', device, path])


@dataclass
class SystemTools:
    """The collaborators one provisioning run works with."""
    devices: DeviceInspector
    filesystems: FilesystemTool
    mounts: MountTool


def build_system_tools(runner: CommandRunner) -> SystemTools:
    return SystemTools(
        devices=BlkidInspector(runner),
        filesystems=MkfsTool(runner),
        mounts=SystemMountTool(runner),
    )

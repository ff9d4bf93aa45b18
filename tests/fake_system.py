"""In-memory stand-in for the disk utilities used by the provisioning stages."""

from __future__ import annotations

import logging
import subprocess
import uuid

from disk_provision.exceptions import ResolutionError
from disk_provision.fstab import find_records
from disk_provision.system_tools import DeviceInspector, FilesystemTool, MountTool, SystemTools


def _completed(args, returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=list(args), returncode=returncode, stdout="", stderr=stderr)


class FakeSystem(DeviceInspector, FilesystemTool, MountTool):
    """Block devices, filesystems and mounts kept in dictionaries.

    Every state change is recorded in ``mutations`` so tests can assert
    exactly which destructive calls a run made.
    """

    def __init__(self, fstab_path: str):
        self.fstab_path = fstab_path
        self.links: dict[str, str] = {}
        self.devices: set[str] = set()
        self.fs_types: dict[str, str] = {}
        self.uuids: dict[str, str] = {}
        self.mounted: dict[str, str] = {}
        self.directories: set[str] = set()
        self.mutations: list[tuple] = []
        self.uuid_reads = 0
        # Number of upcoming UUID reads that come back empty
        self.hidden_uuid_reads = 0
        self.mkfs_fails = False
        self.mount_target_fails = False
        self.mount_device_fails = False
        self._uuid_counter = 0

    # Test setup helpers

    def add_device(self, path: str, link: str | None = None, fs_type: str = "") -> str:
        self.devices.add(path)
        if link:
            self.links[link] = path
        if fs_type:
            self.format_device(path, fs_type)
        return path

    def format_device(self, device: str, fs_type: str) -> str:
        self._uuid_counter += 1
        self.fs_types[device] = fs_type
        self.uuids[device] = str(uuid.UUID(int=self._uuid_counter))
        return self.uuids[device]

    def tools(self) -> SystemTools:
        return SystemTools(devices=self, filesystems=self, mounts=self)

    # DeviceInspector

    def resolve(self, device: str) -> str:
        real = self.links.get(device, device)
        if real not in self.devices:
            raise ResolutionError(f"Device {device} does not exist (resolved to {real})")
        return real

    def filesystem_type(self, device: str) -> str:
        return self.fs_types.get(device, "")

    def filesystem_uuid(self, device: str) -> str:
        self.uuid_reads += 1
        if self.hidden_uuid_reads > 0:
            self.hidden_uuid_reads -= 1
            return ""
        return self.uuids.get(device, "")

    # FilesystemTool

    def make_filesystem(self, device: str, fstype: str):
        self.mutations.append(("mkfs", device, fstype))
        if self.mkfs_fails:
            return _completed(["mkfs." + fstype, "-F", device], 1, "mkfs failed")
        self.format_device(device, fstype)
        return _completed(["mkfs." + fstype, "-F", device])

    # MountTool

    def is_mountpoint(self, path: str) -> bool:
        return path in self.mounted

    def mounted_source(self, path: str) -> str:
        return self.mounted.get(path, "")

    def mounted_uuid(self, path: str) -> str:
        return self.uuids.get(self.mounted.get(path, ""), "")

    def ensure_directory(self, path: str) -> None:
        if path not in self.directories:
            self.mutations.append(("mkdir", path))
            self.directories.add(path)

    def mount_target(self, path: str):
        self.mutations.append(("mount", path))
        device = self._device_from_fstab(path)
        if self.mount_target_fails or device is None:
            return _completed(["mount", path], 32, f"mount: {path}: can't find in /etc/fstab.")
        self.mounted[path] = device
        return _completed(["mount", path])

    def mount_device(self, device: str, path: str):
        self.mutations.append(("mount", device, path))
        if self.mount_device_fails:
            return _completed(["mount", device, path], 32, "mount: wrong fs type, bad option, bad superblock")
        self.mounted[path] = device
        return _completed(["mount", device, path])

    def _device_from_fstab(self, path: str):
        try:
            with open(self.fstab_path) as f:
                content = f.read()
        except FileNotFoundError:
            return None
        for _, line in find_records(content, path):
            spec = line.split()[0]
            if spec.startswith("UUID="):
                for device, device_uuid in self.uuids.items():
                    if device_uuid == spec[len("UUID="):]:
                        return device
        return None


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


def make_logger(name: str) -> tuple[logging.Logger, ListHandler]:
    """Return a logger that keeps its messages in memory instead of printing them."""
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = ListHandler()
    logger.addHandler(handler)
    return logger, handler

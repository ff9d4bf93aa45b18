"""Idempotent provisioning of the data disk.

The run is an ordered list of stages over a shared ``ProvisionContext``:

1. resolve the configured device to its real path
2. check whether the mount point is already mounted, and from what
3. make sure the device holds the target filesystem
4. read the filesystem UUID
5. make sure fstab holds exactly one record for the mount point
6. make sure the filesystem is mounted
7. report disk usage and the fstab record

Each stage returns a ``StageResult`` (ok, skip or fatal) or raises a
``ProvisionError``; the driver stops at the first fatal result. Every stage
detects its own "already done" case, so re-running a completed setup changes
nothing. Stages never call mutating tools in dry-run mode; they narrate the
command instead and continue with simulated values.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from logging import Logger
from typing import Callable, Optional

from disk_provision.commands import CommandRunner
from disk_provision.config import ProvisionConfig, SIMULATED_UUID
from disk_provision.disk_utils import format_disk_usage, get_disk_usage_details
from disk_provision.exceptions import (
    ConflictError, FormatError, MountError, ProvisionError, ResolutionError
)
from disk_provision.fstab import FSTAB_UNCHANGED, FstabFile, MountRecord, ReconcileResult
from disk_provision.logging_utils import log_subprocess_result, summarize_stderr
from disk_provision.progress import step_header
from disk_provision.system_tools import SystemTools, build_system_tools

STATUS_OK = "ok"
STATUS_SKIP = "skip"
STATUS_FATAL = "fatal"


@dataclass
class StageResult:
    status: str
    message: str = ""
    error: Optional[ProvisionError] = None

    @classmethod
    def ok(cls, message: str = "") -> 'StageResult':
        return cls(STATUS_OK, message)

    @classmethod
    def skip(cls, message: str = "") -> 'StageResult':
        return cls(STATUS_SKIP, message)

    @classmethod
    def fatal(cls, error: ProvisionError) -> 'StageResult':
        return cls(STATUS_FATAL, str(error), error)

    @property
    def is_fatal(self) -> bool:
        return self.status == STATUS_FATAL


@dataclass
class ProvisionContext:
    """State shared by the stages of one run."""
    config: ProvisionConfig
    tools: SystemTools
    fstab: FstabFile
    logger: Logger
    real_device: Optional[str] = None
    mounted_at_start: bool = False
    mounted_source: str = ""
    mounted_uuid: str = ""
    # Set when the mount point was already mounted but the device UUID was unreadable
    identity_check_deferred: bool = False
    fs_type: str = ""
    filesystem_created: bool = False
    uuid: Optional[str] = None
    fstab_result: Optional[ReconcileResult] = None
    results: list[tuple[str, StageResult]] = field(default_factory=list)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def device(self) -> str:
        return self.real_device or self.config.device


Stage = Callable[[ProvisionContext], StageResult]


def resolve_device(ctx: ProvisionContext) -> StageResult:
    device = ctx.config.device
    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] readlink -f {device}")
        ctx.real_device = device
        return StageResult.skip(f"Real device (simulated): {device}")

    ctx.real_device = ctx.tools.devices.resolve(device)
    return StageResult.ok(f"Real device: {ctx.real_device}")


def inspect_mount_state(ctx: ProvisionContext) -> StageResult:
    mount_point = ctx.config.mount_point
    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] mountpoint -q {mount_point}")
        ctx.logger.info("[DRY RUN] If it is a mount point, would compare mounted UUID with device UUID.")
        return StageResult.skip("Mount state not inspected (simulated: not mounted)")

    mounts = ctx.tools.mounts
    if not mounts.is_mountpoint(mount_point):
        return StageResult.ok(f"{mount_point} is not a mount point yet")

    ctx.mounted_at_start = True
    ctx.mounted_source = mounts.mounted_source(mount_point)
    ctx.mounted_uuid = mounts.mounted_uuid(mount_point)
    ctx.logger.info(f"Already mounted: source={ctx.mounted_source} uuid={ctx.mounted_uuid}")

    device_uuid = ctx.tools.devices.filesystem_uuid(ctx.device)
    if not device_uuid:
        ctx.identity_check_deferred = True
        ctx.logger.warning(
            f"⚠ UUID of {ctx.device} is not readable yet; "
            "the mounted filesystem will be compared once it is known"
        )
        return StageResult.skip("Mounted filesystem comparison deferred")

    if ctx.mounted_uuid and device_uuid == ctx.mounted_uuid:
        return StageResult.ok("Mount point is already mounted with the expected UUID. No remount needed.")

    raise ConflictError(
        f"{mount_point} is mounted from a different filesystem "
        f"(mounted: source={ctx.mounted_source} uuid={ctx.mounted_uuid or '<none>'}; "
        f"target device: {ctx.device} uuid={device_uuid}). "
        f"Refusing to modify {ctx.config.fstab_path} or remount."
    )


def ensure_filesystem(ctx: ProvisionContext) -> StageResult:
    fstype = ctx.config.fstype
    device = ctx.device

    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] blkid -o value -s TYPE {device}")
        fs_type = ""
        ctx.logger.info("Filesystem type (simulated): <none>")
    else:
        fs_type = ctx.tools.devices.filesystem_type(device)
        ctx.logger.info(f"Filesystem type: {fs_type or '<none>'}")
    ctx.fs_type = fs_type

    if fs_type == fstype:
        return StageResult.skip(f"{fstype} filesystem already present. Skipping mkfs.")

    if fs_type:
        ctx.logger.info(f"Existing filesystem is '{fs_type}' (not {fstype}).")
        if ctx.mounted_at_start:
            raise ConflictError(
                f"Refusing to format {device}: {ctx.config.mount_point} is mounted "
                f"and the device holds '{fs_type}'."
            )
        if not ctx.config.force:
            raise ConflictError(
                f"Refusing to format {device}. "
                f"Re-run with --force to overwrite '{fs_type}' with {fstype}."
            )
        ctx.logger.warning(f"⚠ --force provided. Recreating filesystem as {fstype} (DESTRUCTIVE).")
    else:
        ctx.logger.info(f"No filesystem detected. Creating {fstype} on {device}.")

    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] mkfs.{fstype} -F {device}")
        return StageResult.skip(f"{fstype} filesystem would be created.")

    result = ctx.tools.filesystems.make_filesystem(device, fstype)
    if not log_subprocess_result(ctx.logger, f"mkfs.{fstype} {device}", result):
        raise FormatError(f"Could not create {fstype} on {device}: {summarize_stderr(result)}")

    ctx.filesystem_created = True
    ctx.uuid = None
    return StageResult.ok(f"{fstype} filesystem created.")


def resolve_identity(ctx: ProvisionContext) -> StageResult:
    device = ctx.device
    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] blkid -s UUID -o value {device}")
        ctx.uuid = SIMULATED_UUID
        return StageResult.skip(f"UUID (simulated): {ctx.uuid}")

    if ctx.config.settle_seconds > 0:
        # udev may still be publishing the new filesystem's metadata
        time.sleep(ctx.config.settle_seconds)

    uuid = ctx.tools.devices.filesystem_uuid(device)
    if not uuid:
        raise ResolutionError(f"Could not retrieve UUID for {device}")
    ctx.uuid = uuid

    if ctx.identity_check_deferred:
        if uuid != ctx.mounted_uuid:
            raise ConflictError(
                f"{ctx.config.mount_point} is mounted from a different filesystem "
                f"(mounted: source={ctx.mounted_source} uuid={ctx.mounted_uuid or '<none>'}; "
                f"target device: {device} uuid={uuid}). "
                f"Refusing to modify {ctx.config.fstab_path} or remount."
            )
        ctx.identity_check_deferred = False
        ctx.logger.info(f"Mounted filesystem matches {device}.")

    return StageResult.ok(f"UUID: {uuid}")


def reconcile_fstab_record(ctx: ProvisionContext) -> StageResult:
    config = ctx.config
    record = MountRecord.for_uuid(
        ctx.uuid or "", config.mount_point, config.fstype, config.options, config.dump, config.passno
    )
    ctx.fstab_result = ctx.fstab.reconcile(record)
    if ctx.fstab_result.action == FSTAB_UNCHANGED:
        return StageResult.skip(f"{config.fstab_path} unchanged")
    if ctx.dry_run:
        return StageResult.skip(f"{config.fstab_path} not modified (dry run)")
    return StageResult.ok(f"{config.fstab_path} entry {ctx.fstab_result.action}")


def enforce_mount(ctx: ProvisionContext) -> StageResult:
    mount_point = ctx.config.mount_point
    device = ctx.device

    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] mkdir -p {mount_point}")
        ctx.logger.info(f"[DRY RUN] If not a mount point, would run: mount {mount_point}")
        ctx.logger.info(f"[DRY RUN]   falling back to: mount {device} {mount_point}")
        return StageResult.skip("Mount not attempted (dry run)")

    mounts = ctx.tools.mounts
    if mounts.is_mountpoint(mount_point):
        return StageResult.skip("Already mounted. Nothing to do.")

    try:
        mounts.ensure_directory(mount_point)
    except OSError as e:
        raise MountError(f"Could not create mount point directory {mount_point}: {e}") from e

    # Prefer mounting via fstab
    by_target = mounts.mount_target(mount_point)
    if log_subprocess_result(ctx.logger, f"mount {mount_point}", by_target):
        return StageResult.ok(f"Mounted: {device} -> {mount_point}")

    by_device = mounts.mount_device(device, mount_point)
    if log_subprocess_result(ctx.logger, f"mount {device} {mount_point}", by_device):
        return StageResult.ok(f"Mounted: {device} -> {mount_point}")

    raise MountError(
        f"Could not mount {device} at {mount_point}: "
        f"'mount {mount_point}' failed ({summarize_stderr(by_target)}); "
        f"'mount {device} {mount_point}' failed ({summarize_stderr(by_device)})"
    )


def report_verification(ctx: ProvisionContext) -> StageResult:
    mount_point = ctx.config.mount_point
    fstab_path = ctx.config.fstab_path

    if ctx.dry_run:
        ctx.logger.info(f"[DRY RUN] df -h {mount_point}")
        ctx.logger.info(f"[DRY RUN] grep -n -- \" {mount_point} \" {fstab_path}")
        return StageResult.skip("Verification skipped (dry run)")

    details = get_disk_usage_details(mount_point)
    if details is None:
        ctx.logger.warning(f"⚠ Could not read disk usage for {mount_point}")
    else:
        ctx.logger.info(format_disk_usage(mount_point, details))

    try:
        records = ctx.fstab.find_records(mount_point)
    except ProvisionError as e:
        ctx.logger.warning(f"⚠ {e}")
        records = []
    for number, line in records:
        ctx.logger.info(f"{fstab_path}:{number}: {line}")

    return StageResult.ok("Verification complete")


STAGES: list[tuple[str, Stage]] = [
    ("Resolving device name", resolve_device),
    ("Checking whether the mount point is already mounted", inspect_mount_state),
    ("Ensuring filesystem", ensure_filesystem),
    ("Getting filesystem UUID", resolve_identity),
    ("Ensuring persistent mount in fstab", reconcile_fstab_record),
    ("Ensuring the filesystem is mounted", enforce_mount),
    ("Verification", report_verification),
]


def build_context(config: ProvisionConfig, logger: Logger, tools: Optional[SystemTools] = None) -> ProvisionContext:
    if tools is None:
        tools = build_system_tools(CommandRunner(logger, dry_run=config.dry_run))
    fstab = FstabFile(config.fstab_path, logger, dry_run=config.dry_run, timezone=config.timezone)
    return ProvisionContext(config=config, tools=tools, fstab=fstab, logger=logger)


def run_stages(ctx: ProvisionContext, stages: Optional[list[tuple[str, Stage]]] = None) -> StageResult:
    """Run stages in order, stopping at the first fatal result."""
    if stages is None:
        stages = STAGES

    total = len(stages)
    for i, (name, stage) in enumerate(stages, 1):
        ctx.logger.info(step_header(i, total, name))
        try:
            result = stage(ctx)
        except ProvisionError as e:
            result = StageResult.fatal(e)
        ctx.results.append((name, result))

        if result.is_fatal:
            ctx.logger.error(f"Error: {result.message}")
            return result
        if result.message:
            ctx.logger.info(f"  ✓ {result.message}")

    return StageResult.ok("Setup complete")


def provision(config: ProvisionConfig, logger: Logger, tools: Optional[SystemTools] = None) -> int:
    """Run a full provisioning pass and return the process exit code."""
    ctx = build_context(config, logger, tools)
    result = run_stages(ctx)
    if result.is_fatal:
        return result.error.exit_code if result.error else 1
    logger.info("\n=== Setup Complete ===")
    return 0

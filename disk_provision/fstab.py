"""Persistent mount records in /etc/fstab.

A record is any line whose first field does not start with ``#``; the
second field is its mount target. For a given target the file is brought to
exactly one record equal to the desired line:

- no record: the desired line is appended
- one identical record: nothing is written
- otherwise: the first record is replaced in place and any later records
  for the same target are dropped

Every other line keeps its position and bytes. Before the first write of a
run the file is copied to ``<path>.backup.<YYYYMMDD_HHMMSS>``, and writes go
through a temporary file in the same directory followed by ``os.replace``.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from logging import Logger
from typing import Optional

import pytz

from disk_provision.exceptions import ProvisionError

FSTAB_UNCHANGED = "unchanged"
FSTAB_APPENDED = "appended"
FSTAB_REPLACED = "replaced"
# Dry run could not read the table, so the action is unknown
FSTAB_UNVERIFIED = "unverified"

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Lines end at "\n" only; fields are separated by spaces and tabs only
_LINE = re.compile(r"[^\n]*\n|[^\n]+\Z")
_FIELD_SEPARATOR = re.compile(r"[ \t]+")

# Octal escapes used by fstab(5) for whitespace and backslashes
_ESCAPES = (
    ("\\", "\\134"),
    (" ", "\\040"),
    ("\t", "\\011"),
    ("\n", "\\012"),
)


def escape_field(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def unescape_field(value: str) -> str:
    for raw, escaped in reversed(_ESCAPES):
        value = value.replace(escaped, raw)
    return value


@dataclass(frozen=True)
class MountRecord:
    spec: str
    target: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 2

    @classmethod
    def for_uuid(cls, uuid: str, target: str, fstype: str, options: str = "defaults",
                 dump: int = 0, passno: int = 2) -> 'MountRecord':
        return cls(f"UUID={uuid}", target, fstype, options, dump, passno)

    def as_line(self) -> str:
        return " ".join((
            escape_field(self.spec),
            escape_field(self.target),
            self.fstype,
            self.options or "defaults",
            str(self.dump),
            str(self.passno),
        ))


def split_lines(content: str) -> list[str]:
    """Split table content into lines, keeping each line's ending."""
    return _LINE.findall(content)


def _normalize_target(target: str) -> str:
    return os.path.normpath(target) if target.startswith("/") else target


def line_target(line: str) -> Optional[str]:
    """Return the unescaped mount target of a record line, None for comments and blanks."""
    fields = [f for f in _FIELD_SEPARATOR.split(line.rstrip("\r\n")) if f]
    if len(fields) < 2 or fields[0].startswith("#"):
        return None
    return _normalize_target(unescape_field(fields[1]))


def find_records(content: str, target: str) -> list[tuple[int, str]]:
    """Return ``(line_number, line)`` for every record mounted at ``target``.

    Line numbers start at 1.
    """
    wanted = _normalize_target(target)
    return [
        (number, line.rstrip("\r\n"))
        for number, line in enumerate(split_lines(content), 1)
        if line_target(line) == wanted
    ]


@dataclass
class FstabPlan:
    action: str
    content: str
    previous: list[str] = field(default_factory=list)


def plan_fstab_update(content: str, record: MountRecord) -> FstabPlan:
    """Compute the table content that holds exactly one ``record``."""
    desired = record.as_line()
    lines = split_lines(content)
    wanted = _normalize_target(record.target)
    matches = [i for i, line in enumerate(lines) if line_target(line) == wanted]
    previous = [lines[i].rstrip("\r\n") for i in matches]

    if not matches:
        if content and not content.endswith("\n"):
            content += "\n"
        return FstabPlan(FSTAB_APPENDED, content + desired + "\n")

    if len(matches) == 1 and previous[0] == desired:
        return FstabPlan(FSTAB_UNCHANGED, content, previous)

    first = matches[0]
    duplicates = set(matches[1:])
    new_lines = []
    for i, line in enumerate(lines):
        if i == first:
            body = line.rstrip("\r\n")
            new_lines.append(desired + line[len(body):])
        elif i not in duplicates:
            new_lines.append(line)
    return FstabPlan(FSTAB_REPLACED, "".join(new_lines), previous)


def backup_timestamp(timezone: str = "UTC") -> str:
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return datetime.now(tz).strftime(BACKUP_TIMESTAMP_FORMAT)


@dataclass
class ReconcileResult:
    action: str
    line: str
    previous: list[str] = field(default_factory=list)
    backup_path: Optional[str] = None


class FstabFile:
    """The persistent mount table of one provisioning run."""

    def __init__(self, path: str, logger: Logger, dry_run: bool = False, timezone: str = "UTC"):
        self.path = path
        self.logger = logger
        self.dry_run = dry_run
        self.timezone = timezone
        self.backup_path: Optional[str] = None

    def read(self) -> str:
        """Return the table content; a missing table reads as empty."""
        try:
            with open(self.path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
                return f.read()
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise ProvisionError(f"Could not read {self.path}: {e}") from e

    def find_records(self, target: str) -> list[tuple[int, str]]:
        return find_records(self.read(), target)

    def backup_once(self) -> Optional[str]:
        """Copy the table aside unless this run already did; returns the backup path."""
        if self.backup_path or not os.path.exists(self.path):
            return self.backup_path

        backup_path = f"{self.path}.backup.{backup_timestamp(self.timezone)}"
        if os.path.exists(backup_path):
            self.logger.warning(f"⚠ Overwriting existing backup {backup_path} (created within the same second)")
        try:
            shutil.copy2(self.path, backup_path)
        except OSError as e:
            raise ProvisionError(f"Could not back up {self.path} to {backup_path}: {e}") from e

        self.backup_path = backup_path
        self.logger.info(f"Backup created: {backup_path}")
        return backup_path

    def write_atomic(self, content: str) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{os.path.basename(self.path)}.", suffix=".tmp", dir=directory
            )
        except OSError as e:
            raise ProvisionError(f"Could not create a temporary file next to {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if os.path.exists(self.path):
                shutil.copymode(self.path, tmp_path)
            else:
                os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise ProvisionError(f"Could not write {self.path}: {e}") from e

    def reconcile(self, record: MountRecord) -> ReconcileResult:
        """Ensure the table holds exactly ``record`` for its target."""
        desired = record.as_line()
        try:
            content = self.read()
        except ProvisionError as e:
            if not self.dry_run:
                raise
            self.logger.warning(f"⚠ {e}")
            self.logger.info(f"[DRY RUN] Ensure {self.path} has: {desired}")
            return ReconcileResult(FSTAB_UNVERIFIED, desired)

        plan = plan_fstab_update(content, record)
        result = ReconcileResult(plan.action, desired, plan.previous)

        if plan.action == FSTAB_UNCHANGED:
            self.logger.info("fstab entry already correct. Skipping modification.")
            return result

        if self.dry_run:
            if plan.action == FSTAB_APPENDED:
                self.logger.info(f"[DRY RUN] Would back up {self.path} and add: {desired}")
            else:
                self.logger.info(f"[DRY RUN] Would back up {self.path} and replace: {' | '.join(plan.previous)}")
                self.logger.info(f"[DRY RUN]   with: {desired}")
            return result

        result.backup_path = self.backup_once()
        self.write_atomic(plan.content)

        if plan.action == FSTAB_APPENDED:
            self.logger.info(f"Added fstab entry: {desired}")
        else:
            self.logger.info(f"Updated fstab entry for {record.target}: {desired}")
            if len(plan.previous) > 1:
                self.logger.warning(f"⚠ Removed {len(plan.previous) - 1} duplicate entry(ies) for {record.target}")
        return result

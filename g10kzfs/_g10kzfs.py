# Copyright Red Hat
#
# g10kzfs/_g10kzfs.py - g10k ZFS snapshot rotation global definitions
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level g10kzfs package.
"""
from typing import Iterable, List, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
import os
import re

_log = logging.getLogger("g10kzfs")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# g10kzfs debugging subsystem mask
G10K_DEBUG_MANAGER = 1
G10K_DEBUG_COMMAND = 2
G10K_DEBUG_MOUNTS = 4
G10K_DEBUG_STORAGE = 8
G10K_DEBUG_ALL = (
    G10K_DEBUG_MANAGER | G10K_DEBUG_COMMAND | G10K_DEBUG_MOUNTS | G10K_DEBUG_STORAGE
)

# g10kzfs debugging subsystem names
G10K_SUBSYSTEM_MANAGER = "g10kzfs.manager"
G10K_SUBSYSTEM_COMMAND = "g10kzfs.command"
G10K_SUBSYSTEM_MOUNTS = "g10kzfs.mounts"
G10K_SUBSYSTEM_STORAGE = "g10kzfs.storage"

_DEBUG_MASK_TO_SUBSYSTEM = {
    G10K_DEBUG_MANAGER: G10K_SUBSYSTEM_MANAGER,
    G10K_DEBUG_COMMAND: G10K_SUBSYSTEM_COMMAND,
    G10K_DEBUG_MOUNTS: G10K_SUBSYSTEM_MOUNTS,
    G10K_DEBUG_STORAGE: G10K_SUBSYSTEM_STORAGE,
}

#: Timeout in seconds for zfs(8), mount(8), umount(8) and chown(1) callouts
G10K_CALLOUT_TIMEOUT = int(os.getenv("G10K_ZFS_CALLOUT_TIMEOUT", "60"))

#: Name of the dataset created below the pool.
DEFAULT_DATASET_NAME = "g10k"

#: Canonical mount point of the writable dataset.
DEFAULT_G10K_MOUNT = "/g10k"

#: Path at which the current snapshot is published.
DEFAULT_MOUNT_POINT = "/etc/puppetlabs/code"

#: Default owner and group used when fixing file ownership.
DEFAULT_OWNER = "puppet"
DEFAULT_GROUP = "puppet"

#: Separator between dataset and snapshot label in a snapshot name.
SNAPSHOT_SEPARATOR = "@"

#: strftime(3) layout for timestamp snapshot labels.
TIMESTAMP_LABEL_FORMAT = "Date-%d-%b-%Y_Time-%H.%M.%S"

# Older releases wrote the time fields without zero padding (Time-9.5.3).
_TIMESTAMP_LABEL_RE = re.compile(
    r"^Date-[0-9]{2}-[A-Z][a-z]{2}-[0-9]{4}_Time-[0-9]{1,2}\.[0-9]{1,2}\.[0-9]{1,2}$"
)

#: The two labels used by the alternating slot policy.
SLOT_A = "A"
SLOT_B = "B"

class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name="", subsystems: Optional[Iterable[str]] = None):
        super().__init__(name)
        self.enabled_subsystems = set(subsystems or [])

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def _subsystem_filters():
    g10k_log = logging.getLogger("g10kzfs")
    for handler in g10k_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                yield f


def mask_to_subsystems(mask: int) -> List[str]:
    """
    Convert a debug mask into the list of subsystem names it enables.

    :param mask: the logical OR of the ``G10K_DEBUG_*`` values.
    :returns: A list of subsystem names.
    :raises: ``ValueError`` if ``mask`` is out of range.
    """
    if mask < 0 or mask > G10K_DEBUG_ALL:
        raise ValueError(f"Invalid g10kzfs debug mask: {mask}")
    return [name for flag, name in _DEBUG_MASK_TO_SUBSYSTEM.items() if mask & flag]


def get_debug_mask():
    """
    Return the debug mask currently applied to the ``g10kzfs`` log handlers.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set()
    for f in _subsystem_filters():
        enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask on every ``SubsystemFilter`` attached to the
    ``g10kzfs`` log handlers.

    :param mask: the logical OR of the ``G10K_DEBUG_*`` values to log.
    :rtype: None
    """
    enabled_subsystems = mask_to_subsystems(mask)
    for f in _subsystem_filters():
        f.set_debug_subsystems(enabled_subsystems)


#
# g10kzfs exception types
#


class G10kError(Exception):
    """
    Base class for g10kzfs errors.
    """


class G10kSystemError(G10kError):
    """
    An error when calling the operating system.
    """


class G10kCalloutError(G10kSystemError):
    """
    An error calling out to an external program.
    """


class G10kNotFoundError(G10kError):
    """
    The requested object does not exist.
    """


class G10kConfigError(G10kError):
    """
    An invalid configuration value or combination of options.
    """


class VolumeErrorKind(Enum):
    """
    The volume preparation step that failed.
    """

    CREATE = "Create"
    PATH_SETUP = "PathSetup"
    MOUNT = "Mount"


class G10kVolumeError(G10kError):
    """
    The backing volume could not be created, given a mount point directory,
    or mounted.
    """

    def __init__(self, kind: VolumeErrorKind, msg: str):
        self.kind = kind
        super().__init__(f"Volume {kind.value} failed: {msg}")


class G10kSnapshotError(G10kError):
    """
    An error creating a snapshot.
    """


class G10kExistsError(G10kSnapshotError):
    """
    The snapshot to be created already exists.
    """


class G10kStateError(G10kError):
    """
    The on-disk snapshot state could not be brought back to a known state.
    """


class G10kMountError(G10kSystemError):
    """
    An error performing a mount operation.
    """

    def __init__(self, what: str, where: str, status: int, stderr: str):
        """
        Initialise a new `G10kMountError` exception.

        :param what: The source for the failed mount operation.
        :param where: The intended mount point of the operation.
        :param status: The exit status of the mount(8) program.
        :param stderr: The error message from mount(8).
        """
        self.what, self.where, self.status, self.stderr = what, where, status, stderr
        msg = f"Failed to mount {what} to {where} (status={status}): {stderr}"
        super().__init__(msg)


class G10kUmountError(G10kSystemError):
    """
    An error performing an unmount operation.
    """

    def __init__(self, where: str, status: int, stderr: str):
        """
        Initialise a new `G10kUmountError` exception.

        :param where: The mount point for the failed umount operation.
        :param status: The exit status of the umount(8) program.
        :param stderr: The error message from umount(8).
        """
        self.where, self.status, self.stderr = where, status, stderr
        msg = f"Failed to unmount {where} (status={status}): {stderr}"
        super().__init__(msg)


def format_snapshot_name(volume_id: str, label: str) -> str:
    """
    Format a full snapshot name from a dataset and a label.

    :param volume_id: The dataset name, for e.g. ``tank/g10k``.
    :param label: The snapshot label.
    :returns: ``volume_id@label``
    """
    return f"{volume_id}{SNAPSHOT_SEPARATOR}{label}"


def parse_snapshot_name(name: str):
    """
    Split a full snapshot name into a ``(volume_id, label)`` tuple, or return
    ``None`` if ``name`` is not a snapshot name.
    """
    if SNAPSHOT_SEPARATOR not in name:
        return None
    volume_id, label = name.split(SNAPSHOT_SEPARATOR, maxsplit=1)
    if not volume_id or not label:
        return None
    return (volume_id, label)


def is_timestamp_label(label: str) -> bool:
    """
    Test whether ``label`` is a well-formed timestamp snapshot label.
    """
    return parse_timestamp_label(label) is not None


def parse_timestamp_label(label: str) -> Optional[datetime]:
    """
    Parse a timestamp snapshot label.

    :param label: The label to parse.
    :returns: A ``datetime`` or ``None`` if ``label`` does not follow
              ``TIMESTAMP_LABEL_FORMAT``.
    """
    if not _TIMESTAMP_LABEL_RE.match(label):
        return None
    try:
        return datetime.strptime(label, TIMESTAMP_LABEL_FORMAT)
    except ValueError:
        return None


class Volume:
    """
    The backing dataset that g10k writes to and that is snapshotted.
    """

    def __init__(self, pool: str, name: str = DEFAULT_DATASET_NAME,
                 mount_point: str = DEFAULT_G10K_MOUNT):
        if not pool:
            raise G10kConfigError("A pool name is required")
        self.pool = pool.rstrip("/")
        self.name = name.strip("/")
        self.mount_point = mount_point

    def __str__(self):
        return self.id

    def __repr__(self):
        return (
            f"Volume('{self.pool}', name='{self.name}', "
            f"mount_point='{self.mount_point}')"
        )

    def __eq__(self, other):
        return (
            isinstance(other, Volume)
            and self.id == other.id
            and self.mount_point == other.mount_point
        )

    @property
    def id(self):
        """
        The full dataset name: ``pool/name``.
        """
        return f"{self.pool}/{self.name}"


class Snapshot:
    """
    A read-only point-in-time copy of a ``Volume``.
    """

    def __init__(self, volume_id: str, label: str,
                 mount_points: Optional[List[str]] = None, bound: bool = False):
        """
        Initialise a new ``Snapshot`` object.

        :param volume_id: The dataset this snapshot belongs to.
        :param label: The snapshot label (the part after '@').
        :param mount_points: Paths this snapshot is currently mounted at.
        :param bound: ``True`` if mounted at the published path.
        """
        self.volume_id = volume_id
        self.label = label
        self.mount_points = list(mount_points or [])
        self.bound = bound

    def __repr__(self):
        return f"Snapshot('{self.volume_id}', '{self.label}')"

    def __eq__(self, other):
        return isinstance(other, Snapshot) and self.name == other.name

    def __hash__(self):
        return hash(self.name)

    @property
    def name(self):
        """
        The full name of this snapshot: ``volume@label``.
        """
        return format_snapshot_name(self.volume_id, self.label)

    @property
    def created_at(self) -> Optional[datetime]:
        """
        The creation time encoded in the label, or ``None`` for labels that
        do not carry one.
        """
        return parse_timestamp_label(self.label)

    @property
    def mounted(self):
        """
        ``True`` if this snapshot is mounted anywhere.
        """
        return bool(self.mount_points)


class MountBinding:
    """
    The pairing of the published path with whatever is mounted there.
    """

    def __init__(self, path: str, source: Optional[str] = None):
        self.path = path
        self.source = source

    def __str__(self):
        return f"{self.source or '(unbound)'} on {self.path}"

    def __repr__(self):
        return f"MountBinding('{self.path}', {self.source!r})"

    def __eq__(self, other):
        return (
            isinstance(other, MountBinding)
            and self.path == other.path
            and self.source == other.source
        )

    @property
    def bound(self):
        """
        ``True`` if anything is mounted at ``path``.
        """
        return self.source is not None

    def is_bound_to(self, snapshot: Snapshot) -> bool:
        """
        Test whether ``snapshot`` is the source of this binding.
        """
        return self.source == snapshot.name


@dataclass
class RetentionWarning:
    """
    A non-fatal failure to release or destroy one stale snapshot.
    """

    snapshot: str
    action: str
    error: str

    def __str__(self):
        return f"Could not {self.action} {self.snapshot}: {self.error}"


__all__ = [
    "G10K_DEBUG_MANAGER",
    "G10K_DEBUG_COMMAND",
    "G10K_DEBUG_MOUNTS",
    "G10K_DEBUG_STORAGE",
    "G10K_DEBUG_ALL",
    "G10K_SUBSYSTEM_MANAGER",
    "G10K_SUBSYSTEM_COMMAND",
    "G10K_SUBSYSTEM_MOUNTS",
    "G10K_SUBSYSTEM_STORAGE",
    "G10K_CALLOUT_TIMEOUT",
    "DEFAULT_DATASET_NAME",
    "DEFAULT_G10K_MOUNT",
    "DEFAULT_MOUNT_POINT",
    "DEFAULT_OWNER",
    "DEFAULT_GROUP",
    "SNAPSHOT_SEPARATOR",
    "TIMESTAMP_LABEL_FORMAT",
    "SLOT_A",
    "SLOT_B",
    # Debug logging
    "SubsystemFilter",
    "mask_to_subsystems",
    "set_debug_mask",
    "get_debug_mask",
    # Exceptions
    "G10kError",
    "G10kSystemError",
    "G10kCalloutError",
    "G10kNotFoundError",
    "G10kConfigError",
    "VolumeErrorKind",
    "G10kVolumeError",
    "G10kSnapshotError",
    "G10kExistsError",
    "G10kStateError",
    "G10kMountError",
    "G10kUmountError",
    # Naming helpers
    "format_snapshot_name",
    "parse_snapshot_name",
    "is_timestamp_label",
    "parse_timestamp_label",
    # Data model
    "Volume",
    "Snapshot",
    "MountBinding",
    "RetentionWarning",
]

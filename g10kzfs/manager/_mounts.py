# Copyright Red Hat
#
# g10kzfs/manager/_mounts.py - g10kzfs mount support
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount table integration and publication of snapshots at the published path.
"""
from subprocess import run, CalledProcessError, TimeoutExpired
from typing import Callable, Iterator, List, Optional
import collections
import logging
import os.path
import os
import re

from g10kzfs import (
    G10K_CALLOUT_TIMEOUT,
    G10K_SUBSYSTEM_MOUNTS,
    G10kCalloutError,
    G10kMountError,
    G10kUmountError,
    MountBinding,
    format_snapshot_name,
)

from ._signals import suspend_signals

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_mounts(msg, *args, **kwargs):
    """A wrapper for mounts subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MOUNTS}, **kwargs)


#: Path to /proc/self/mounts
PROC_MOUNTS = "/proc/self/mounts"

#: File system type used to mount snapshots.
SNAPSHOT_FSTYPE = "zfs"

#: Mount options used to mount snapshots.
SNAPSHOT_MOUNT_OPTIONS = "defaults"

#: Maximum number of stacked mounts peeled from the published path.
MAX_UNBIND_DEPTH = 16

#: Octal escapes used by the kernel for whitespace and backslash.
_MOUNTS_ESCAPE_RE = re.compile(r"\\([0-7]{3})")


def _unescape(field: str) -> str:
    """
    Decode the octal escapes (``\\040`` etc.) used in /proc/self/mounts.
    """
    return _MOUNTS_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), field)


def _mount(what: str, where: str, fstype: Optional[str] = None,
           options: str = "defaults"):
    """
    Call the mount program to mount a file system.

    :param what: The source for the mount operation.
    :param where: The path to the mount point.
    :param fstype: An optional file system type.
    :param options: Options to pass to the mount program.
    """
    mount_cmd = ["mount"]
    if fstype:
        mount_cmd.extend(["--types", fstype])
    mount_cmd.extend(["--options", options, what, where])
    _log_debug_mounts("Calling %s", " ".join(mount_cmd))

    try:
        run(
            mount_cmd,
            check=True,
            capture_output=True,
            encoding="utf8",
            timeout=G10K_CALLOUT_TIMEOUT,
        )
    except TimeoutExpired as err:
        raise G10kCalloutError(
            f"Timed out calling mount for {what} -> {where}: {err}"
        ) from err
    except CalledProcessError as err:
        raise G10kMountError(what, where, err.returncode, err.stderr) from err


def _umount(where: str):
    """
    Call the umount program to unmount a file system.

    :param where: The mount point to be unmounted.
    """
    umount_cmd = ["umount", where]
    _log_debug_mounts("Calling %s", " ".join(umount_cmd))
    try:
        run(
            umount_cmd,
            check=True,
            capture_output=True,
            encoding="utf8",
            timeout=G10K_CALLOUT_TIMEOUT,
        )
    except TimeoutExpired as err:
        raise G10kCalloutError(f"Timed out calling umount for {where}: {err}") from err
    except CalledProcessError as err:
        raise G10kUmountError(where, err.returncode, err.stderr) from err


class ProcMountsReader:
    """Reader for /proc/mounts format files."""

    # Define a named tuple to give structure to each /proc/mounts entry.
    MountsEntry = collections.namedtuple(
        "MountsEntry", ["what", "where", "fstype", "options", "freq", "passno"]
    )

    def __init__(self, path=PROC_MOUNTS):
        """Initialize with the path to a mounts file.

        :param path: Path to the mounts file (e.g., '/proc/self/mounts')
        """
        self.path = path

    def entries(self) -> Iterator["ProcMountsReader.MountsEntry"]:
        """Iterate over all entries in mount order.

        :returns: Yields ``MountsEntry`` objects with unescaped ``what`` and
                  ``where`` fields.
        """
        with open(self.path, "r", encoding="utf8") as fp:
            for line in fp:
                line = line.strip()
                if not line:
                    continue

                parts = line.split()
                if len(parts) == 6:
                    entry = self.MountsEntry(*parts)
                    yield entry._replace(
                        what=_unescape(entry.what), where=_unescape(entry.where)
                    )
                else:
                    _log_warn("Skipping malformed %s line: %s", self.path, line)


class MountTable:
    """
    The mount-table collaborator: answers who is mounted where and performs
    mount and unmount operations.
    """

    def __init__(self, mounts_path: str = PROC_MOUNTS):
        self.reader = ProcMountsReader(path=mounts_path)

    def source_of(self, where: str) -> Optional[str]:
        """
        Return the source of the topmost mount at ``where``.

        :param where: The mount point to examine.
        :returns: The mount source, or ``None`` if nothing is mounted there.
        """
        where = os.path.normpath(where)
        source = None
        for entry in self.reader.entries():
            if os.path.normpath(entry.where) == where:
                source = entry.what
        return source

    def is_mounted(self, where: str) -> bool:
        """
        Test whether anything is mounted at ``where``.
        """
        return self.source_of(where) is not None

    def mount_points_of(self, what: str) -> List[str]:
        """
        Return every path at which ``what`` is mounted, in mount order.

        :param what: The mount source, for e.g. ``tank/g10k@A``.
        """
        return [entry.where for entry in self.reader.entries() if entry.what == what]

    def mount(self, what: str, where: str, fstype: Optional[str] = None,
              options: str = "defaults"):
        """
        Mount ``what`` at ``where``.

        :raises: ``G10kMountError`` if the mount program fails.
        """
        _mount(what, where, fstype=fstype, options=options)
        _log_info("Mounted %s on %s", what, where)

    def umount(self, where: str):
        """
        Unmount the topmost mount at ``where``.

        :raises: ``G10kUmountError`` if the umount program fails.
        """
        _umount(where)
        _log_info("Unmounted %s", where)


class MountSwitcher:
    """
    Moves the published path from whatever is mounted there to a snapshot:
    unbind first, then bind, never reordered.
    """

    def __init__(self, mount_table: MountTable, max_depth: int = MAX_UNBIND_DEPTH):
        self.mount_table = mount_table
        self.max_depth = max_depth

    def binding(self, path: str) -> MountBinding:
        """
        Return the current ``MountBinding`` for ``path``.
        """
        return MountBinding(path, self.mount_table.source_of(path))

    def unbind(self, path: str) -> int:
        """
        Unmount everything stacked at ``path``.

        :param path: The published path.
        :returns: The number of mounts removed.
        :raises: ``G10kUmountError`` if an unmount fails or the path is still
                 mounted after ``max_depth`` unmounts.
        """
        peeled = 0
        while self.mount_table.is_mounted(path):
            if peeled >= self.max_depth:
                raise G10kUmountError(
                    path, -1, f"still mounted after {peeled} unmounts"
                )
            _log_debug_mounts(
                "Unbinding %s from %s", self.mount_table.source_of(path), path
            )
            self.mount_table.umount(path)
            peeled += 1
        return peeled

    def bind(self, path: str, volume_id: str, label: str) -> MountBinding:
        """
        Mount the snapshot ``volume_id@label`` at ``path``.

        :raises: ``G10kMountError`` if the mount fails. The path is left
                 unbound in this case.
        """
        what = format_snapshot_name(volume_id, label)
        if not os.path.isdir(path):
            try:
                os.makedirs(path, mode=0o755, exist_ok=True)
            except OSError as err:
                raise G10kMountError(what, path, -1, str(err)) from err
        self.mount_table.mount(
            what, path, fstype=SNAPSHOT_FSTYPE, options=SNAPSHOT_MOUNT_OPTIONS
        )
        return MountBinding(path, what)

    @suspend_signals
    def switch_to(self, path: str, volume_id: str, label: str,
                  on_unbound: Optional[Callable[[], None]] = None) -> MountBinding:
        """
        Unbind ``path`` and bind ``volume_id@label`` in its place, with
        termination signals held off for the whole switch.

        :param path: The published path.
        :param volume_id: The dataset the snapshot belongs to.
        :param label: The label of the snapshot to publish.
        :param on_unbound: Optional callable invoked between the unbind and
                           the bind.
        :returns: The new ``MountBinding``.
        """
        self.unbind(path)
        if on_unbound:
            on_unbound()
        return self.bind(path, volume_id, label)


__all__ = [
    "PROC_MOUNTS",
    "ProcMountsReader",
    "MountTable",
    "MountSwitcher",
]

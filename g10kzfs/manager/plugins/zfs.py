# Copyright Red Hat
#
# g10kzfs/manager/plugins/zfs.py - g10kzfs ZFS storage provider
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
ZFS storage provider
"""
from subprocess import run, CalledProcessError, TimeoutExpired
from os import environ
from shutil import which

from g10kzfs import (
    G10K_CALLOUT_TIMEOUT,
    G10K_SUBSYSTEM_STORAGE,
    G10kCalloutError,
    G10kExistsError,
    G10kNotFoundError,
    G10kSnapshotError,
    format_snapshot_name,
    parse_snapshot_name,
)
from g10kzfs.manager.plugins import StorageProvider

# Main zfs executable
ZFS_CMD = "zfs"

# zfs subcommands
ZFS_LIST = "list"
ZFS_CREATE = "create"
ZFS_SNAPSHOT = "snapshot"
ZFS_DESTROY = "destroy"
ZFS_MOUNT = "mount"
ZFS_GET = "get"
ZFS_SET = "set"

# zfs list options
ZFS_NO_HEADERS = "-H"
ZFS_OUTPUT = "-o"
ZFS_NAME = "name"
ZFS_VALUE = "value"

# zfs dataset properties
ZFS_PROP_MOUNTPOINT = "mountpoint"

# zfs create options
ZFS_PROPERTY = "-o"
ZFS_TYPE = "-t"
ZFS_TYPE_SNAPSHOT = "snapshot"
ZFS_DEPTH = "-d"
ZFS_DEPTH_CHILDREN = "1"

# zfs destroy options
ZFS_FORCE_UMOUNT = "-f"

# zfs error message fragments (LC_ALL=C)
_ZFS_ERR_EXISTS = "dataset already exists"
_ZFS_ERR_NOENT = "dataset does not exist"
_ZFS_ERR_NO_SNAPSHOTS = "could not find any snapshots to destroy"
_ZFS_ERR_MOUNTED = "filesystem already mounted"

_ZFS_CMDS = [ZFS_CMD]

# Environment variables that alter zfs(8) output.
_ZFS_ENV_FILTER = [
    "ZFS_COLOR",
    "ZFS_ABORT",
    "ZFS_SET_PIPE_MAX",
]


def _decode_stderr(err):
    """
    Decode and strip the stderr member of a ``CalledProcessError`` and
    return the result as a string.

    :param err: A ``CalledProcessError`` like exception.
    :returns: A stripped string representation of the exception's stderr
              member.
    """
    if err.stderr is None:
        return ""
    return err.stderr.decode("utf8").strip()


def _check_zfs_present():
    """
    Check for the presence of the zfs command.

    :raises: ``G10kNotFoundError`` if the zfs command is not found.
    """
    if not all(which(cmd) for cmd in _ZFS_CMDS):
        raise G10kNotFoundError("ZFS commands not found")


class ZfsProvider(StorageProvider):
    """
    Storage provider for ZFS datasets and snapshots.
    """

    name = "zfs"
    version = "0.1.0"

    def _sanitize_environment(self):
        env = environ.copy()
        for var in _ZFS_ENV_FILTER:
            if var in env:
                env.pop(var)
        return env

    def __init__(self, logger):
        super().__init__(logger)

        # Sanitize environment for zfs callouts.
        self._env = self._sanitize_environment()

        # Export LC_ALL=C so that error messages can be matched.
        self._env["LC_ALL"] = "C"

        _check_zfs_present()

    def _log_debug_storage(self, msg, *args):
        self.logger.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_STORAGE})

    def _run(self, zfs_cmd):
        """
        Run ``zfs_cmd`` with the sanitized environment and callout timeout.

        :param zfs_cmd: The argument vector to run.
        :returns: The ``CompletedProcess`` for the command.
        :raises: ``CalledProcessError`` if the command fails, or
                 ``G10kCalloutError`` if it times out.
        """
        self._log_debug_storage("Calling %s", " ".join(zfs_cmd))
        try:
            return run(
                zfs_cmd,
                capture_output=True,
                check=True,
                env=self._env,
                timeout=G10K_CALLOUT_TIMEOUT,
            )
        except TimeoutExpired as err:
            raise G10kCalloutError(
                f"Timed out calling {' '.join(zfs_cmd)}: {err}"
            ) from err

    def dataset_exists(self, volume_id):
        zfs_cmd = [ZFS_CMD, ZFS_LIST, ZFS_NO_HEADERS, ZFS_OUTPUT, ZFS_NAME, volume_id]
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            stderr = _decode_stderr(err)
            if _ZFS_ERR_NOENT in stderr:
                return False
            raise G10kCalloutError(f"{ZFS_CMD} {ZFS_LIST} failed with: {stderr}") from err
        return True

    def create_filesystem(self, volume_id, mount_point):
        zfs_cmd = [
            ZFS_CMD,
            ZFS_CREATE,
            ZFS_PROPERTY,
            f"{ZFS_PROP_MOUNTPOINT}={mount_point}",
            volume_id,
        ]
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            raise G10kCalloutError(
                f"{ZFS_CMD} {ZFS_CREATE} failed with: {_decode_stderr(err)}"
            ) from err
        self._log_info("Created dataset %s mounted at %s", volume_id, mount_point)

    def get_mount_point(self, volume_id):
        zfs_cmd = [
            ZFS_CMD,
            ZFS_GET,
            ZFS_NO_HEADERS,
            ZFS_OUTPUT,
            ZFS_VALUE,
            ZFS_PROP_MOUNTPOINT,
            volume_id,
        ]
        try:
            zfs_get = self._run(zfs_cmd)
        except CalledProcessError as err:
            raise G10kCalloutError(
                f"{ZFS_CMD} {ZFS_GET} failed with: {_decode_stderr(err)}"
            ) from err
        return zfs_get.stdout.decode("utf8").strip()

    def set_mount_point(self, volume_id, mount_point):
        zfs_cmd = [ZFS_CMD, ZFS_SET, f"{ZFS_PROP_MOUNTPOINT}={mount_point}", volume_id]
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            raise G10kCalloutError(
                f"{ZFS_CMD} {ZFS_SET} failed with: {_decode_stderr(err)}"
            ) from err
        self._log_info("Set mount point of %s to %s", volume_id, mount_point)

    def list_snapshots(self, volume_id):
        zfs_cmd = [
            ZFS_CMD,
            ZFS_LIST,
            ZFS_NO_HEADERS,
            ZFS_TYPE,
            ZFS_TYPE_SNAPSHOT,
            ZFS_DEPTH,
            ZFS_DEPTH_CHILDREN,
            ZFS_OUTPUT,
            ZFS_NAME,
            volume_id,
        ]
        try:
            zfs_list = self._run(zfs_cmd)
        except CalledProcessError as err:
            stderr = _decode_stderr(err)
            if _ZFS_ERR_NOENT in stderr:
                return []
            raise G10kCalloutError(f"{ZFS_CMD} {ZFS_LIST} failed with: {stderr}") from err

        labels = []
        for line in zfs_list.stdout.decode("utf8").splitlines():
            line = line.strip()
            if not line:
                continue
            parsed = parse_snapshot_name(line)
            if parsed is None:
                self._log_warn("Skipping malformed snapshot name: %s", line)
                continue
            (dataset, label) = parsed
            # Guard against listings that include other datasets' snapshots.
            if dataset != volume_id:
                continue
            labels.append(label)
        self._log_debug_storage("Found %d snapshots of %s", len(labels), volume_id)
        return labels

    def create_snapshot(self, volume_id, label):
        snapshot_name = format_snapshot_name(volume_id, label)
        zfs_cmd = [ZFS_CMD, ZFS_SNAPSHOT, snapshot_name]
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            stderr = _decode_stderr(err)
            if _ZFS_ERR_EXISTS in stderr:
                raise G10kExistsError(
                    f"Snapshot {snapshot_name} already exists"
                ) from err
            raise G10kSnapshotError(
                f"{ZFS_CMD} {ZFS_SNAPSHOT} failed with: {stderr}"
            ) from err
        self._log_info("Created snapshot %s", snapshot_name)

    def destroy_snapshot(self, volume_id, label, force_umount=False):
        snapshot_name = format_snapshot_name(volume_id, label)
        zfs_cmd = [ZFS_CMD, ZFS_DESTROY]
        if force_umount:
            zfs_cmd.append(ZFS_FORCE_UMOUNT)
        zfs_cmd.append(snapshot_name)
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            stderr = _decode_stderr(err)
            if _ZFS_ERR_NOENT in stderr or _ZFS_ERR_NO_SNAPSHOTS in stderr:
                self._log_debug_storage("Snapshot %s already absent", snapshot_name)
                return False
            raise G10kCalloutError(
                f"{ZFS_CMD} {ZFS_DESTROY} failed with: {stderr}"
            ) from err
        self._log_info("Destroyed snapshot %s", snapshot_name)
        return True

    def mount_default(self, volume_id):
        zfs_cmd = [ZFS_CMD, ZFS_MOUNT, volume_id]
        try:
            self._run(zfs_cmd)
        except CalledProcessError as err:
            stderr = _decode_stderr(err)
            if _ZFS_ERR_MOUNTED in stderr:
                self._log_debug_storage("Dataset %s already mounted", volume_id)
                return
            raise G10kCalloutError(
                f"{ZFS_CMD} {ZFS_MOUNT} failed with: {stderr}"
            ) from err


__all__ = [
    "ZfsProvider",
]

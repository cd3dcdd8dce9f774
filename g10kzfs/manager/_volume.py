# Copyright Red Hat
#
# g10kzfs/manager/_volume.py - g10kzfs backing volume lifecycle
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Create and mount the backing volume when needed.
"""
import logging
import os.path
import os

from g10kzfs import (
    G10K_SUBSYSTEM_MANAGER,
    G10kError,
    G10kVolumeError,
    Volume,
    VolumeErrorKind,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


#: File mode for the canonical mount point directory.
_MOUNT_POINT_MODE = 0o755


class VolumeLifecycle:
    """
    Brings the backing volume to the state "exists and mounted at its
    canonical mount point". Every step is idempotent.
    """

    def __init__(self, storage, mount_table):
        self.storage = storage
        self.mount_table = mount_table

    def _ensure_exists(self, volume: Volume) -> bool:
        """
        Create ``volume`` if it does not exist.

        :returns: ``True`` if the dataset was created by this call.
        """
        try:
            if self.storage.dataset_exists(volume.id):
                _log_info("Dataset %s exists", volume.id)
                return False
            self.storage.create_filesystem(volume.id, volume.mount_point)
        except G10kError as err:
            raise G10kVolumeError(VolumeErrorKind.CREATE, str(err)) from err
        return True

    def _ensure_mount_property(self, volume: Volume):
        try:
            current = self.storage.get_mount_point(volume.id)
            if os.path.normpath(current) == os.path.normpath(volume.mount_point):
                _log_info("Dataset %s mount point is %s", volume.id, current)
                return
            self.storage.set_mount_point(volume.id, volume.mount_point)
        except G10kError as err:
            raise G10kVolumeError(VolumeErrorKind.MOUNT, str(err)) from err
        _log_info(
            "Moved dataset %s mount point from %s to %s",
            volume.id,
            current,
            volume.mount_point,
        )

    def _ensure_mount_point(self, volume: Volume):
        path = volume.mount_point
        if os.path.exists(path) and not os.path.isdir(path):
            raise G10kVolumeError(
                VolumeErrorKind.PATH_SETUP, f"{path} exists and is not a directory"
            )
        if os.path.isdir(path):
            _log_debug_manager("Mount point %s exists", path)
            return
        try:
            os.makedirs(path, mode=_MOUNT_POINT_MODE, exist_ok=True)
        except OSError as err:
            raise G10kVolumeError(
                VolumeErrorKind.PATH_SETUP, f"Could not create {path}: {err}"
            ) from err
        _log_info("Created mount point %s", path)

    def _ensure_mounted(self, volume: Volume):
        if self.mount_table.source_of(volume.mount_point) == volume.id:
            _log_info("%s is already mounted on %s", volume.id, volume.mount_point)
            return
        try:
            self.storage.mount_default(volume.id)
        except G10kError as err:
            raise G10kVolumeError(VolumeErrorKind.MOUNT, str(err)) from err
        _log_info("Mounted %s on %s", volume.id, volume.mount_point)

    def ensure(self, volume: Volume):
        """
        Make sure ``volume`` exists, has a mount point directory, has its
        mount point property set to that directory and is mounted there.

        :param volume: The ``Volume`` to prepare.
        :raises: ``G10kVolumeError`` with the ``VolumeErrorKind`` of the step
                 that failed.
        """
        self._ensure_mount_point(volume)
        if not self._ensure_exists(volume):
            self._ensure_mount_property(volume)
        self._ensure_mounted(volume)


__all__ = [
    "VolumeLifecycle",
]

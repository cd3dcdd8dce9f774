# Copyright Red Hat
#
# g10kzfs/manager/_retention.py - g10kzfs snapshot retention
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Release and destroy snapshots that are no longer published.
"""
from typing import List, Tuple
import logging

from g10kzfs import (
    G10K_SUBSYSTEM_MANAGER,
    G10kError,
    RetentionWarning,
    Volume,
    format_snapshot_name,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


#: Retention actions reported in ``RetentionWarning`` records.
ACTION_UMOUNT = "umount"
ACTION_DESTROY = "destroy"


class RetentionEnforcer:
    """
    Destroys stale snapshots, always unmounting them first.
    """

    def __init__(self, storage, mount_table):
        """
        Initialise a new ``RetentionEnforcer``.

        :param storage: The ``StorageProvider`` used to destroy snapshots.
        :param mount_table: The ``MountTable`` used to find and remove the
                            mounts of stale snapshots.
        """
        self.storage = storage
        self.mount_table = mount_table

    def _release(self, name: str):
        """
        Unmount every live mount of the snapshot ``name``.

        :raises: ``G10kError`` if an unmount fails.
        """
        for mount_point in reversed(self.mount_table.mount_points_of(name)):
            _log_debug_manager("Releasing %s from %s", name, mount_point)
            self.mount_table.umount(mount_point)

    def sweep(self, policy, inventory,
              label: str) -> Tuple[List[str], List[RetentionWarning]]:
        """
        Release and destroy every snapshot that ``policy`` considers stale
        now that ``label`` is published.

        Failures are recorded per snapshot and never abort the sweep. A
        snapshot that could not be unmounted is not destroyed.

        :param policy: The active ``RotationPolicy``.
        :param inventory: The ``Inventory`` scanned before the switch.
        :param label: The label of the newly published snapshot.
        :returns: A tuple of the destroyed snapshot names and the list of
                  ``RetentionWarning`` records.
        """
        destroyed = []
        warnings = []
        for snapshot in policy.stale(inventory, label):
            try:
                self._release(snapshot.name)
            except G10kError as err:
                warning = RetentionWarning(snapshot.name, ACTION_UMOUNT, str(err))
                _log_warn("%s", warning)
                warnings.append(warning)
                continue
            try:
                self.storage.destroy_snapshot(
                    snapshot.volume_id, snapshot.label, force_umount=True
                )
            except G10kError as err:
                warning = RetentionWarning(snapshot.name, ACTION_DESTROY, str(err))
                _log_warn("%s", warning)
                warnings.append(warning)
                continue
            _log_info("Removed stale snapshot %s", snapshot.name)
            destroyed.append(snapshot.name)
        return (destroyed, warnings)

    def purge(self, volume: Volume, labels: List[str]) -> List[str]:
        """
        Release and destroy the snapshots of ``volume`` labelled ``labels``.
        Already absent snapshots are skipped.

        Unlike ``sweep()`` every failure is fatal.

        :param volume: The ``Volume`` the snapshots belong to.
        :param labels: The labels to destroy, in order.
        :returns: The names of the snapshots that were destroyed.
        :raises: ``G10kError`` if any unmount or destroy fails.
        """
        destroyed = []
        for label in labels:
            name = format_snapshot_name(volume.id, label)
            self._release(name)
            if self.storage.destroy_snapshot(volume.id, label, force_umount=True):
                _log_info("Purged snapshot %s", name)
                destroyed.append(name)
            else:
                _log_debug_manager("Snapshot %s already absent", name)
        return destroyed


__all__ = [
    "ACTION_UMOUNT",
    "ACTION_DESTROY",
    "RetentionEnforcer",
]

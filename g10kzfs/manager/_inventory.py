# Copyright Red Hat
#
# g10kzfs/manager/_inventory.py - g10kzfs snapshot inventory
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Read-only inventory of the snapshots managed by a rotation policy.
"""
from typing import List, Optional
from datetime import datetime
import logging

from g10kzfs import (
    G10K_SUBSYSTEM_MANAGER,
    MountBinding,
    Snapshot,
    Volume,
    format_snapshot_name,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


def _sort_key(snapshot: Snapshot):
    # Dated labels in creation order, anything else by label.
    return (snapshot.created_at or datetime.min, snapshot.label)


class Inventory:
    """
    The snapshots of a volume owned by the active rotation policy, together
    with the current binding of the published path.
    """

    def __init__(self, volume: Volume, snapshots: List[Snapshot],
                 binding: MountBinding):
        self.volume = volume
        self.snapshots = sorted(snapshots, key=_sort_key)
        self.binding = binding

    def __str__(self):
        snaps = ", ".join(snap.label for snap in self.snapshots) or "none"
        return f"{self.volume.id}: {snaps} ({self.binding})"

    def __repr__(self):
        return (
            f"Inventory({self.volume!r}, {self.snapshots!r}, {self.binding!r})"
        )

    def __len__(self):
        return len(self.snapshots)

    @property
    def labels(self) -> List[str]:
        """
        The labels of all inventoried snapshots.
        """
        return [snap.label for snap in self.snapshots]

    def get(self, label: str) -> Optional[Snapshot]:
        """
        Return the snapshot labelled ``label`` or ``None``.
        """
        for snap in self.snapshots:
            if snap.label == label:
                return snap
        return None

    def present(self, label: str) -> bool:
        """
        Test whether a snapshot labelled ``label`` exists.
        """
        return self.get(label) is not None

    @property
    def bound_label(self) -> Optional[str]:
        """
        The label of the inventoried snapshot bound at the published path, or
        ``None`` if the path is unbound or bound to something else.
        """
        for snap in self.snapshots:
            if snap.bound:
                return snap.label
        return None


def scan(volume: Volume, policy, published_path: str, storage,
         mount_table) -> Inventory:
    """
    Build an ``Inventory`` of the snapshots of ``volume`` owned by ``policy``.

    This is a pure read of the storage provider and mount table.

    :param volume: The ``Volume`` to inventory.
    :param policy: The active ``RotationPolicy``.
    :param published_path: The path at which snapshots are published.
    :param storage: The ``StorageProvider`` to list snapshots with.
    :param mount_table: The ``MountTable`` to look up mounts in.
    :returns: A new ``Inventory``.
    """
    binding = MountBinding(published_path, mount_table.source_of(published_path))
    snapshots = []
    for label in storage.list_snapshots(volume.id):
        if not policy.owns(label):
            _log_debug_manager(
                "Ignoring snapshot %s not owned by %s policy",
                format_snapshot_name(volume.id, label),
                policy.name,
            )
            continue
        snapshot = Snapshot(volume.id, label)
        snapshot.mount_points = mount_table.mount_points_of(snapshot.name)
        snapshot.bound = binding.is_bound_to(snapshot)
        snapshots.append(snapshot)

    inventory = Inventory(volume, snapshots, binding)
    _log_debug_manager("Scanned inventory %s", inventory)
    return inventory


__all__ = [
    "Inventory",
    "scan",
]

# Copyright Red Hat
#
# tests/__init__.py - g10kzfs test package
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
import logging
import os
import time

from g10kzfs import (
    G10kCalloutError,
    G10kExistsError,
    G10kMountError,
    G10kUmountError,
    format_snapshot_name,
)
from g10kzfs.manager import MountTable
import g10kzfs.manager.plugins as plugins

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
log.addHandler(file_handler)
log.addHandler(console_handler)

os.environ["TZ"] = "UTC"
time.tzset()


class MockArgs(object):
    debug = None
    verbose = 0
    version = False
    build = False
    pool = None
    mountpoint = None
    g10k_mount = None
    dataset = None
    policy = None
    owner = None
    group = None
    fix_owner = False
    config = None


class FakeMountTable(MountTable):
    """
    In-memory mount table. Mounts are kept as a stack of ``(what, where)``
    pairs in mount order, and every mount and umount is appended to
    ``journal``.
    """
    def __init__(self, journal=None):
        self.mounts = []
        self.journal = journal if journal is not None else []
        self.fail_mount = set()
        self.fail_umount = set()

    def source_of(self, where):
        source = None
        for (what, path) in self.mounts:
            if path == where:
                source = what
        return source

    def is_mounted(self, where):
        return self.source_of(where) is not None

    def mount_points_of(self, what):
        return [path for (source, path) in self.mounts if source == what]

    def mount(self, what, where, fstype=None, options="defaults"):
        if where in self.fail_mount:
            raise G10kMountError(what, where, 32, "mount failed")
        self.journal.append(("mount", what, where))
        self.mounts.append((what, where))

    def umount(self, where):
        if where in self.fail_umount:
            raise G10kUmountError(where, 32, "target is busy")
        for index in range(len(self.mounts) - 1, -1, -1):
            if self.mounts[index][1] == where:
                self.journal.append(("umount", self.mounts[index][0], where))
                del self.mounts[index]
                return
        raise G10kUmountError(where, 32, "not mounted")


class FakeStorage(plugins.StorageProvider):
    """
    In-memory storage provider sharing a journal with a ``FakeMountTable``.

    Each ``destroy`` journal entry records whether the snapshot was still
    mounted when it was destroyed. ``mount_points`` gives the mount point
    property of datasets; unset datasets default to ``/<volume_id>`` and
    newly created datasets are mounted immediately, like zfs(8).
    """
    def __init__(self, mount_table, mount_points=None):
        super().__init__(log)
        self.mount_table = mount_table
        self.journal = mount_table.journal
        self.datasets = set()
        self.snapshots = {}
        self.mount_points = dict(mount_points or {})
        self.fail = set()

    def _check_fail(self, op):
        if op in self.fail:
            raise G10kCalloutError(f"zfs {op} failed with: injected failure")

    def dataset_exists(self, volume_id):
        return volume_id in self.datasets

    def create_filesystem(self, volume_id, mount_point):
        self._check_fail("create")
        self.journal.append(("create", volume_id))
        self.datasets.add(volume_id)
        self.snapshots.setdefault(volume_id, [])
        self.mount_points[volume_id] = mount_point
        self.mount_table.mount(volume_id, mount_point, fstype="zfs")

    def get_mount_point(self, volume_id):
        self._check_fail("get")
        return self.mount_points.get(volume_id, "/" + volume_id)

    def set_mount_point(self, volume_id, mount_point):
        self._check_fail("set")
        self.journal.append(("set", volume_id, mount_point))
        self.mount_points[volume_id] = mount_point
        mounted = self.mount_table.mount_points_of(volume_id)
        for where in reversed(mounted):
            self.mount_table.umount(where)
        if mounted:
            self.mount_table.mount(volume_id, mount_point, fstype="zfs")

    def list_snapshots(self, volume_id):
        self._check_fail("list")
        return list(self.snapshots.get(volume_id, []))

    def create_snapshot(self, volume_id, label):
        self._check_fail("snapshot")
        labels = self.snapshots.setdefault(volume_id, [])
        if label in labels:
            raise G10kExistsError(
                f"Snapshot {format_snapshot_name(volume_id, label)} already exists"
            )
        self.journal.append(("snapshot", format_snapshot_name(volume_id, label)))
        labels.append(label)

    def destroy_snapshot(self, volume_id, label, force_umount=False):
        self._check_fail("destroy")
        labels = self.snapshots.get(volume_id, [])
        if label not in labels:
            return False
        name = format_snapshot_name(volume_id, label)
        mounted = bool(self.mount_table.mount_points_of(name))
        if mounted and not force_umount:
            raise G10kCalloutError(f"cannot destroy '{name}': dataset is busy")
        self.journal.append(("destroy", name, mounted))
        labels.remove(label)
        return True

    def mount_default(self, volume_id):
        self._check_fail("mount")
        if self.mount_table.mount_points_of(volume_id):
            return
        self.mount_table.mount(volume_id, self.get_mount_point(volume_id), fstype="zfs")


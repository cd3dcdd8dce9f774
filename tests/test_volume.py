# Copyright Red Hat
#
# tests/test_volume.py - Volume lifecycle tests
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
from subprocess import CalledProcessError, CompletedProcess
from unittest.mock import patch
import unittest
import logging
import tempfile
import os.path
import os

log = logging.getLogger()

import g10kzfs
from g10kzfs import VolumeErrorKind
from g10kzfs.manager import VolumeLifecycle
from g10kzfs.manager.plugins.zfs import ZfsProvider

from tests import FakeMountTable, FakeStorage


class VolumeLifecycleTests(unittest.TestCase):
    """
    Tests for ``VolumeLifecycle.ensure()``.
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.tmpdir = tempfile.TemporaryDirectory(prefix="g10kzfs-volume-")
        self.addCleanup(self.tmpdir.cleanup)
        self.mount_point = os.path.join(self.tmpdir.name, "g10k")
        self.volume = g10kzfs.Volume("tank", mount_point=self.mount_point)
        self.table = FakeMountTable()
        self.storage = FakeStorage(
            self.table, mount_points={self.volume.id: self.mount_point}
        )
        self.lifecycle = VolumeLifecycle(self.storage, self.table)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_ensure_fresh(self):
        self.lifecycle.ensure(self.volume)
        self.assertIn(self.volume.id, self.storage.datasets)
        self.assertTrue(os.path.isdir(self.mount_point))
        self.assertEqual(self.table.source_of(self.mount_point), "tank/g10k")
        self.assertEqual(
            self.table.journal,
            [
                ("create", "tank/g10k"),
                ("mount", "tank/g10k", self.mount_point),
            ],
        )

    def test_ensure_mount_point_mode(self):
        self.lifecycle.ensure(self.volume)
        mode = os.stat(self.mount_point).st_mode & 0o777
        # The process umask may clear bits but never adds them.
        self.assertEqual(mode & ~0o755, 0)

    def test_ensure_idempotent(self):
        self.lifecycle.ensure(self.volume)
        journal = list(self.table.journal)
        self.lifecycle.ensure(self.volume)
        self.assertEqual(self.table.journal, journal)

    def test_ensure_existing_unmounted(self):
        self.storage.datasets.add(self.volume.id)
        os.mkdir(self.mount_point)
        self.lifecycle.ensure(self.volume)
        self.assertEqual(
            self.table.journal, [("mount", "tank/g10k", self.mount_point)]
        )

    def test_ensure_create_failure(self):
        self.storage.fail.add("create")
        with self.assertRaises(g10kzfs.G10kVolumeError) as cm:
            self.lifecycle.ensure(self.volume)
        self.assertEqual(cm.exception.kind, VolumeErrorKind.CREATE)

    def test_ensure_mount_point_not_directory(self):
        with open(self.mount_point, "w", encoding="utf8") as fp:
            fp.write("not a directory")
        with self.assertRaises(g10kzfs.G10kVolumeError) as cm:
            self.lifecycle.ensure(self.volume)
        self.assertEqual(cm.exception.kind, VolumeErrorKind.PATH_SETUP)

    def test_ensure_mount_point_parent_not_directory(self):
        parent = os.path.join(self.tmpdir.name, "file")
        with open(parent, "w", encoding="utf8") as fp:
            fp.write("x")
        volume = g10kzfs.Volume("tank", mount_point=os.path.join(parent, "g10k"))
        with self.assertRaises(g10kzfs.G10kVolumeError) as cm:
            self.lifecycle.ensure(volume)
        self.assertEqual(cm.exception.kind, VolumeErrorKind.PATH_SETUP)

    def test_ensure_existing_moves_mount_point(self):
        self.storage.datasets.add(self.volume.id)
        self.storage.mount_points[self.volume.id] = "/tank/g10k"
        self.table.mount("tank/g10k", "/tank/g10k")
        mark = len(self.table.journal)
        self.lifecycle.ensure(self.volume)
        self.assertEqual(
            self.table.journal[mark:],
            [
                ("set", "tank/g10k", self.mount_point),
                ("umount", "tank/g10k", "/tank/g10k"),
                ("mount", "tank/g10k", self.mount_point),
            ],
        )
        self.assertEqual(self.table.source_of(self.mount_point), "tank/g10k")
        self.assertEqual(self.table.mount_points_of("tank/g10k"), [self.mount_point])

        # Converged: a second pass changes nothing.
        journal = list(self.table.journal)
        self.lifecycle.ensure(self.volume)
        self.assertEqual(self.table.journal, journal)

    def test_ensure_set_mount_point_failure(self):
        self.storage.datasets.add(self.volume.id)
        self.storage.mount_points[self.volume.id] = "/tank/g10k"
        self.storage.fail.add("set")
        with self.assertRaises(g10kzfs.G10kVolumeError) as cm:
            self.lifecycle.ensure(self.volume)
        self.assertEqual(cm.exception.kind, VolumeErrorKind.MOUNT)

    def test_ensure_mount_failure(self):
        self.storage.datasets.add(self.volume.id)
        self.storage.fail.add("mount")
        with self.assertRaises(g10kzfs.G10kVolumeError) as cm:
            self.lifecycle.ensure(self.volume)
        self.assertEqual(cm.exception.kind, VolumeErrorKind.MOUNT)
        self.assertIn("injected failure", str(cm.exception))


class ZfsVolumeLifecycleTests(unittest.TestCase):
    """
    Tests for ``VolumeLifecycle.ensure()`` driving the zfs(8) provider.
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.tmpdir = tempfile.TemporaryDirectory(prefix="g10kzfs-volume-")
        self.addCleanup(self.tmpdir.cleanup)
        self.mount_point = os.path.join(self.tmpdir.name, "g10k")
        self.volume = g10kzfs.Volume("tank", mount_point=self.mount_point)
        which_patcher = patch("g10kzfs.manager.plugins.zfs.which", return_value="/sbin/zfs")
        which_patcher.start()
        self.addCleanup(which_patcher.stop)
        run_patcher = patch("g10kzfs.manager.plugins.zfs.run")
        self.mock_run = run_patcher.start()
        self.addCleanup(run_patcher.stop)
        self.table = FakeMountTable()
        self.lifecycle = VolumeLifecycle(ZfsProvider(log), self.table)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def _calls(self):
        return [call[0][0] for call in self.mock_run.call_args_list]

    def test_ensure_fresh_creates_at_mount_point(self):
        def _run(cmd, **_kwargs):
            if cmd[1] == "list":
                raise CalledProcessError(
                    1, cmd, output=b"", stderr=b"cannot open 'tank/g10k': dataset does not exist\n"
                )
            return CompletedProcess(cmd, 0, stdout=b"", stderr=b"")
        self.mock_run.side_effect = _run
        self.lifecycle.ensure(self.volume)
        self.assertEqual(
            self._calls(),
            [
                ["zfs", "list", "-H", "-o", "name", "tank/g10k"],
                ["zfs", "create", "-o", f"mountpoint={self.mount_point}", "tank/g10k"],
                ["zfs", "mount", "tank/g10k"],
            ],
        )

    def test_ensure_existing_converges_mount_point(self):
        def _run(cmd, **_kwargs):
            stdout = b"/tank/g10k\n" if cmd[1] == "get" else b""
            return CompletedProcess(cmd, 0, stdout=stdout, stderr=b"")
        self.mock_run.side_effect = _run
        self.lifecycle.ensure(self.volume)
        self.assertEqual(
            self._calls(),
            [
                ["zfs", "list", "-H", "-o", "name", "tank/g10k"],
                ["zfs", "get", "-H", "-o", "value", "mountpoint", "tank/g10k"],
                ["zfs", "set", f"mountpoint={self.mount_point}", "tank/g10k"],
                ["zfs", "mount", "tank/g10k"],
            ],
        )

    def test_ensure_already_mounted_dataset(self):
        self.table.mount("tank/g10k", self.mount_point)

        def _run(cmd, **_kwargs):
            stdout = f"{self.mount_point}\n".encode("utf8") if cmd[1] == "get" else b""
            return CompletedProcess(cmd, 0, stdout=stdout, stderr=b"")
        self.mock_run.side_effect = _run
        self.lifecycle.ensure(self.volume)
        self.assertEqual(
            self._calls(),
            [
                ["zfs", "list", "-H", "-o", "name", "tank/g10k"],
                ["zfs", "get", "-H", "-o", "value", "mountpoint", "tank/g10k"],
            ],
        )

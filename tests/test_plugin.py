# Copyright Red Hat
#
# tests/test_plugin.py - Storage provider base class tests
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import logging

log = logging.getLogger()

from g10kzfs.manager.plugins import StorageProvider


class StorageProviderTests(unittest.TestCase):
    """
    Test the abstract storage provider interface.
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.provider = StorageProvider(log)

    def test_info(self):
        self.assertEqual(self.provider.info(), {"name": "storage", "version": "0.1.0"})

    def test_abstract_methods_raise(self):
        calls = [
            lambda: self.provider.dataset_exists("tank/g10k"),
            lambda: self.provider.create_filesystem("tank/g10k", "/g10k"),
            lambda: self.provider.get_mount_point("tank/g10k"),
            lambda: self.provider.set_mount_point("tank/g10k", "/g10k"),
            lambda: self.provider.list_snapshots("tank/g10k"),
            lambda: self.provider.create_snapshot("tank/g10k", "A"),
            lambda: self.provider.destroy_snapshot("tank/g10k", "A"),
            lambda: self.provider.mount_default("tank/g10k"),
        ]
        for call in calls:
            with self.assertRaises(NotImplementedError):
                call()

    def test_log_helpers(self):
        with self.assertLogs(log, level="DEBUG") as cm:
            self.provider._log_debug("debug %s", 1)
            self.provider._log_info("info")
            self.provider._log_warn("warn")
            self.provider._log_error("error")
        self.assertEqual(len(cm.output), 4)

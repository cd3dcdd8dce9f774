# Copyright Red Hat
#
# tests/test_rotation.py - Rotation policy tests
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
from datetime import datetime
import unittest
import logging

log = logging.getLogger()

import g10kzfs
from g10kzfs.manager import (
    AlternatePolicy,
    Inventory,
    RotationPolicyType,
    TimestampPolicy,
    next_label,
    rotation_policy,
)

_TS_OLD = "Date-01-Jan-2024_Time-00.00.00"
_TS_NEW = "Date-02-Jan-2024_Time-12.30.45"


def _inventory(*labels, bound=None):
    volume = g10kzfs.Volume("tank")
    snapshots = [
        g10kzfs.Snapshot(volume.id, label, bound=(label == bound)) for label in labels
    ]
    source = g10kzfs.format_snapshot_name(volume.id, bound) if bound else None
    return Inventory(volume, snapshots, g10kzfs.MountBinding("/etc/puppetlabs/code", source))


class RotationPolicyTests(unittest.TestCase):
    """
    Tests for rotation policy selection and naming.
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def test_rotation_policy_by_name(self):
        self.assertIsInstance(rotation_policy("timestamp"), TimestampPolicy)
        self.assertIsInstance(rotation_policy(" Alternate "), AlternatePolicy)
        self.assertIsInstance(rotation_policy(RotationPolicyType.ALTERNATE), AlternatePolicy)

    def test_rotation_policy_bad_name(self):
        with self.assertRaises(g10kzfs.G10kConfigError):
            rotation_policy("hourly")

    def test_policy_name_and_eq(self):
        policy = rotation_policy("alternate")
        self.assertEqual(policy.name, "alternate")
        self.assertEqual(str(policy), "alternate")
        self.assertEqual(policy, AlternatePolicy())
        self.assertNotEqual(policy, TimestampPolicy())

    def test_timestamp_owns(self):
        policy = TimestampPolicy()
        self.assertTrue(policy.owns(_TS_OLD))
        self.assertTrue(policy.owns("Date-19-Oct-2026_Time-9.5.3"))
        self.assertFalse(policy.owns("A"))
        self.assertFalse(policy.owns("manual-backup"))

    def test_alternate_owns(self):
        policy = AlternatePolicy()
        self.assertTrue(policy.owns("A"))
        self.assertTrue(policy.owns("B"))
        self.assertFalse(policy.owns("C"))
        self.assertFalse(policy.owns(_TS_OLD))

    def test_timestamp_next_label(self):
        now = datetime(2024, 1, 2, 12, 30, 45)
        label = next_label(TimestampPolicy(), _inventory(_TS_OLD), now=now)
        self.assertEqual(label, _TS_NEW)

    def test_timestamp_next_label_sortable_fields_padded(self):
        now = datetime(2024, 3, 5, 7, 8, 9)
        label = TimestampPolicy().next_label(_inventory(), now=now)
        self.assertEqual(label, "Date-05-Mar-2024_Time-07.08.09")

    def test_timestamp_next_label_defaults_to_now(self):
        label = TimestampPolicy().next_label(_inventory())
        self.assertTrue(g10kzfs.is_timestamp_label(label))

    def test_timestamp_collision_raises(self):
        now = datetime(2024, 1, 2, 12, 30, 45)
        with self.assertRaises(g10kzfs.G10kExistsError):
            TimestampPolicy().next_label(_inventory(_TS_NEW), now=now)

    def test_alternate_decision_table(self):
        policy = AlternatePolicy()
        cases = [
            ((), "A"),
            (("B",), "A"),
            (("A",), "B"),
            (("A", "B"), "A"),
        ]
        for labels, xlabel in cases:
            with self.subTest(labels=labels):
                self.assertEqual(policy.next_label(_inventory(*labels)), xlabel)

    def test_alternate_anomaly(self):
        policy = AlternatePolicy()
        self.assertTrue(policy.is_anomalous(_inventory("A", "B")))
        self.assertFalse(policy.is_anomalous(_inventory("A")))
        self.assertEqual(policy.recovery_labels(_inventory("A", "B")), ["A", "B"])

    def test_timestamp_never_anomalous(self):
        policy = TimestampPolicy()
        self.assertFalse(policy.is_anomalous(_inventory(_TS_OLD, _TS_NEW)))
        self.assertEqual(policy.recovery_labels(_inventory(_TS_OLD)), [])

    def test_stale_excludes_new_label(self):
        inventory = _inventory(_TS_OLD, "Date-01-Feb-2024_Time-00.00.00")
        stale = TimestampPolicy().stale(inventory, _TS_NEW)
        self.assertEqual([snap.label for snap in stale], [_TS_OLD, "Date-01-Feb-2024_Time-00.00.00"])

    def test_stale_alternate_other_slot(self):
        stale = AlternatePolicy().stale(_inventory("A", bound="A"), "B")
        self.assertEqual([snap.name for snap in stale], ["tank/g10k@A"])
        self.assertEqual(AlternatePolicy().stale(_inventory(), "A"), [])

# Copyright Red Hat
#
# g10kzfs/manager/_rotation.py - g10kzfs snapshot rotation policies
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot rotation policies and snapshot naming.
"""
from typing import List, Optional, Union
from datetime import datetime
from enum import Enum
import logging

from g10kzfs import (
    G10K_SUBSYSTEM_MANAGER,
    TIMESTAMP_LABEL_FORMAT,
    SLOT_A,
    SLOT_B,
    G10kConfigError,
    G10kExistsError,
    Snapshot,
    is_timestamp_label,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


class RotationPolicyType(Enum):
    """
    Snapshot rotation policy types enum.
    """

    TIMESTAMP = "timestamp"
    ALTERNATE = "alternate"


class RotationPolicy:
    """
    Abstract base class for snapshot rotation policies.

    A policy decides which snapshot labels it owns, what the next snapshot
    is called, and which owned snapshots become stale once a new snapshot
    has been published.
    """

    _type: RotationPolicyType = None

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __eq__(self, other):
        return isinstance(other, RotationPolicy) and self.type == other.type

    @property
    def type(self) -> RotationPolicyType:
        """
        The ``RotationPolicyType`` of this policy.
        """
        return self._type

    @property
    def name(self) -> str:
        """
        The name of this policy as used in configuration files and on the
        command line.
        """
        return self._type.value

    def owns(self, label: str) -> bool:
        """
        Test whether snapshots labelled ``label`` are managed by this policy.

        :param label: A snapshot label.
        :returns: ``True`` if the label belongs to this policy.
        """
        raise NotImplementedError

    def next_label(self, inventory, now: Optional[datetime] = None) -> str:
        """
        Return the label of the snapshot to create in this run.

        :param inventory: The ``Inventory`` of owned snapshots.
        :param now: The current time, used by time based policies.
        :returns: The new snapshot label.
        """
        raise NotImplementedError

    def is_anomalous(self, inventory) -> bool:
        """
        Test whether ``inventory`` is in a state this policy cannot name
        from without recovery.
        """
        return False

    def recovery_labels(self, inventory) -> List[str]:
        """
        Return the labels to destroy to recover from an anomalous inventory.
        """
        return []

    def stale(self, inventory, label: str) -> List[Snapshot]:
        """
        Return the owned snapshots that are stale once ``label`` has been
        published: every snapshot in ``inventory`` except ``label`` itself.

        :param inventory: The ``Inventory`` scanned before the switch.
        :param label: The label of the newly published snapshot.
        :returns: A list of ``Snapshot`` objects to release and destroy.
        """
        stale = [snap for snap in inventory.snapshots if snap.label != label]
        _log_debug_manager(
            "%s stale snapshots: %s",
            repr(self),
            ", ".join(snap.name for snap in stale) or "none",
        )
        return stale


class TimestampPolicy(RotationPolicy):
    """
    Monotonic timestamp policy: every run creates a freshly dated snapshot
    and every older dated snapshot is destroyed after the switch.
    """

    _type = RotationPolicyType.TIMESTAMP

    def owns(self, label: str) -> bool:
        return is_timestamp_label(label)

    def next_label(self, inventory, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        label = now.strftime(TIMESTAMP_LABEL_FORMAT)
        if inventory.present(label):
            raise G10kExistsError(
                f"Snapshot label {label} already exists for {inventory.volume.id}"
            )
        return label


class AlternatePolicy(RotationPolicy):
    """
    Two slot policy: snapshots are labelled ``A`` and ``B`` and each run
    uses the slot that is not currently present.

    ======= ======= ======
    A       B       next
    ======= ======= ======
    absent  absent  A
    absent  present A
    present absent  B
    present present A (after recovery)
    ======= ======= ======
    """

    _type = RotationPolicyType.ALTERNATE

    def owns(self, label: str) -> bool:
        return label in (SLOT_A, SLOT_B)

    def next_label(self, inventory, now: Optional[datetime] = None) -> str:
        if inventory.present(SLOT_A) and not inventory.present(SLOT_B):
            return SLOT_B
        return SLOT_A

    def is_anomalous(self, inventory) -> bool:
        return inventory.present(SLOT_A) and inventory.present(SLOT_B)

    def recovery_labels(self, inventory) -> List[str]:
        return [SLOT_A, SLOT_B]


_TYPE_MAP = {
    RotationPolicyType.TIMESTAMP: TimestampPolicy,
    RotationPolicyType.ALTERNATE: AlternatePolicy,
}


def rotation_policy(policy: Union[str, RotationPolicyType]) -> RotationPolicy:
    """
    Return a ``RotationPolicy`` instance for ``policy``.

    :param policy: A ``RotationPolicyType`` or its name.
    :returns: An instance of the matching ``RotationPolicy`` subclass.
    :raises: ``G10kConfigError`` if ``policy`` is not a known policy.
    """
    if isinstance(policy, str):
        try:
            policy = RotationPolicyType(policy.strip().lower())
        except ValueError as err:
            raise G10kConfigError(
                f"Invalid rotation policy: {policy} (expected one of: "
                + ", ".join(ptype.value for ptype in RotationPolicyType)
                + ")"
            ) from err
    if policy not in _TYPE_MAP:
        raise G10kConfigError(f"Invalid RotationPolicyType: {policy}")
    return _TYPE_MAP[policy]()


def next_label(policy: RotationPolicy, inventory,
               now: Optional[datetime] = None) -> str:
    """
    Name the next snapshot for ``inventory`` according to ``policy``.
    """
    label = policy.next_label(inventory, now=now)
    _log_debug_manager("%s named next snapshot %s", repr(policy), label)
    return label


__all__ = [
    "RotationPolicyType",
    "RotationPolicy",
    "TimestampPolicy",
    "AlternatePolicy",
    "rotation_policy",
    "next_label",
]

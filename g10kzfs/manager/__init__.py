# Copyright Red Hat
#
# g10kzfs/manager/__init__.py - g10kzfs rotation manager
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top level interface to the g10kzfs rotation manager.
"""

from ._manager import (  # noqa: F401
    G10K_CFG_PATH,
    G10kConfig,
    Manager,
    RunResult,
    RunState,
)
from ._inventory import Inventory, scan
from ._mounts import MountSwitcher, MountTable, ProcMountsReader
from ._retention import RetentionEnforcer
from ._rotation import (
    AlternatePolicy,
    RotationPolicy,
    RotationPolicyType,
    TimestampPolicy,
    next_label,
    rotation_policy,
)
from ._volume import VolumeLifecycle

__all__ = [
    "G10K_CFG_PATH",
    "G10kConfig",
    "Manager",
    "RunResult",
    "RunState",
    "Inventory",
    "scan",
    "MountSwitcher",
    "MountTable",
    "ProcMountsReader",
    "RetentionEnforcer",
    "AlternatePolicy",
    "RotationPolicy",
    "RotationPolicyType",
    "TimestampPolicy",
    "next_label",
    "rotation_policy",
    "VolumeLifecycle",
]

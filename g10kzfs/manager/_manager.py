# Copyright Red Hat
#
# g10kzfs/manager/_manager.py - g10kzfs rotation manager
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Manager interface: configuration and the snapshot rotation state machine.
"""
from dataclasses import dataclass, field, replace
from configparser import ConfigParser, Error as ConfigParserError
from datetime import datetime
from os.path import exists, join
from typing import List, Optional
from enum import Enum
import logging

from g10kzfs import (
    G10K_SUBSYSTEM_MANAGER,
    DEFAULT_DATASET_NAME,
    DEFAULT_G10K_MOUNT,
    DEFAULT_MOUNT_POINT,
    DEFAULT_OWNER,
    DEFAULT_GROUP,
    G10kError,
    G10kConfigError,
    G10kSnapshotError,
    G10kStateError,
    MountBinding,
    RetentionWarning,
    Snapshot,
    Volume,
)

from ._inventory import Inventory, scan
from ._mounts import MountTable, MountSwitcher
from ._ownership import check_owner, fix_ownership
from ._retention import RetentionEnforcer
from ._rotation import RotationPolicyType, rotation_policy, next_label
from ._volume import VolumeLifecycle
from .plugins.zfs import ZfsProvider

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


#: Base directory for g10kzfs configuration
_G10K_CFG_DIR = "/etc/g10k-zfs"

#: Main configuration file path
G10K_CFG_PATH = join(_G10K_CFG_DIR, "g10k-zfs.conf")

#: Main configuration file section
_G10K_CFG_GLOBAL = "Global"

# Configuration keys
_G10K_CFG_POLICY = "Policy"
_G10K_CFG_MOUNT_POINT = "MountPoint"
_G10K_CFG_G10K_MOUNT = "G10kMount"
_G10K_CFG_DATASET = "Dataset"
_G10K_CFG_OWNER = "Owner"
_G10K_CFG_GROUP = "Group"
_G10K_CFG_FIX_OWNER = "FixOwner"


@dataclass
class G10kConfig:
    """
    Manager configuration.
    """

    pool: str = ""
    policy: str = RotationPolicyType.TIMESTAMP.value
    mount_point: str = DEFAULT_MOUNT_POINT
    g10k_mount: str = DEFAULT_G10K_MOUNT
    dataset: str = DEFAULT_DATASET_NAME
    owner: Optional[str] = None
    group: Optional[str] = None
    fix_owner: bool = False
    debug: int = 0

    @classmethod
    def from_file(cls, config_file: str) -> "G10kConfig":
        """
        Load ``G10kConfig`` from an INI-style configuration file located at
        ``config_file``. A missing file yields the default configuration.

        :param config_file: path to g10k-zfs.conf
        :type config_file: ``str``.
        :returns: A ``G10kConfig`` instance initialised from ``config_file``.
        :rtype: ``G10kConfig``
        :raises: ``G10kConfigError`` if the file cannot be parsed.
        """
        if not exists(config_file):
            return G10kConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise G10kConfigError(
                f"Error parsing configuration file '{config_file}': {err}"
            ) from err

        values = {}
        if cfg.has_section(_G10K_CFG_GLOBAL):
            section = cfg[_G10K_CFG_GLOBAL]
            for key, attr in (
                (_G10K_CFG_POLICY, "policy"),
                (_G10K_CFG_MOUNT_POINT, "mount_point"),
                (_G10K_CFG_G10K_MOUNT, "g10k_mount"),
                (_G10K_CFG_DATASET, "dataset"),
                (_G10K_CFG_OWNER, "owner"),
                (_G10K_CFG_GROUP, "group"),
            ):
                if cfg.has_option(_G10K_CFG_GLOBAL, key):
                    values[attr] = section[key].strip()
            if cfg.has_option(_G10K_CFG_GLOBAL, _G10K_CFG_FIX_OWNER):
                try:
                    values["fix_owner"] = section.getboolean(_G10K_CFG_FIX_OWNER)
                except ValueError as err:
                    raise G10kConfigError(
                        f"Invalid {_G10K_CFG_FIX_OWNER} value in '{config_file}': "
                        f"{section[_G10K_CFG_FIX_OWNER]}"
                    ) from err

        return G10kConfig(**values)

    def merge(self, **overrides) -> "G10kConfig":
        """
        Return a copy of this ``G10kConfig`` with every override that is not
        ``None`` applied.
        """
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> "G10kConfig":
        """
        Check this configuration for invalid values and combinations.

        :returns: A validated copy with ownership defaults filled in.
        :raises: ``G10kConfigError`` if the configuration is invalid.
        """
        if not self.pool:
            raise G10kConfigError("A pool name is required")
        # Raises G10kConfigError for unknown policies.
        rotation_policy(self.policy)
        if not self.fix_owner:
            if self.owner is not None or self.group is not None:
                raise G10kConfigError(
                    "Setting the owner or group requires the fix-owner option"
                )
            return replace(self)
        return replace(
            self,
            owner=self.owner or DEFAULT_OWNER,
            group=self.group or DEFAULT_GROUP,
        )


class RunState(Enum):
    """
    States of a single rotation run, in the order they are reached.
    """

    INIT = "Init"
    VOLUME_READY = "VolumeReady"
    INVENTORIED = "Inventoried"
    NAMED = "Named"
    SNAPSHOT_CREATED = "SnapshotCreated"
    UNBOUND = "Unbound"
    BOUND = "Bound"
    SWEPT = "Swept"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class RunResult:
    """
    The outcome of a rotation run.
    """

    state: RunState = RunState.INIT
    snapshot: Optional[Snapshot] = None
    binding: Optional[MountBinding] = None
    destroyed: List[str] = field(default_factory=list)
    warnings: List[RetentionWarning] = field(default_factory=list)


class Manager:
    """
    g10kzfs high level interface: publishes a fresh snapshot of the g10k
    volume at the published path on every ``run()``.
    """

    def __init__(self, config: G10kConfig, storage=None, mount_table=None):
        """
        Initialise a new ``Manager``.

        :param config: The ``G10kConfig`` for this deployment.
        :param storage: The ``StorageProvider`` to use. Defaults to a new
                        ``ZfsProvider``.
        :param mount_table: The ``MountTable`` to use. Defaults to one backed
                            by /proc/self/mounts.
        :raises: ``G10kConfigError`` if ``config`` is invalid.
        """
        self.config = config.validate()
        if self.config.fix_owner:
            check_owner(self.config.owner, self.config.group)

        if storage is None:
            storage = ZfsProvider(_log)

        self.storage = storage
        self.mount_table = mount_table or MountTable()
        self.volume = Volume(
            self.config.pool,
            name=self.config.dataset,
            mount_point=self.config.g10k_mount,
        )
        self.published_path = self.config.mount_point
        self.policy = rotation_policy(self.config.policy)

        self.lifecycle = VolumeLifecycle(self.storage, self.mount_table)
        self.switcher = MountSwitcher(self.mount_table)
        self.retention = RetentionEnforcer(self.storage, self.mount_table)

        self.state = RunState.INIT
        #: The last state reached before a failure.
        self.failed_after: Optional[RunState] = None

        _log_debug_manager(
            "Initialised manager for %s (policy=%s, path=%s)",
            self.volume.id,
            self.policy.name,
            self.published_path,
        )

    def _transition(self, state: RunState):
        _log_debug_manager("State %s -> %s", self.state.name, state.name)
        self.state = state

    def _scan(self) -> Inventory:
        return scan(
            self.volume,
            self.policy,
            self.published_path,
            self.storage,
            self.mount_table,
        )

    def _recover(self, inventory: Inventory) -> Inventory:
        """
        Bring an anomalous inventory back to a state the policy can name
        from: unbind the published path, destroy the recovery labels and
        re-scan.

        :raises: ``G10kStateError`` if the anomaly persists.
        """
        labels = self.policy.recovery_labels(inventory)
        _log_warn(
            "Found snapshots %s of %s together: recovering",
            ", ".join(labels),
            self.volume.id,
        )
        self.switcher.unbind(self.published_path)
        self.retention.purge(self.volume, labels)
        inventory = self._scan()
        if self.policy.is_anomalous(inventory):
            raise G10kStateError(
                f"Could not recover {self.volume.id}: {inventory}"
            )
        return inventory

    def _create_snapshot(self, label: str) -> Snapshot:
        try:
            self.storage.create_snapshot(self.volume.id, label)
        except G10kSnapshotError:
            raise
        except G10kError as err:
            raise G10kSnapshotError(
                f"Could not create snapshot {self.volume.id}@{label}: {err}"
            ) from err
        return Snapshot(self.volume.id, label)

    def _run(self, result: RunResult, now: Optional[datetime]):
        self.lifecycle.ensure(self.volume)
        self._transition(RunState.VOLUME_READY)

        if self.config.fix_owner:
            fix_ownership(self.volume.mount_point, self.config.owner, self.config.group)

        inventory = self._scan()
        self._transition(RunState.INVENTORIED)

        if self.policy.is_anomalous(inventory):
            inventory = self._recover(inventory)
        label = next_label(self.policy, inventory, now=now)
        self._transition(RunState.NAMED)

        snapshot = self._create_snapshot(label)
        result.snapshot = snapshot
        self._transition(RunState.SNAPSHOT_CREATED)

        result.binding = self.switcher.switch_to(
            self.published_path,
            self.volume.id,
            label,
            on_unbound=lambda: self._transition(RunState.UNBOUND),
        )
        snapshot.mount_points = [self.published_path]
        snapshot.bound = True
        self._transition(RunState.BOUND)
        _log_info("Published %s at %s", snapshot.name, self.published_path)

        (result.destroyed, result.warnings) = self.retention.sweep(
            self.policy, inventory, label
        )
        self._transition(RunState.SWEPT)
        if result.warnings:
            _log_warn(
                "Retention left %d stale snapshot(s) for the next run",
                len(result.warnings),
            )

        self._transition(RunState.DONE)

    def run(self, now: Optional[datetime] = None) -> RunResult:
        """
        Run one rotation: prepare the volume, name and create the next
        snapshot, publish it, then remove stale snapshots.

        :param now: The time used to name timestamp snapshots. Defaults to
                    the current time.
        :returns: A ``RunResult`` describing the run.
        :raises: ``G10kError`` for any fatal failure. ``failed_after`` holds
                 the last state reached.
        """
        self.state = RunState.INIT
        self.failed_after = None
        result = RunResult()
        try:
            self._run(result, now)
        except G10kError as err:
            self.failed_after = self.state
            self._transition(RunState.FAILED)
            _log_debug_manager(
                "Run failed after %s: %s", self.failed_after.name, err
            )
            raise
        finally:
            result.state = self.state
        return result


__all__ = [
    "G10K_CFG_PATH",
    "G10kConfig",
    "RunState",
    "RunResult",
    "Manager",
]

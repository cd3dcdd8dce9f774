# Copyright Red Hat
#
# g10kzfs/manager/plugins/_plugin.py - g10kzfs storage provider base
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Storage provider plugin base class.
"""
from typing import List


class StorageProvider:
    """
    Abstract base class for storage providers: the subsystem that creates,
    snapshots, destroys and mounts datasets.
    """

    name = "storage"
    version = "0.1.0"

    def __init__(self, logger):
        self.logger = logger

    def _log_error(self, *args):
        """
        Log at error level.
        """
        self.logger.error(*args)

    def _log_warn(self, *args):
        """
        Log at warning level.
        """
        self.logger.warning(*args)

    def _log_info(self, *args):
        """
        Log at info level.
        """
        self.logger.info(*args)

    def _log_debug(self, *args):
        """
        Log at debug level.
        """
        self.logger.debug(*args)

    def info(self):
        """
        Return provider name and version.
        """
        return {"name": self.name, "version": self.version}

    def dataset_exists(self, volume_id: str) -> bool:
        """
        Test whether the dataset ``volume_id`` exists.

        :param volume_id: The dataset name, for e.g. ``tank/g10k``.
        :returns: ``True`` if the dataset exists or ``False`` otherwise.
        """
        raise NotImplementedError

    def create_filesystem(self, volume_id: str, mount_point: str):
        """
        Create the file system dataset ``volume_id`` with its mount point
        property set to ``mount_point``.

        :param volume_id: The dataset name to create.
        :param mount_point: The path the dataset mounts at.
        """
        raise NotImplementedError

    def get_mount_point(self, volume_id: str) -> str:
        """
        Return the mount point property of ``volume_id``.

        :param volume_id: The dataset to query.
        """
        raise NotImplementedError

    def set_mount_point(self, volume_id: str, mount_point: str):
        """
        Set the mount point property of ``volume_id`` to ``mount_point``.
        A mounted dataset moves to the new path.

        :param volume_id: The dataset to modify.
        :param mount_point: The new mount point path.
        """
        raise NotImplementedError

    def list_snapshots(self, volume_id: str) -> List[str]:
        """
        Return the labels of all snapshots of ``volume_id``.

        :param volume_id: The dataset to list snapshots for.
        :returns: A list of snapshot labels (the part after '@'). An absent
                  dataset has no snapshots.
        """
        raise NotImplementedError

    def create_snapshot(self, volume_id: str, label: str):
        """
        Create the snapshot ``volume_id@label``.

        :param volume_id: The dataset to snapshot.
        :param label: The snapshot label.
        :raises: ``G10kExistsError`` if the snapshot already exists.
        """
        raise NotImplementedError

    def destroy_snapshot(self, volume_id: str, label: str, force_umount=False):
        """
        Destroy the snapshot ``volume_id@label``. Destroying a snapshot that
        does not exist is not an error.

        :param volume_id: The dataset the snapshot belongs to.
        :param label: The snapshot label.
        :param force_umount: Forcibly unmount the snapshot if it is mounted.
        :returns: ``True`` if a snapshot was destroyed or ``False`` if it
                  was already absent.
        """
        raise NotImplementedError

    def mount_default(self, volume_id: str):
        """
        Mount ``volume_id`` at its default (dataset property) mount point. A dataset
        that is already mounted is not an error.

        :param volume_id: The dataset to mount.
        """
        raise NotImplementedError


__all__ = [
    "StorageProvider",
]

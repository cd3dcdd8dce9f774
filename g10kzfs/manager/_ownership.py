# Copyright Red Hat
#
# g10kzfs/manager/_ownership.py - g10kzfs file ownership fix-up
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
File ownership checks and recursive ownership fix-up for the volume.
"""
from subprocess import run, CalledProcessError, TimeoutExpired
import logging
import grp
import pwd

from g10kzfs import (
    G10K_CALLOUT_TIMEOUT,
    G10K_SUBSYSTEM_MANAGER,
    G10kCalloutError,
    G10kConfigError,
)

_log = logging.getLogger(__name__)

_log_info = _log.info


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


CHOWN_CMD = "chown"
CHOWN_RECURSIVE = "-R"


def check_owner(user: str, group: str):
    """
    Check that ``user`` and ``group`` exist on this system.

    :param user: The user name.
    :param group: The group name.
    :raises: ``G10kConfigError`` if either does not exist.
    """
    try:
        pwd.getpwnam(user)
    except KeyError as err:
        raise G10kConfigError(f"Unknown user: {user}") from err
    try:
        grp.getgrnam(group)
    except KeyError as err:
        raise G10kConfigError(f"Unknown group: {group}") from err


def fix_ownership(path: str, user: str, group: str):
    """
    Recursively change the ownership of ``path`` to ``user:group``.

    :param path: The directory tree to change.
    :param user: The new owner.
    :param group: The new group.
    :raises: ``G10kCalloutError`` if chown fails or times out.
    """
    chown_cmd = [CHOWN_CMD, CHOWN_RECURSIVE, f"{user}:{group}", path]
    _log_debug_manager("Calling %s", " ".join(chown_cmd))
    try:
        run(
            chown_cmd,
            check=True,
            capture_output=True,
            encoding="utf8",
            timeout=G10K_CALLOUT_TIMEOUT,
        )
    except TimeoutExpired as err:
        raise G10kCalloutError(f"Timed out calling chown for {path}: {err}") from err
    except CalledProcessError as err:
        raise G10kCalloutError(
            f"{CHOWN_CMD} failed with: {err.stderr.strip()}"
        ) from err
    _log_info("Set ownership of %s to %s:%s", path, user, group)


__all__ = [
    "check_owner",
    "fix_ownership",
]

# Copyright Red Hat
#
# g10kzfs/command.py - g10kzfs command interface
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``g10kzfs.command`` module provides the g10k-zfs command line
interface: argument parsing, logging setup, and mapping of run failures
to exit status.

A run creates a new snapshot of ``<pool>/g10k``, publishes it at the
mount point used by Puppet Server, and removes the snapshots it replaced.
"""
from argparse import ArgumentParser
from os.path import basename
import platform
import logging
import sys
import os

from g10kzfs import (
    G10K_DEBUG_MANAGER,
    G10K_DEBUG_COMMAND,
    G10K_DEBUG_MOUNTS,
    G10K_DEBUG_STORAGE,
    G10K_DEBUG_ALL,
    G10K_SUBSYSTEM_COMMAND,
    DEFAULT_DATASET_NAME,
    DEFAULT_G10K_MOUNT,
    DEFAULT_MOUNT_POINT,
    G10kConfigError,
    G10kError,
    SubsystemFilter,
    get_debug_mask,
    set_debug_mask,
    __version__,
)
from g10kzfs.manager import (
    G10K_CFG_PATH,
    G10kConfig,
    Manager,
    RotationPolicyType,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.ERROR
_CONSOLE_HANDLER = None


def build_info():
    """
    Return a string describing this g10kzfs build.
    """
    return (
        f"g10k-zfs {__version__}\n"
        f"Python {platform.python_version()} "
        f"({platform.python_implementation()})\n"
        f"Platform {platform.platform()}"
    )


def config_from_args(cmd_args) -> G10kConfig:
    """
    Build a validated ``G10kConfig`` from the configuration file and the
    command line. Command line values override the file.

    :param cmd_args: The parsed command line arguments.
    :returns: A validated ``G10kConfig``.
    :raises: ``G10kConfigError`` if the resulting configuration is invalid.
    """
    config = G10kConfig.from_file(cmd_args.config or G10K_CFG_PATH)
    config = config.merge(
        pool=cmd_args.pool,
        policy=cmd_args.policy,
        mount_point=cmd_args.mountpoint,
        g10k_mount=cmd_args.g10k_mount,
        dataset=cmd_args.dataset,
        owner=cmd_args.owner,
        group=cmd_args.group,
        fix_owner=cmd_args.fix_owner or None,
        debug=get_debug_mask() or None,
    )
    return config.validate()


def rotate(config: G10kConfig) -> int:
    """
    Run one snapshot rotation for ``config``.

    :param config: The ``G10kConfig`` to run with.
    :returns: Exit status: 0 on success or 1 if the run failed.
    """
    manager = Manager(config)
    try:
        result = manager.run()
    except G10kError as err:
        _log_error(
            "Snapshot rotation failed after %s: %s", manager.failed_after.value, err
        )
        if config.debug:
            raise
        return 1
    _log_info(
        "Published %s at %s (%s)",
        result.snapshot.name,
        config.mount_point,
        ", ".join(result.destroyed) or "nothing removed",
    )
    for warning in result.warnings:
        _log_warn("%s", warning)
    return 0


def setup_logging(cmd_args):
    """
    Set up g10kzfs logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    g10k_log = logging.getLogger("g10kzfs")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    g10k_log.setLevel(level)
    if g10k_log.hasHandlers():
        g10k_log.handlers.clear()

    # Subsystem log filtering
    _g10k_subsystem_filter = SubsystemFilter("g10kzfs")

    # Main console handler
    _CONSOLE_HANDLER = logging.StreamHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_g10k_subsystem_filter)

    g10k_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down g10kzfs logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "manager": G10K_DEBUG_MANAGER,
        "command": G10K_DEBUG_COMMAND,
        "mounts": G10K_DEBUG_MOUNTS,
        "storage": G10K_DEBUG_STORAGE,
        "all": G10K_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _add_rotation_args(parser):
    parser.add_argument(
        "-p",
        "--pool",
        metavar="POOL",
        type=str,
        help="The ZFS pool holding the g10k dataset",
    )
    parser.add_argument(
        "-m",
        "--mountpoint",
        metavar="PATH",
        type=str,
        help=f"The path to publish snapshots at (default: {DEFAULT_MOUNT_POINT})",
    )
    parser.add_argument(
        "-g",
        "--g10k-mount",
        metavar="PATH",
        type=str,
        help=f"The mount point of the g10k dataset (default: {DEFAULT_G10K_MOUNT})",
    )
    parser.add_argument(
        "--dataset",
        metavar="NAME",
        type=str,
        help=f"The name of the dataset below the pool (default: {DEFAULT_DATASET_NAME})",
    )
    parser.add_argument(
        "-P",
        "--policy",
        type=str,
        choices=[ptype.value for ptype in RotationPolicyType],
        help="The snapshot rotation policy (default: timestamp)",
    )
    parser.add_argument(
        "-o",
        "--owner",
        metavar="USER",
        type=str,
        help="The user to own the g10k dataset files (requires --fix-owner)",
    )
    parser.add_argument(
        "-G",
        "--group",
        metavar="GROUP",
        type=str,
        help="The group to own the g10k dataset files (requires --fix-owner)",
    )
    parser.add_argument(
        "-f",
        "--fix-owner",
        action="store_true",
        help="Recursively set the ownership of the g10k dataset files",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=str,
        help=f"Path to the configuration file (default: {G10K_CFG_PATH})",
    )


def main(args):
    """
    Main entry point for g10k-zfs.
    """
    parser = ArgumentParser(
        description="Rotate and publish ZFS snapshots of the g10k dataset",
        prog=basename(args[0]),
    )

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of g10k-zfs",
        version=__version__,
    )
    parser.add_argument(
        "-b",
        "--build",
        action="store_true",
        help="Report the version and build information of g10k-zfs",
    )
    _add_rotation_args(parser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    if cmd_args.build:
        print(build_info())
        return 0

    setup_logging(cmd_args)

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if not cmd_args.pool:
        print("A pool name is required (--pool)")
        parser.print_help()
        return status

    try:
        config = config_from_args(cmd_args)
    except G10kConfigError as err:
        _log_error("Invalid configuration: %s", err)
        shutdown_logging()
        return status

    if os.geteuid() != 0:
        _log_error("g10k-zfs must be run as the root user")
        shutdown_logging()
        return status

    if cmd_args.debug:
        status = rotate(config)
    else:
        try:
            status = rotate(config)
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except G10kError as err:
            _log_error("Snapshot rotation failed: %s", err)

    shutdown_logging()
    return status


def console_main():
    """
    Console script entry point for g10k-zfs.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :

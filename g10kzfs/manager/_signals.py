# Copyright Red Hat
#
# g10kzfs/manager/_signals.py - g10kzfs signal handling
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Helpers for holding off termination signals while the published path is
being switched between snapshots.
"""
from signal import SIG_BLOCK, SIG_SETMASK, SIGINT, SIGTERM, pthread_sigmask
from contextlib import contextmanager
from functools import wraps
import logging

from g10kzfs import G10K_SUBSYSTEM_MANAGER

_log = logging.getLogger(__name__)


def _log_debug_manager(msg, *args, **kwargs):
    """A wrapper for manager subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": G10K_SUBSYSTEM_MANAGER}, **kwargs)


_to_block = {SIGINT, SIGTERM}


@contextmanager
def signals_suspended():
    """
    Context manager that blocks SIGINT and SIGTERM for the duration of the
    ``with`` block. The previous signal mask is restored on exit, which
    delivers any signal that arrived in the meantime.
    """
    _log_debug_manager("Blocking termination signals %s", _to_block)
    old_mask = pthread_sigmask(SIG_BLOCK, _to_block)
    try:
        yield
    finally:
        _log_debug_manager("Restoring signal mask")
        pthread_sigmask(SIG_SETMASK, old_mask)


def suspend_signals(func):
    """
    Decorator to wrap functions that implement a critical section.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        with signals_suspended():
            return func(*args, **kwargs)

    return wrapper


__all__ = [
    "signals_suspended",
    "suspend_signals",
]

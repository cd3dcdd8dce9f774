# Copyright Red Hat
#
# g10kzfs/__init__.py - g10k ZFS snapshot rotation package initialisation
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
g10kzfs top-level package.
"""
from ._g10kzfs import *  # noqa: F401, F403
from ._g10kzfs import __all__  # noqa: F401

__version__ = "0.1.0"

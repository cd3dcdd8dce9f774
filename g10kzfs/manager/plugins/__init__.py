# Copyright Red Hat
#
# g10kzfs/manager/plugins/__init__.py - g10kzfs storage providers
#
# This file is part of the g10kzfs project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Storage provider plugin interface.
"""
from ._plugin import *  # noqa: F401, F403
from ._plugin import __all__  # noqa: F401

# Copyright Red Hat
#
# mountctl/__init__.py - Mount controller package initialisation
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mountctl top-level package.
"""
from ._mountctl import *  # noqa: F401, F403
from ._mountctl import __all__  # noqa: F401

__version__ = "0.1.0"

# Copyright Red Hat
#
# mountctl/resource/__init__.py - Mount resource
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top level interface to the mount resource convergence engine.
"""

from ._backend import MountBackend
from ._probe import probe
from ._decide import ActionPlan, PlanOp, decide
from ._execute import execute
from ._linux import LinuxMountBackend
from ._controller import MountResource, select_backend

__all__ = [
    "MountBackend",
    "LinuxMountBackend",
    "MountResource",
    "ActionPlan",
    "PlanOp",
    "probe",
    "decide",
    "execute",
    "select_backend",
]

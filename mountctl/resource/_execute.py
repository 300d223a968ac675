# Copyright Red Hat
#
# mountctl/resource/_execute.py - Mount resource action executor
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Apply ``ActionPlan`` instances via a mount backend.
"""
import logging

from mountctl import MOUNTCTL_SUBSYSTEM_EXECUTE

from ._backend import MountBackend
from ._decide import ActionPlan, PlanOp

_log = logging.getLogger(__name__)

_log_info = _log.info
_log_warn = _log.warning


def _log_debug_execute(msg, *args, **kwargs):
    """A wrapper for execute subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": MOUNTCTL_SUBSYSTEM_EXECUTE}, **kwargs)


def _run_mount(backend: MountBackend, plan: ActionPlan) -> bool:
    return backend.mount(plan.device, plan.mount_point, plan.fstype, plan.options)


def _run_unmount(backend: MountBackend, plan: ActionPlan) -> bool:
    return backend.unmount(plan.mount_point)


def _run_remount(backend: MountBackend, plan: ActionPlan) -> bool:
    return backend.remount(plan.mount_point, plan.options)


def _run_write_registry(backend: MountBackend, plan: ActionPlan) -> bool:
    return backend.write_registry_entry(plan.mount_point, plan.entry)


def _run_remove_registry(backend: MountBackend, plan: ActionPlan) -> bool:
    return backend.remove_registry_entry(plan.mount_point)


_RUNNERS = {
    PlanOp.MOUNT: _run_mount,
    PlanOp.UNMOUNT: _run_unmount,
    PlanOp.REMOUNT: _run_remount,
    PlanOp.WRITE_REGISTRY: _run_write_registry,
    PlanOp.REMOVE_REGISTRY: _run_remove_registry,
}


def execute(backend: MountBackend, plan: ActionPlan) -> bool:
    """
    Run the backend operation described by ``plan``.

    The returned flag is the plan's ``updated`` value, downgraded to
    ``False`` if the backend reports that it was already in the target
    state. It is never upgraded.

    :param backend: The mount backend to act on.
    :param plan: The plan to apply.
    :returns: ``True`` if the backend state changed.
    :rtype: ``bool``
    :raises BackendActionError: If the backend operation fails.
    """
    if plan.is_noop:
        _log_debug_execute("Nothing to do for %s", plan.mount_point)
        return False

    _log_debug_execute("Running %s for %s", plan.op, plan.mount_point)
    changed = _RUNNERS[plan.op](backend, plan)

    if plan.updated and not changed:
        _log_warn(
            "Backend found %s already in target state for %s",
            plan.mount_point,
            plan.op,
        )
        return False

    if plan.updated:
        _log_info("Completed %s for %s", plan.op, plan.mount_point)
    return plan.updated


__all__ = [
    "execute",
]

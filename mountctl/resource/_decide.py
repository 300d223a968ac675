# Copyright Red Hat
#
# mountctl/resource/_decide.py - Mount resource convergence decisions
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Convergence decisions for mount resource actions.

Each action has exactly one decision function. A decision compares the
desired state against a freshly probed current state and returns a single
``ActionPlan``: the backend operation to run, if any, and whether running
it changes the system.

Mounting and enabling are independent: ``mount``, ``umount`` and
``remount`` act on the live mount table only, while ``enable`` and
``disable`` act on the persistent registry only.
"""
from dataclasses import dataclass
from typing import Optional, Tuple
from enum import Enum
import logging

from mountctl import (
    MOUNTCTL_SUBSYSTEM_DECIDE,
    UnsupportedActionError,
    Action,
    RegistryEntry,
    CurrentState,
    DesiredState,
)

_log = logging.getLogger(__name__)

_log_info = _log.info


def _log_debug_decide(msg, *args, **kwargs):
    """A wrapper for decide subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": MOUNTCTL_SUBSYSTEM_DECIDE}, **kwargs)


class PlanOp(Enum):
    """
    Enum class representing the backend operation an ``ActionPlan`` runs.
    """

    NOOP = "noop"
    MOUNT = "mount"
    UNMOUNT = "unmount"
    REMOUNT = "remount"
    WRITE_REGISTRY = "write registry entry"
    REMOVE_REGISTRY = "remove registry entry"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ActionPlan:
    """
    The outcome of a convergence decision: one backend operation and the
    expected value of the updated flag.
    """

    op: PlanOp
    mount_point: str
    updated: bool = False
    device: Optional[str] = None
    fstype: Optional[str] = None
    options: Tuple[str, ...] = ()
    entry: Optional[RegistryEntry] = None

    @classmethod
    def noop(cls, mount_point: str) -> "ActionPlan":
        """
        Return a plan that leaves ``mount_point`` untouched.
        """
        return cls(PlanOp.NOOP, mount_point)

    @property
    def is_noop(self) -> bool:
        """
        ``True`` if this plan makes no backend call.
        """
        return self.op == PlanOp.NOOP


def _entry_drift(desired: DesiredState, current: CurrentState):
    """
    Return a list of the registry fields of ``current`` that differ from
    ``desired``.
    """
    entry = current.entry
    drift = []
    if current.registered_options != desired.option_set:
        drift.append("options")
    if entry is None:
        return drift
    if entry.device != desired.device_spec:
        drift.append("device")
    if entry.fstype != desired.fstype:
        drift.append("fstype")
    if entry.dump != desired.dump:
        drift.append("dump")
    if entry.passno != desired.passno:
        drift.append("passno")
    return drift


def decide_mount(desired: DesiredState, current: CurrentState) -> ActionPlan:
    """
    Decide the ``mount`` action: mount unless already mounted.
    """
    if current.mounted:
        _log_info("%s is already mounted", desired.mount_point)
        return ActionPlan.noop(desired.mount_point)
    return ActionPlan(
        PlanOp.MOUNT,
        desired.mount_point,
        updated=True,
        device=desired.device_spec,
        fstype=desired.fstype,
        options=desired.options,
    )


def decide_umount(desired: DesiredState, current: CurrentState) -> ActionPlan:
    """
    Decide the ``umount`` action: unmount if mounted.
    """
    if not current.mounted:
        _log_info("%s is not mounted", desired.mount_point)
        return ActionPlan.noop(desired.mount_point)
    return ActionPlan(PlanOp.UNMOUNT, desired.mount_point, updated=True)


def decide_remount(desired: DesiredState, current: CurrentState) -> ActionPlan:
    """
    Decide the ``remount`` action.

    Remounting requires explicit support from the resource and only applies
    to a mounted file system. A mounted file system is always remounted,
    even if its options are unchanged.

    :raises UnsupportedActionError: If ``desired`` does not support
                                    remounting.
    """
    if not desired.supports_remount:
        raise UnsupportedActionError(
            f"Remount is not supported for {desired.mount_point}"
        )
    if not current.mounted:
        _log_info("%s is not mounted: not remounting", desired.mount_point)
        return ActionPlan.noop(desired.mount_point)
    return ActionPlan(
        PlanOp.REMOUNT,
        desired.mount_point,
        updated=True,
        options=desired.options,
    )


def decide_enable(desired: DesiredState, current: CurrentState) -> ActionPlan:
    """
    Decide the ``enable`` action: write the registry entry if it is missing
    or has drifted from the desired state.
    """
    plan = ActionPlan(
        PlanOp.WRITE_REGISTRY,
        desired.mount_point,
        updated=True,
        entry=desired.registry_entry(),
    )
    if not current.enabled:
        return plan

    drift = _entry_drift(desired, current)
    if drift:
        _log_info(
            "Registry entry for %s has changed (%s)",
            desired.mount_point,
            ", ".join(drift),
        )
        return plan

    _log_info("%s is already enabled", desired.mount_point)
    return ActionPlan.noop(desired.mount_point)


def decide_disable(desired: DesiredState, current: CurrentState) -> ActionPlan:
    """
    Decide the ``disable`` action: remove the registry entry if present.
    """
    if not current.enabled:
        _log_info("%s is not enabled", desired.mount_point)
        return ActionPlan.noop(desired.mount_point)
    return ActionPlan(PlanOp.REMOVE_REGISTRY, desired.mount_point, updated=True)


_DECIDERS = {
    Action.MOUNT: decide_mount,
    Action.UMOUNT: decide_umount,
    Action.REMOUNT: decide_remount,
    Action.ENABLE: decide_enable,
    Action.DISABLE: decide_disable,
}


def decide(
    desired: DesiredState, current: CurrentState, action: Action
) -> ActionPlan:
    """
    Map ``desired``, ``current`` and ``action`` to an ``ActionPlan``.

    :param desired: The declared target state.
    :param current: The freshly probed current state.
    :param action: The action being run.
    :returns: The plan for ``action``.
    :rtype: ``ActionPlan``
    :raises UnsupportedActionError: For a remount of a resource that does
                                    not support remounting.
    """
    plan = _DECIDERS[Action.from_name(action)](desired, current)
    _log_debug_decide(
        "Decided %s for %s (%s): %s (updated=%s)",
        action,
        desired.mount_point,
        current,
        plan.op,
        plan.updated,
    )
    return plan


__all__ = [
    "PlanOp",
    "ActionPlan",
    "decide",
    "decide_mount",
    "decide_umount",
    "decide_remount",
    "decide_enable",
    "decide_disable",
]

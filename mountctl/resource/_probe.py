# Copyright Red Hat
#
# mountctl/resource/_probe.py - Mount point state probe
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Current state probe for mount resources.
"""
import logging

from mountctl import (
    MOUNTCTL_SUBSYSTEM_PROBE,
    BackendQueryError,
    ProbeError,
    CurrentState,
    DesiredState,
)

from ._backend import MountBackend

_log = logging.getLogger(__name__)

_log_error = _log.error


def _log_debug_probe(msg, *args, **kwargs):
    """A wrapper for probe subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": MOUNTCTL_SUBSYSTEM_PROBE}, **kwargs)


def probe(backend: MountBackend, desired: DesiredState) -> CurrentState:
    """
    Query ``backend`` for the live and persistent state of the mount point
    named by ``desired``.

    A registry entry whose device or file system type differ from
    ``desired`` is returned unchanged: the decider judges drift.

    :param backend: The mount backend to query.
    :param desired: The desired state naming the mount point.
    :returns: A fresh ``CurrentState`` snapshot.
    :rtype: ``CurrentState``
    :raises ProbeError: If the backend cannot read the mount table or the
                        registry.
    """
    mount_point = desired.mount_point
    try:
        mounted = backend.is_mounted(mount_point)
        entry = backend.read_registry_entry(mount_point)
    except BackendQueryError as err:
        _log_error("Could not probe state of %s: %s", mount_point, err)
        raise ProbeError(f"Could not probe state of {mount_point}: {err}") from err

    if entry is not None:
        current = CurrentState(
            mounted=bool(mounted),
            enabled=True,
            registered_options=frozenset(entry.options),
            entry=entry,
        )
    else:
        current = CurrentState(mounted=bool(mounted), enabled=False)

    _log_debug_probe("Probed %s: %s", mount_point, current)
    return current


__all__ = [
    "probe",
]

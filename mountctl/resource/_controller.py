# Copyright Red Hat
#
# mountctl/resource/_controller.py - Mount resource controller
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount resource controller and backend selection.
"""
from typing import Iterable, Optional, Union
import logging
import sys

from mountctl import (
    DEVICE_ACTIONS,
    MountctlArgumentError,
    MountctlPlatformError,
    UnsupportedActionError,
    Action,
    CurrentState,
    DesiredState,
    MountctlConfig,
)

from ._backend import MountBackend
from ._probe import probe
from ._decide import decide
from ._execute import execute
from ._linux import LinuxMountBackend

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info


def select_backend(
    config: Optional[MountctlConfig] = None, platform: Optional[str] = None
) -> MountBackend:
    """
    Return a mount backend suitable for the running platform.

    :param config: Optional backend configuration. Defaults to the contents
                   of the main configuration file.
    :param platform: Override the detected platform name (``sys.platform``).
    :raises MountctlPlatformError: If no backend supports the platform.
    """
    platform = platform or sys.platform
    if platform.startswith("linux"):
        config = config or MountctlConfig.from_file()
        return LinuxMountBackend(config)
    raise MountctlPlatformError(f"No mount backend available for platform {platform}")


class MountResource:
    """
    A mount point resource converging the host towards a ``DesiredState``.

    Each call to ``run_action()`` probes the current state, decides what
    the action requires, and applies it. The ``was_updated()`` method
    reports whether the most recent successful action changed the system.
    """

    def __init__(self, backend: MountBackend, desired: DesiredState):
        """
        Initialise a new ``MountResource``.

        :param backend: The mount backend used to query and change state.
        :param desired: The desired state of the mount point.
        """
        if not isinstance(desired, DesiredState):
            raise MountctlArgumentError(f"Invalid desired state: {desired!r}")
        self._backend = backend
        self._desired = desired
        self._updated_by_last_action = False
        self._updated = False

    # pylint: disable=too-many-arguments
    @classmethod
    def from_args(
        cls,
        backend: MountBackend,
        mount_point: str,
        device: str = "",
        fstype: str = "auto",
        options: Union[None, str, Iterable[str]] = None,
        supports_remount: bool = False,
        **kwargs,
    ) -> "MountResource":
        """
        Build a ``MountResource`` from plain arguments.

        :param backend: The mount backend.
        :param mount_point: The mount point path.
        :param device: The device, label or UUID to mount.
        :param fstype: The file system type.
        :param options: Mount options as a comma-separated string or a list.
        :param supports_remount: Whether the resource may be remounted.
        :param kwargs: Further ``DesiredState`` fields (``device_type``,
                       ``dump``, ``passno``).
        """
        try:
            desired = DesiredState(
                mount_point,
                device=device,
                fstype=fstype,
                options=options,
                supports_remount=supports_remount,
                **kwargs,
            )
        except TypeError as err:
            raise MountctlArgumentError(f"Invalid mount resource argument: {err}") from err
        return cls(backend, desired)

    @property
    def desired(self) -> DesiredState:
        """
        The desired state of this resource.
        """
        return self._desired

    @property
    def mount_point(self) -> str:
        """
        The mount point managed by this resource.
        """
        return self._desired.mount_point

    @property
    def updated(self) -> bool:
        """
        ``True`` if any action run by this resource has changed the system.
        """
        return self._updated

    def was_updated(self) -> bool:
        """
        Return ``True`` if the most recent successful action changed the
        system. The value is not meaningful after an action raised.
        """
        return self._updated_by_last_action

    def reconfigure(self, **changes) -> DesiredState:
        """
        Replace the desired state with a copy that has ``changes`` applied,
        for example new ``options`` or ``supports_remount``.

        :returns: The new desired state.
        :raises MountctlArgumentError: If the changes are invalid.
        """
        self._desired = self._desired.with_changes(**changes)
        _log_debug("Reconfigured %s: %s", self.mount_point, self._desired)
        return self._desired

    def current_state(self) -> CurrentState:
        """
        Probe and return the current state of the mount point.

        :raises ProbeError: If the backend cannot be queried.
        """
        return probe(self._backend, self._desired)

    def run_action(self, action: Union[Action, str]):
        """
        Run ``action`` against the mount point.

        :param action: An ``Action`` or one of "mount", "umount", "remount",
                       "enable" or "disable".
        :raises MountctlArgumentError: For an unknown action or if the
                                       action needs a device and none is
                                       configured.
        :raises ProbeError: If the current state cannot be determined.
        :raises UnsupportedActionError: For an unsupported remount.
        :raises BackendActionError: If the backend operation fails.
        """
        action = Action.from_name(action)
        desired = self._desired

        if action is Action.REMOUNT and not desired.supports_remount:
            raise UnsupportedActionError(
                f"Remount is not supported for {desired.mount_point}"
            )

        if action in DEVICE_ACTIONS and not desired.device:
            raise MountctlArgumentError(
                f"Action {action} requires a device for {desired.mount_point}"
            )

        current = probe(self._backend, desired)
        plan = decide(desired, current, action)
        updated = execute(self._backend, plan)

        self._updated_by_last_action = updated
        self._updated = self._updated or updated
        _log_info(
            "Action %s for %s: %s",
            action,
            desired.mount_point,
            "updated" if updated else "up to date",
        )

    def run_actions(self, actions: Iterable[Union[Action, str]]) -> bool:
        """
        Run each of ``actions`` in order, stopping at the first error.

        :param actions: The actions to run.
        :returns: ``True`` if any of the actions changed the system.
        """
        changed = False
        for action in actions:
            self.run_action(action)
            changed = changed or self.was_updated()
        return changed

    def __repr__(self):
        return f"MountResource({self._backend!r}, {self._desired!r})"


__all__ = [
    "MountResource",
    "select_backend",
]

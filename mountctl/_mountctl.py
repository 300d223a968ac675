# Copyright Red Hat
#
# mountctl/_mountctl.py - Mount controller global definitions
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level mountctl package.
"""
from dataclasses import dataclass, field, replace
from configparser import ConfigParser, Error as ConfigParserError
from typing import Iterable, Optional, Tuple, Union
from os.path import exists
from enum import Enum
import collections
import logging
import os

_log = logging.getLogger("mountctl")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Mountctl debugging subsystem mask
MOUNTCTL_DEBUG_PROBE = 1
MOUNTCTL_DEBUG_DECIDE = 2
MOUNTCTL_DEBUG_EXECUTE = 4
MOUNTCTL_DEBUG_BACKEND = 8
MOUNTCTL_DEBUG_ALL = (
    MOUNTCTL_DEBUG_PROBE
    | MOUNTCTL_DEBUG_DECIDE
    | MOUNTCTL_DEBUG_EXECUTE
    | MOUNTCTL_DEBUG_BACKEND
)

# Mountctl debugging subsystem names
MOUNTCTL_SUBSYSTEM_PROBE = "mountctl.probe"
MOUNTCTL_SUBSYSTEM_DECIDE = "mountctl.decide"
MOUNTCTL_SUBSYSTEM_EXECUTE = "mountctl.execute"
MOUNTCTL_SUBSYSTEM_BACKEND = "mountctl.backend"

_DEBUG_MASK_TO_SUBSYSTEM = {
    MOUNTCTL_DEBUG_PROBE: MOUNTCTL_SUBSYSTEM_PROBE,
    MOUNTCTL_DEBUG_DECIDE: MOUNTCTL_SUBSYSTEM_DECIDE,
    MOUNTCTL_DEBUG_EXECUTE: MOUNTCTL_SUBSYSTEM_EXECUTE,
    MOUNTCTL_DEBUG_BACKEND: MOUNTCTL_SUBSYSTEM_BACKEND,
}

_debug_subsystems = set()

#: Path to the default persistent mount registry.
ETC_FSTAB = "/etc/fstab"

#: Path to the default live mount table.
PROC_MOUNTS = "/proc/self/mounts"

#: Base directory for mountctl configuration
MOUNTCTL_CFG_DIR = "/etc/mountctl"

#: Main configuration file path
MOUNTCTL_CFG_PATH = os.path.join(MOUNTCTL_CFG_DIR, "mountctl.conf")

#: Main configuration file section
_MOUNTCTL_CFG_GLOBAL = "Global"

#: Configuration keys
_MOUNTCTL_CFG_FSTAB = "FsTab"
_MOUNTCTL_CFG_PROC_MOUNTS = "ProcMounts"
_MOUNTCTL_CFG_CALLOUT_TIMEOUT = "CalloutTimeout"

#: Environment override for the mount helper timeout
MOUNTCTL_MOUNT_TIMEOUT_ENV = "MOUNTCTL_MOUNT_TIMEOUT"

#: Default timeout for mount helper programs
DEFAULT_CALLOUT_TIMEOUT = 60

#: Options written for an entry that specifies none.
DEFAULT_OPTIONS = ("defaults",)

#: Default fstab dump frequency
DEFAULT_DUMP = 0

#: Default fstab fsck pass number
DEFAULT_PASSNO = 2


class SubsystemFilter(logging.Filter):
    """
    Pass DEBUG records only for the enabled subsystems. Records at other
    levels, and DEBUG records with no ``subsystem`` attribute, always pass.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        subsystem = getattr(record, "subsystem", None)
        if record.levelno != logging.DEBUG or subsystem is None:
            return True
        return subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Replace the set of enabled subsystem names."""
        self.enabled_subsystems = set(subsystems)


def _subsystem_filters():
    """Yield each ``SubsystemFilter`` installed on a mountctl log handler."""
    for handler in logging.getLogger("mountctl").handlers:
        yield from (f for f in handler.filters if isinstance(f, SubsystemFilter))


def get_debug_mask():
    """
    Return the debug mask in effect: the subsystems selected by the last
    ``set_debug_mask()`` call plus any enabled directly on an installed
    ``SubsystemFilter``.

    :rtype: int
    """
    enabled = set(_debug_subsystems)
    for subsystem_filter in _subsystem_filters():
        enabled |= subsystem_filter.enabled_subsystems
    return sum(
        flag for flag, name in _DEBUG_MASK_TO_SUBSYSTEM.items() if name in enabled
    )


def set_debug_mask(mask):
    """
    Enable subsystem debug logging for each ``MOUNTCTL_DEBUG_*`` bit set in
    ``mask`` and disable it for the rest.

    :raises ValueError: If ``mask`` has bits outside ``MOUNTCTL_DEBUG_ALL``.
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if not 0 <= mask <= MOUNTCTL_DEBUG_ALL:
        raise ValueError(f"Invalid mountctl debug mask: {mask}")

    _debug_subsystems = {
        name for flag, name in _DEBUG_MASK_TO_SUBSYSTEM.items() if mask & flag
    }
    for subsystem_filter in _subsystem_filters():
        subsystem_filter.set_debug_subsystems(_debug_subsystems)


#
# Mountctl exception types
#


class MountctlError(Exception):
    """
    Base class for mount controller errors.
    """


class MountctlArgumentError(MountctlError):
    """
    An invalid argument was passed to a mount controller API call.
    """


class MountctlConfigError(MountctlError):
    """
    A configuration file contains an invalid value.
    """


class MountctlPlatformError(MountctlError):
    """
    No mount backend is available for the running platform.
    """


class ProbeError(MountctlError):
    """
    The current state of a mount point could not be determined.
    """


class BackendQueryError(MountctlError):
    """
    The mount backend could not read the live mount table or the
    persistent mount registry.
    """


class UnsupportedActionError(MountctlError):
    """
    The requested action is not supported by the resource configuration:
    for e.g. a remount requested for a resource that does not support
    remounting.
    """


class BackendActionError(MountctlError):
    """
    An error performing a mount, unmount, remount or registry update.
    """

    def __init__(
        self,
        operation: str,
        where: str,
        diagnostic: str,
        what: Optional[str] = None,
        status: Optional[int] = None,
    ):
        """
        Initialise a new `BackendActionError` exception.

        :param operation: The name of the failed backend operation.
        :param where: The mount point the operation targeted.
        :param diagnostic: The error text reported by the backend.
        :param what: The device for the failed operation, if any.
        :param status: The exit status of the helper program, if any.
        """
        self.operation, self.where, self.what = operation, where, what
        self.diagnostic, self.status = diagnostic, status
        target = f"{what} to {where}" if what else where
        if status is not None:
            msg = f"Failed to {operation} {target} (status={status}): {diagnostic}"
        else:
            msg = f"Failed to {operation} {target}: {diagnostic}"
        super().__init__(msg)


#
# Mount options
#


def parse_options(options: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    """
    Normalise mount options given as a comma-separated string or as an
    iterable of strings into an ordered tuple of unique option strings.

    Options are compared literally: no default or implied flags are added
    or removed, except that an empty option list becomes ``("defaults",)``.

    :param options: A comma-separated option string, an iterable of option
                    strings (which may themselves contain commas), or
                    ``None``.
    :returns: A tuple of option strings in first-seen order.
    :rtype: ``Tuple[str, ...]``
    """
    if options is None:
        return DEFAULT_OPTIONS
    if isinstance(options, str):
        items = options.split(",")
    else:
        items = []
        for opt in options:
            if not isinstance(opt, str):
                raise MountctlArgumentError(f"Invalid mount option: {opt!r}")
            items.extend(opt.split(","))

    parsed = []
    for item in items:
        item = item.strip()
        if item and item not in parsed:
            parsed.append(item)
    return tuple(parsed) or DEFAULT_OPTIONS


def format_options(options: Iterable[str]) -> str:
    """
    Join a sequence of mount options into a comma-separated string.

    :param options: The options to join.
    :returns: ``"opt1,opt2,..."`` or ``"defaults"`` if empty.
    :rtype: ``str``
    """
    return ",".join(options) or ",".join(DEFAULT_OPTIONS)


#
# Resource state
#


class DeviceType(Enum):
    """
    Enum class representing how a resource names its device: by path, by
    file system label, or by file system UUID.
    """

    DEVICE = "device"
    LABEL = "label"
    UUID = "uuid"

    def __str__(self):
        return self.value


class Action(Enum):
    """
    Enum class representing the actions a mount resource can run.
    """

    MOUNT = "mount"
    UMOUNT = "umount"
    REMOUNT = "remount"
    ENABLE = "enable"
    DISABLE = "disable"

    def __str__(self):
        return self.value

    @classmethod
    def from_name(cls, action: Union["Action", str]) -> "Action":
        """
        Return the ``Action`` corresponding to ``action``.

        :param action: An ``Action`` member or an action name string.
        :raises MountctlArgumentError: If ``action`` is not a known action.
        """
        if isinstance(action, cls):
            return action
        try:
            return cls(str(action).strip().lower())
        except ValueError as err:
            raise MountctlArgumentError(f"Unknown mount action: {action}") from err


#: Actions that need a device to act on.
DEVICE_ACTIONS = (Action.MOUNT, Action.REMOUNT, Action.ENABLE)


RegistryEntry = collections.namedtuple(
    "RegistryEntry", ["device", "fstype", "options", "dump", "passno"]
)
RegistryEntry.__doc__ = "A persistent mount registry entry for one mount point."


def device_spec(device: str, device_type: DeviceType = DeviceType.DEVICE) -> str:
    """
    Return the registry device specification for ``device``: the device
    path itself, or a ``LABEL=...``/``UUID=...`` expression.

    :param device: The device path, file system label or UUID.
    :param device_type: How ``device`` identifies the file system.
    :rtype: ``str``
    """
    if device_type == DeviceType.LABEL:
        return f"LABEL={device}"
    if device_type == DeviceType.UUID:
        return f"UUID={device}"
    return device


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class DesiredState:
    """
    The declared target state of a single mount point.
    """

    mount_point: str
    device: str = ""
    fstype: str = "auto"
    options: Tuple[str, ...] = DEFAULT_OPTIONS
    supports_remount: bool = False
    device_type: DeviceType = DeviceType.DEVICE
    dump: int = DEFAULT_DUMP
    passno: int = DEFAULT_PASSNO

    def __post_init__(self):
        if not self.mount_point or not self.mount_point.strip():
            raise MountctlArgumentError("Mount point cannot be empty")
        # Frozen: normalise through object.__setattr__().
        object.__setattr__(self, "options", parse_options(self.options))
        object.__setattr__(self, "supports_remount", bool(self.supports_remount))
        try:
            object.__setattr__(self, "device_type", DeviceType(self.device_type))
        except ValueError as err:
            raise MountctlArgumentError(
                f"Invalid device type for {self.mount_point}: {self.device_type}"
            ) from err
        try:
            object.__setattr__(self, "dump", int(self.dump))
            object.__setattr__(self, "passno", int(self.passno))
        except ValueError as err:
            raise MountctlArgumentError(
                f"Invalid dump/pass values for {self.mount_point}: {err}"
            ) from err

    @property
    def device_spec(self) -> str:
        """
        The device as it should appear in the mount registry.
        """
        return device_spec(self.device, self.device_type)

    @property
    def option_set(self) -> frozenset:
        """
        The desired options as an order-independent set.
        """
        return frozenset(self.options)

    def registry_entry(self) -> RegistryEntry:
        """
        Return the registry entry that enables this desired state.
        """
        return RegistryEntry(
            self.device_spec, self.fstype, self.options, self.dump, self.passno
        )

    def with_changes(self, **changes) -> "DesiredState":
        """
        Return a copy of this ``DesiredState`` with ``changes`` applied.

        :raises MountctlArgumentError: If the result is not a valid state.
        """
        try:
            return replace(self, **changes)
        except TypeError as err:
            raise MountctlArgumentError(f"Invalid desired state change: {err}") from err


@dataclass(frozen=True)
class CurrentState:
    """
    A snapshot of the actual state of a mount point.
    """

    mounted: bool
    enabled: bool
    registered_options: frozenset = field(default_factory=frozenset)
    entry: Optional[RegistryEntry] = None

    def __str__(self):
        return (
            f"mounted={self.mounted}, enabled={self.enabled}, "
            f"options={','.join(sorted(self.registered_options)) or '-'}"
        )


#
# Configuration
#


def _parse_timeout(value, source) -> int:
    try:
        timeout = int(value)
    except ValueError as err:
        raise MountctlConfigError(f"Invalid {source} value: {value}") from err
    if timeout <= 0:
        raise MountctlConfigError(f"{source} must be positive: {value}")
    return timeout


def _default_callout_timeout() -> int:
    value = os.getenv(MOUNTCTL_MOUNT_TIMEOUT_ENV)
    if value is None:
        return DEFAULT_CALLOUT_TIMEOUT
    return _parse_timeout(value, MOUNTCTL_MOUNT_TIMEOUT_ENV)


@dataclass
class MountctlConfig:
    """
    Mount backend configuration.
    """

    fstab: str = ETC_FSTAB
    proc_mounts: str = PROC_MOUNTS
    callout_timeout: int = field(default_factory=_default_callout_timeout)

    @classmethod
    def from_file(cls, config_file: str = MOUNTCTL_CFG_PATH) -> "MountctlConfig":
        """
        Load ``MountctlConfig`` from an INI-style configuration file located at
        ``config_file``.

        :param config_file: path to mountctl.conf
        :type config_file: ``str``.
        :returns: A ``MountctlConfig`` instance initialised from ``config_file``.
        :rtype: ``MountctlConfig``
        :raises MountctlConfigError: If the file cannot be parsed or holds an
                                     invalid value.
        """
        if not exists(config_file):
            return MountctlConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise MountctlConfigError(
                f"Error parsing configuration file '{config_file}': {err}"
            ) from err

        config = MountctlConfig()
        if not cfg.has_section(_MOUNTCTL_CFG_GLOBAL):
            return config

        section = cfg[_MOUNTCTL_CFG_GLOBAL]
        if _MOUNTCTL_CFG_FSTAB in section:
            config.fstab = section[_MOUNTCTL_CFG_FSTAB].strip()
        if _MOUNTCTL_CFG_PROC_MOUNTS in section:
            config.proc_mounts = section[_MOUNTCTL_CFG_PROC_MOUNTS].strip()
        if _MOUNTCTL_CFG_CALLOUT_TIMEOUT in section:
            config.callout_timeout = _parse_timeout(
                section[_MOUNTCTL_CFG_CALLOUT_TIMEOUT], _MOUNTCTL_CFG_CALLOUT_TIMEOUT
            )
        return config


__all__ = [
    # Debug logging
    "MOUNTCTL_DEBUG_PROBE",
    "MOUNTCTL_DEBUG_DECIDE",
    "MOUNTCTL_DEBUG_EXECUTE",
    "MOUNTCTL_DEBUG_BACKEND",
    "MOUNTCTL_DEBUG_ALL",
    "MOUNTCTL_SUBSYSTEM_PROBE",
    "MOUNTCTL_SUBSYSTEM_DECIDE",
    "MOUNTCTL_SUBSYSTEM_EXECUTE",
    "MOUNTCTL_SUBSYSTEM_BACKEND",
    "SubsystemFilter",
    "get_debug_mask",
    "set_debug_mask",
    # Constants
    "ETC_FSTAB",
    "PROC_MOUNTS",
    "MOUNTCTL_CFG_PATH",
    "MOUNTCTL_MOUNT_TIMEOUT_ENV",
    "DEFAULT_CALLOUT_TIMEOUT",
    "DEFAULT_OPTIONS",
    "DEFAULT_DUMP",
    "DEFAULT_PASSNO",
    "DEVICE_ACTIONS",
    # Exceptions
    "MountctlError",
    "MountctlArgumentError",
    "MountctlConfigError",
    "MountctlPlatformError",
    "ProbeError",
    "BackendQueryError",
    "UnsupportedActionError",
    "BackendActionError",
    # Options
    "parse_options",
    "format_options",
    # State
    "DeviceType",
    "Action",
    "RegistryEntry",
    "device_spec",
    "DesiredState",
    "CurrentState",
    "MountctlConfig",
]

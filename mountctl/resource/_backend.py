# Copyright Red Hat
#
# mountctl/resource/_backend.py - Mount backend interface
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Abstract interface to the live mount table and persistent mount registry.
"""
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from mountctl import RegistryEntry


class MountBackend(ABC):
    """
    Abstract base class for mount backends.

    A backend owns the host mechanics of mounting and of the persistent
    mount registry. Query methods raise ``BackendQueryError`` if their
    source cannot be read. Mutating methods raise ``BackendActionError`` on
    failure and return ``True`` if they changed state, or ``False`` if the
    target was already in the requested state.
    """

    name = "backend"

    @abstractmethod
    def is_mounted(self, mount_point: str) -> bool:
        """
        Return ``True`` if a file system is mounted at ``mount_point``.

        :param mount_point: The mount point path to check.
        :raises BackendQueryError: If the mount table cannot be read.
        """

    @abstractmethod
    def mount(
        self, device: str, mount_point: str, fstype: str, options: Tuple[str, ...]
    ) -> bool:
        """
        Mount ``device`` at ``mount_point``.

        :param device: The device specification to mount.
        :param mount_point: The mount point path.
        :param fstype: The file system type.
        :param options: The mount options to apply.
        :returns: ``True`` if the file system was mounted.
        """

    @abstractmethod
    def unmount(self, mount_point: str) -> bool:
        """
        Unmount the file system at ``mount_point``.

        :param mount_point: The mount point path.
        :returns: ``True`` if a file system was unmounted.
        """

    @abstractmethod
    def remount(self, mount_point: str, options: Tuple[str, ...]) -> bool:
        """
        Re-apply ``options`` to the file system mounted at ``mount_point``.

        :param mount_point: The mount point path.
        :param options: The mount options to apply.
        :returns: ``True`` if the file system was remounted.
        """

    @abstractmethod
    def read_registry_entry(self, mount_point: str) -> Optional[RegistryEntry]:
        """
        Return the registry entry for ``mount_point`` or ``None``.

        :param mount_point: The mount point path.
        :raises BackendQueryError: If the registry cannot be read.
        """

    @abstractmethod
    def write_registry_entry(self, mount_point: str, entry: RegistryEntry) -> bool:
        """
        Create or replace the registry entry for ``mount_point``. The update
        must be atomic from the caller's point of view.

        :param mount_point: The mount point path.
        :param entry: The entry to write.
        :returns: ``True`` if the registry changed.
        """

    @abstractmethod
    def remove_registry_entry(self, mount_point: str) -> bool:
        """
        Remove the registry entry for ``mount_point``.

        :param mount_point: The mount point path.
        :returns: ``True`` if an entry was removed.
        """

    def __repr__(self):
        return f"{self.__class__.__name__}()"


__all__ = [
    "MountBackend",
]

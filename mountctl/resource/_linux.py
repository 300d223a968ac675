# Copyright Red Hat
#
# mountctl/resource/_linux.py - Linux mount backend
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount backend for Linux: the live mount table is read from /proc, mounts
are changed by calling mount(8) and umount(8), and the persistent registry
is an fstab(5) format file.
"""
from subprocess import run, CalledProcessError, TimeoutExpired
from typing import List, Optional, Tuple
import collections
import logging
import tempfile
import os.path
import os

from mountctl import (
    MOUNTCTL_SUBSYSTEM_BACKEND,
    BackendActionError,
    BackendQueryError,
    RegistryEntry,
    MountctlConfig,
    format_options,
    parse_options,
)

from ._backend import MountBackend

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_backend(msg, *args, **kwargs):
    """A wrapper for backend subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": MOUNTCTL_SUBSYSTEM_BACKEND}, **kwargs)


#: Mode for a newly created fstab file.
_FSTAB_FILE_MODE = 0o644

#: Exit status of blkid(8) when no matching device exists.
_BLKID_NOT_FOUND = 2

#: Mount paths are bytes: undecodable names must round-trip unchanged.
_FS_ENCODING_ERRORS = "surrogateescape"


def _unescape_mounts(escaped: str) -> str:
    """
    Unescape octal escapes in values read from /proc/*mounts or fstab.

    :param escaped: The string to unescape.
    :type escaped: str
    :returns: The unescaped string with octal values replaced by literal
              character values.
    :rtype: str
    """
    return (
        escaped.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\043", "#")
        .replace("\\134", "\\")
    )


def _escape_mounts(value: str) -> str:
    """
    Escape whitespace, backslashes and ``#`` for an fstab field.

    :param value: The string to escape.
    :rtype: str
    """
    return (
        value.replace("\\", "\\134")
        .replace(" ", "\\040")
        .replace("\t", "\\011")
        .replace("\n", "\\012")
        .replace("#", "\\043")
    )


def _same_path(path_a: str, path_b: str) -> bool:
    return os.path.normpath(path_a) == os.path.normpath(path_b)


class ProcMountsReader:
    """Reader for /proc/mounts format files."""

    # Define a named tuple to give structure to each /proc/mounts entry.
    MountsEntry = collections.namedtuple(
        "MountsEntry", ["what", "where", "fstype", "options", "freq", "passno"]
    )

    def __init__(self, path):
        """Initialize with the path to a mounts file.

        :param path: Path to the mounts file (e.g., '/proc/self/mounts')
        """
        self.path = path

    def __iter__(self):
        """
        Iterate over the entries of the mounts file.

        :yields: ``MountsEntry`` objects with unescaped paths.
        :raises BackendQueryError: If the mounts file cannot be read.
        """
        try:
            with open(
                self.path, "r", encoding="utf8", errors=_FS_ENCODING_ERRORS
            ) as fp:
                lines = fp.readlines()
        except OSError as err:
            _log_error("Could not read mount table %s: %s", self.path, err)
            raise BackendQueryError(
                f"Error reading mount table {self.path}: {err}"
            ) from err

        for line in lines:
            line = line.strip()
            if not line:
                continue

            parts = line.split()
            if len(parts) == 6:
                what, where, fstype, options, freq, passno = parts
                yield self.MountsEntry(
                    _unescape_mounts(what),
                    _unescape_mounts(where),
                    fstype,
                    options,
                    freq,
                    passno,
                )
            else:
                _log_warn("Skipping malformed %s line: %s", self.path, line)

    def find(self, mount_point: str) -> Optional["ProcMountsReader.MountsEntry"]:
        """
        Return the most recent entry mounted at ``mount_point``, or ``None``.

        :param mount_point: The mount point to look up.
        """
        found = None
        for entry in self:
            if _same_path(entry.where, mount_point):
                found = entry
        return found


class FsTab:
    """
    A read-modify-write view of an fstab file.

    Comment lines, blank lines and entries for other mount points are kept
    verbatim when the file is rewritten.
    """

    FsTabEntry = collections.namedtuple(
        "FsTabEntry", ["what", "where", "fstype", "options", "freq", "passno"]
    )

    def __init__(self, path):
        """
        Initialise a new ``FsTab`` by reading the file at ``path``. A missing
        file is treated as an empty registry.

        :param path: The path to the fstab file.
        :raises BackendQueryError: If the file exists but cannot be read.
        """
        self.path = path
        # Each line is a (raw text, Optional[FsTabEntry]) pair.
        self._lines: List[Tuple[str, Optional["FsTab.FsTabEntry"]]] = []
        self._read_fstab()

    @classmethod
    def _parse_line(cls, path, line):
        # A literal "#" in a field is written as \043.
        content = line.split("#", 1)[0].strip()
        if not content:
            return None

        parts = content.split()
        if len(parts) not in (4, 5, 6):
            _log_warn("Skipping malformed %s entry: %s", path, content)
            return None

        what, where, fstype, options = parts[:4]
        try:
            freq = int(parts[4]) if len(parts) > 4 else 0
            passno = int(parts[5]) if len(parts) > 5 else 0
        except ValueError:
            _log_warn("Skipping malformed %s entry: %s", path, content)
            return None

        return cls.FsTabEntry(
            _unescape_mounts(what),
            _unescape_mounts(where),
            fstype,
            _unescape_mounts(options),
            freq,
            passno,
        )

    def _read_fstab(self):
        try:
            with open(
                self.path, "r", encoding="utf8", errors=_FS_ENCODING_ERRORS
            ) as f:
                for line in f:
                    line = line.rstrip("\n")
                    self._lines.append((line, self._parse_line(self.path, line)))
        except FileNotFoundError:
            _log_debug_backend("Registry file %s does not exist", self.path)
        except OSError as err:
            _log_error("Could not read the file '%s': %s", self.path, err)
            raise BackendQueryError(
                f"Error reading fstab file {self.path}: {err}"
            ) from err

    def __iter__(self):
        """
        Iterate over the parsed entries of this fstab.
        """
        yield from (entry for _line, entry in self._lines if entry is not None)

    def lookup(self, mount_point: str) -> Optional["FsTab.FsTabEntry"]:
        """
        Return the first entry for ``mount_point`` or ``None``.

        :param mount_point: The mount point to look up.
        """
        for entry in self:
            if _same_path(entry.where, mount_point):
                return entry
        return None

    @staticmethod
    def format_entry(mount_point: str, entry: RegistryEntry) -> str:
        """
        Format ``entry`` for ``mount_point`` as an fstab line.
        """
        return "\t".join(
            (
                _escape_mounts(entry.device),
                _escape_mounts(mount_point),
                entry.fstype,
                _escape_mounts(format_options(entry.options)),
                str(entry.dump),
                str(entry.passno),
            )
        )

    def replace(self, mount_point: str, entry: RegistryEntry) -> bool:
        """
        Replace the first entry for ``mount_point`` with ``entry``, dropping
        any further entries for the same mount point, or append ``entry``.

        :returns: ``True`` if the contents changed.
        """
        new_line = self.format_entry(mount_point, entry)
        new_entry = self._parse_line(self.path, new_line)
        lines = []
        replaced = False
        changed = False
        for line, old in self._lines:
            if old is None or not _same_path(old.where, mount_point):
                lines.append((line, old))
                continue
            if replaced:
                changed = True
                continue
            replaced = True
            changed = changed or old != new_entry
            lines.append((new_line, new_entry))
        if not replaced:
            lines.append((new_line, new_entry))
            changed = True
        self._lines = lines
        return changed

    def remove(self, mount_point: str) -> bool:
        """
        Remove every entry for ``mount_point``.

        :returns: ``True`` if any entry was removed.
        """
        lines = [
            (line, entry)
            for line, entry in self._lines
            if entry is None or not _same_path(entry.where, mount_point)
        ]
        removed = len(lines) != len(self._lines)
        self._lines = lines
        return removed

    def write(self):
        """
        Write this fstab back to ``self.path`` atomically.

        :raises OSError: If the file cannot be written.
        """
        fstab_dir = os.path.dirname(os.path.abspath(self.path))
        try:
            mode = os.stat(self.path).st_mode & 0o7777
        except FileNotFoundError:
            mode = _FSTAB_FILE_MODE

        text = "".join(f"{line}\n" for line, _entry in self._lines)
        fd, tmp_path = tempfile.mkstemp(dir=fstab_dir, prefix=".tmp_", text=True)
        try:
            with os.fdopen(
                fd, "w", encoding="utf8", errors=_FS_ENCODING_ERRORS
            ) as f:
                f.write(text)
                f.flush()
                os.fdatasync(f.fileno())
            os.chmod(tmp_path, mode)
            os.rename(tmp_path, self.path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        # Ensure directory metadata is written to disk
        dir_fd = os.open(fstab_dir, os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def __repr__(self):
        return f"FsTab(path='{self.path}')"


def get_device_path(by_type: str, identifier: str, timeout: int) -> Optional[str]:
    """
    Translates a filesystem UUID or label to its corresponding device path
    using the blkid command.

    :param by_type: The type of identifier to search for: "uuid" or "label".
    :param identifier: The UUID or label of the filesystem.
    :param timeout: Timeout for the blkid callout in seconds.
    :returns: The device path if found, otherwise None.
    :rtype: Optional[str]
    :raises BackendActionError: If blkid cannot be run or fails.
    """
    command = ["blkid", f"--{by_type}", identifier]
    env = dict(os.environ, LC_ALL="C", LANG="C")
    _log_debug_backend("Calling %s", " ".join(command))
    try:
        result = run(
            command,
            check=True,
            capture_output=True,
            encoding="utf8",
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as err:
        raise BackendActionError(
            "resolve", identifier, f"blkid not found: {err}"
        ) from err
    except TimeoutExpired as err:
        raise BackendActionError(
            "resolve", identifier, f"Timed out calling blkid: {err}"
        ) from err
    except CalledProcessError as err:
        if err.returncode == _BLKID_NOT_FOUND:
            _log_debug_backend("Identifier '%s' (%s) not found", identifier, by_type)
            return None
        raise BackendActionError(
            "resolve", identifier, err.stderr, status=err.returncode
        ) from err

    return result.stdout.strip() or None


class LinuxMountBackend(MountBackend):
    """
    Mount backend using /proc/self/mounts, mount(8), umount(8) and
    /etc/fstab.
    """

    name = "linux"

    def __init__(self, config: Optional[MountctlConfig] = None):
        """
        Initialise a new ``LinuxMountBackend``.

        :param config: Paths and timeouts to use. Defaults to
                       ``MountctlConfig()``.
        """
        self.config = config or MountctlConfig()

    def _callout(self, operation, command, where, what=None):
        """
        Run a mount helper program, mapping failures to
        ``BackendActionError``.
        """
        _log_debug_backend("Calling %s", " ".join(command))
        try:
            run(
                command,
                check=True,
                capture_output=True,
                encoding="utf8",
                timeout=self.config.callout_timeout,
            )
        except FileNotFoundError as err:
            raise BackendActionError(
                operation, where, f"{command[0]} not found: {err}", what=what
            ) from err
        except TimeoutExpired as err:
            raise BackendActionError(
                operation, where, f"Timed out calling {command[0]}: {err}", what=what
            ) from err
        except CalledProcessError as err:
            raise BackendActionError(
                operation, where, err.stderr, what=what, status=err.returncode
            ) from err

    def _resolve_device(self, device: str) -> str:
        """
        Resolve a device that may be in the form of a LABEL=... or UUID=...
        expression into a device path. Any other device string is returned
        unmodified.
        """
        for prefix, by_type in (("UUID=", "uuid"), ("LABEL=", "label")):
            if device.startswith(prefix):
                ident = device.split("=", maxsplit=1)[1]
                resolved = get_device_path(by_type, ident, self.config.callout_timeout)
                if resolved is None:
                    raise BackendActionError(
                        "resolve", ident, f"Device with {by_type} '{ident}' not found"
                    )
                return resolved
        return device

    def is_mounted(self, mount_point: str) -> bool:
        return ProcMountsReader(self.config.proc_mounts).find(mount_point) is not None

    def mount(self, device, mount_point, fstype, options) -> bool:
        if self.is_mounted(mount_point):
            _log_info("%s is already mounted", mount_point)
            return False
        what = self._resolve_device(device)
        mount_cmd = ["mount"]
        if fstype:
            mount_cmd.extend(["--types", fstype])
        mount_cmd.extend(["--options", format_options(options), what, mount_point])
        self._callout("mount", mount_cmd, mount_point, what=what)
        return True

    def unmount(self, mount_point) -> bool:
        if not self.is_mounted(mount_point):
            _log_info("%s is not mounted", mount_point)
            return False
        self._callout("unmount", ["umount", mount_point], mount_point)
        return True

    def remount(self, mount_point, options) -> bool:
        opts = ",".join(["remount"] + [opt for opt in options if opt != "remount"])
        self._callout(
            "remount", ["mount", "--options", opts, mount_point], mount_point
        )
        return True

    def read_registry_entry(self, mount_point) -> Optional[RegistryEntry]:
        entry = FsTab(self.config.fstab).lookup(mount_point)
        if entry is None:
            return None
        return RegistryEntry(
            entry.what,
            entry.fstype,
            parse_options(entry.options),
            entry.freq,
            entry.passno,
        )

    def write_registry_entry(self, mount_point, entry) -> bool:
        fstab = self._load_for_update(mount_point)
        if not fstab.replace(mount_point, entry):
            return False
        self._write(fstab, mount_point)
        return True

    def remove_registry_entry(self, mount_point) -> bool:
        fstab = self._load_for_update(mount_point)
        if not fstab.remove(mount_point):
            _log_info("No registry entry for %s", mount_point)
            return False
        self._write(fstab, mount_point)
        return True

    def _load_for_update(self, mount_point) -> FsTab:
        try:
            return FsTab(self.config.fstab)
        except BackendQueryError as err:
            raise BackendActionError(
                "update registry entry for", mount_point, str(err)
            ) from err

    def _write(self, fstab: FsTab, mount_point: str):
        try:
            fstab.write()
        except OSError as err:
            _log_error("Could not write the file '%s': %s", fstab.path, err)
            raise BackendActionError(
                "update registry entry for",
                mount_point,
                f"Error writing {fstab.path}: {err}",
            ) from err

    def __repr__(self):
        return f"LinuxMountBackend({self.config!r})"


__all__ = [
    "ProcMountsReader",
    "FsTab",
    "LinuxMountBackend",
    "get_device_path",
]

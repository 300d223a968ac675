# Copyright Red Hat
#
# tests/test_mountctl.py - mountctl package unit tests
#
# This file is part of the mountctl project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import logging
import tempfile
import os

import mountctl
from mountctl import (
    Action,
    DesiredState,
    CurrentState,
    DeviceType,
    MountctlConfig,
    RegistryEntry,
)

log = logging.getLogger()


class MountctlTestsSimple(unittest.TestCase):
    """Test mountctl module"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)
        mountctl.set_debug_mask(0)

    def test_set_debug_mask(self):
        mountctl.set_debug_mask(mountctl.MOUNTCTL_DEBUG_ALL)
        self.assertEqual(mountctl.get_debug_mask(), mountctl.MOUNTCTL_DEBUG_ALL)

    def test_set_debug_mask_bad_mask(self):
        with self.assertRaises(ValueError):
            mountctl.set_debug_mask(mountctl.MOUNTCTL_DEBUG_ALL + 1)
        with self.assertRaises(ValueError):
            mountctl.set_debug_mask(-1)

    def test_SubsystemFilter(self):
        mountctl.set_debug_mask(0)
        sf = mountctl.SubsystemFilter("mountctl")
        self.assertEqual(sf.enabled_subsystems, set())

        mountctl.set_debug_mask(
            mountctl.MOUNTCTL_DEBUG_PROBE | mountctl.MOUNTCTL_DEBUG_DECIDE
        )
        sf2 = mountctl.SubsystemFilter("mountctl")
        self.assertEqual(
            sf2.enabled_subsystems,
            {mountctl.MOUNTCTL_SUBSYSTEM_PROBE, mountctl.MOUNTCTL_SUBSYSTEM_DECIDE},
        )

        record = logging.LogRecord(
            "mountctl", logging.DEBUG, __file__, 1, "msg", None, None
        )
        # No subsystem: always passed
        self.assertTrue(sf2.filter(record))

        record.subsystem = mountctl.MOUNTCTL_SUBSYSTEM_PROBE
        self.assertTrue(sf2.filter(record))
        record.subsystem = mountctl.MOUNTCTL_SUBSYSTEM_BACKEND
        self.assertFalse(sf2.filter(record))

        # Non-DEBUG records are always passed
        record.levelno = logging.INFO
        self.assertTrue(sf2.filter(record))

    def test_debug_mask_with_installed_filter(self):
        handler = logging.NullHandler()
        sf = mountctl.SubsystemFilter("mountctl")
        handler.addFilter(sf)
        mountctl_log = logging.getLogger("mountctl")
        mountctl_log.addHandler(handler)
        self.addCleanup(mountctl_log.removeHandler, handler)

        mountctl.set_debug_mask(mountctl.MOUNTCTL_DEBUG_BACKEND)
        self.assertEqual(sf.enabled_subsystems, {mountctl.MOUNTCTL_SUBSYSTEM_BACKEND})

        sf.set_debug_subsystems([mountctl.MOUNTCTL_SUBSYSTEM_PROBE])
        self.assertEqual(
            mountctl.get_debug_mask(),
            mountctl.MOUNTCTL_DEBUG_BACKEND | mountctl.MOUNTCTL_DEBUG_PROBE,
        )

    def test_parse_options_string(self):
        self.assertEqual(mountctl.parse_options("rw,log=NULL"), ("rw", "log=NULL"))

    def test_parse_options_list(self):
        self.assertEqual(
            mountctl.parse_options(["nodev", "rw,noexec"]), ("nodev", "rw", "noexec")
        )

    def test_parse_options_strips_and_dedups(self):
        self.assertEqual(
            mountctl.parse_options(" rw, nodev ,,rw"), ("rw", "nodev")
        )

    def test_parse_options_empty(self):
        self.assertEqual(mountctl.parse_options(""), ("defaults",))
        self.assertEqual(mountctl.parse_options(None), ("defaults",))
        self.assertEqual(mountctl.parse_options([]), ("defaults",))

    def test_parse_options_is_literal(self):
        # "rw" is not implied by anything else.
        self.assertNotEqual(
            frozenset(mountctl.parse_options("rw")),
            frozenset(mountctl.parse_options("rw,log=NULL")),
        )

    def test_parse_options_bad_item(self):
        with self.assertRaises(mountctl.MountctlArgumentError):
            mountctl.parse_options(["rw", 1])

    def test_format_options(self):
        self.assertEqual(mountctl.format_options(("nodev", "rw")), "nodev,rw")
        self.assertEqual(mountctl.format_options(()), "defaults")

    def test_action_from_name(self):
        self.assertEqual(Action.from_name("mount"), Action.MOUNT)
        self.assertEqual(Action.from_name("UMOUNT"), Action.UMOUNT)
        self.assertEqual(Action.from_name(Action.REMOUNT), Action.REMOUNT)
        self.assertEqual(str(Action.ENABLE), "enable")

    def test_action_from_name_bad(self):
        with self.assertRaises(mountctl.MountctlArgumentError):
            Action.from_name("format")

    def test_device_spec(self):
        self.assertEqual(mountctl.device_spec("/dev/sda1"), "/dev/sda1")
        self.assertEqual(
            mountctl.device_spec("data", DeviceType.LABEL), "LABEL=data"
        )
        self.assertEqual(
            mountctl.device_spec("1234-ABCD", DeviceType.UUID), "UUID=1234-ABCD"
        )


class DesiredStateTests(unittest.TestCase):
    """Test DesiredState validation and normalisation"""

    def test_desired_state_defaults(self):
        desired = DesiredState("/mnt/t")
        self.assertEqual(desired.options, ("defaults",))
        self.assertFalse(desired.supports_remount)
        self.assertEqual(desired.device_type, DeviceType.DEVICE)
        self.assertEqual(desired.dump, 0)
        self.assertEqual(desired.passno, 2)

    def test_desired_state_options_string(self):
        desired = DesiredState("/mnt/t", "/dev/ram1", "tmpfs", "rw,log=NULL")
        self.assertEqual(desired.options, ("rw", "log=NULL"))
        self.assertEqual(desired.option_set, frozenset({"rw", "log=NULL"}))

    def test_desired_state_empty_mount_point(self):
        with self.assertRaises(mountctl.MountctlArgumentError):
            DesiredState("")
        with self.assertRaises(mountctl.MountctlArgumentError):
            DesiredState("   ")

    def test_desired_state_bad_device_type(self):
        with self.assertRaises(mountctl.MountctlArgumentError):
            DesiredState("/mnt/t", "disk0", device_type="serial")

    def test_desired_state_bad_passno(self):
        with self.assertRaises(mountctl.MountctlArgumentError):
            DesiredState("/mnt/t", "/dev/ram1", passno="two")

    def test_desired_state_device_type_from_string(self):
        desired = DesiredState("/mnt/t", "data", "ext4", device_type="label")
        self.assertEqual(desired.device_type, DeviceType.LABEL)
        self.assertEqual(desired.device_spec, "LABEL=data")

    def test_desired_state_is_immutable(self):
        desired = DesiredState("/mnt/t", "/dev/ram1")
        with self.assertRaises(AttributeError):
            desired.options = ("rw",)

    def test_with_changes(self):
        desired = DesiredState("/mnt/t", "/dev/ram1", "tmpfs", "log=NULL")
        changed = desired.with_changes(options="rw,log=NULL", supports_remount=True)
        self.assertEqual(changed.options, ("rw", "log=NULL"))
        self.assertTrue(changed.supports_remount)
        # Original unchanged
        self.assertEqual(desired.options, ("log=NULL",))
        self.assertFalse(desired.supports_remount)

    def test_with_changes_bad_field(self):
        desired = DesiredState("/mnt/t", "/dev/ram1")
        with self.assertRaises(mountctl.MountctlArgumentError):
            desired.with_changes(colour="blue")
        with self.assertRaises(mountctl.MountctlArgumentError):
            desired.with_changes(mount_point="")

    def test_registry_entry(self):
        desired = DesiredState(
            "/mnt/t", "/dev/ram1", "tmpfs", "nodev", dump=1, passno=0
        )
        self.assertEqual(
            desired.registry_entry(),
            RegistryEntry("/dev/ram1", "tmpfs", ("nodev",), 1, 0),
        )

    def test_current_state_str(self):
        current = CurrentState(True, True, frozenset({"rw", "nodev"}))
        self.assertEqual(str(current), "mounted=True, enabled=True, options=nodev,rw")
        self.assertEqual(
            str(CurrentState(False, False)), "mounted=False, enabled=False, options=-"
        )


class BackendActionErrorTests(unittest.TestCase):
    """Test BackendActionError formatting"""

    def test_mount_error_message(self):
        err = mountctl.BackendActionError(
            "mount", "/mnt/t", "special device /dev/nope does not exist",
            what="/dev/nope", status=32,
        )
        self.assertEqual(
            str(err),
            "Failed to mount /dev/nope to /mnt/t (status=32): "
            "special device /dev/nope does not exist",
        )
        self.assertEqual(err.operation, "mount")
        self.assertEqual(err.what, "/dev/nope")
        self.assertEqual(err.where, "/mnt/t")
        self.assertEqual(err.status, 32)

    def test_registry_error_message(self):
        err = mountctl.BackendActionError(
            "remove registry entry for", "/mnt/t", "Permission denied"
        )
        self.assertEqual(
            str(err), "Failed to remove registry entry for /mnt/t: Permission denied"
        )
        self.assertIsNone(err.status)
        self.assertIsInstance(err, mountctl.MountctlError)


class MountctlConfigTests(unittest.TestCase):
    """Test MountctlConfig loading"""

    def _write_config(self, tempdir, text):
        path = os.path.join(tempdir, "mountctl.conf")
        with open(path, "w", encoding="utf8") as fp:
            fp.write(text)
        return path

    def test_config_missing_file(self):
        config = MountctlConfig.from_file("/no/such/mountctl.conf")
        self.assertEqual(config.fstab, mountctl.ETC_FSTAB)
        self.assertEqual(config.proc_mounts, mountctl.PROC_MOUNTS)

    def test_config_from_file(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = self._write_config(
                tempdir,
                "[Global]\n"
                "FsTab = /tmp/fstab\n"
                "ProcMounts = /tmp/mounts\n"
                "CalloutTimeout = 15\n",
            )
            config = MountctlConfig.from_file(path)
        self.assertEqual(config.fstab, "/tmp/fstab")
        self.assertEqual(config.proc_mounts, "/tmp/mounts")
        self.assertEqual(config.callout_timeout, 15)

    def test_config_no_global_section(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = self._write_config(tempdir, "[Other]\nFsTab = /tmp/fstab\n")
            config = MountctlConfig.from_file(path)
        self.assertEqual(config.fstab, mountctl.ETC_FSTAB)

    def test_config_bad_timeout(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = self._write_config(tempdir, "[Global]\nCalloutTimeout = soon\n")
            with self.assertRaises(mountctl.MountctlConfigError):
                MountctlConfig.from_file(path)

    def test_config_negative_timeout(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = self._write_config(tempdir, "[Global]\nCalloutTimeout = -5\n")
            with self.assertRaises(mountctl.MountctlConfigError):
                MountctlConfig.from_file(path)

    def test_config_unparseable(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = self._write_config(tempdir, "FsTab = /tmp/fstab\n")
            with self.assertRaises(mountctl.MountctlConfigError):
                MountctlConfig.from_file(path)

    def test_config_timeout_from_environment(self):
        with patch.dict(os.environ, {mountctl.MOUNTCTL_MOUNT_TIMEOUT_ENV: "5"}):
            self.assertEqual(MountctlConfig().callout_timeout, 5)

    def test_config_bad_timeout_from_environment(self):
        for value in ("soon", "0"):
            with patch.dict(os.environ, {mountctl.MOUNTCTL_MOUNT_TIMEOUT_ENV: value}):
                with self.assertRaises(mountctl.MountctlConfigError):
                    MountctlConfig()
                with self.assertRaises(mountctl.MountctlConfigError):
                    MountctlConfig.from_file("/no/such/mountctl.conf")

# Copyright Red Hat
#
# tests/test_scanner.py - sbf kernel directory scanner tests.
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
import unittest
import logging
from os import makedirs
from os.path import join

log = logging.getLogger()

from sbf import *
from sbf.version import *
from sbf.scanner import *

from tests import *


class ScannerTests(unittest.TestCase):
    """Tests for ``scan_directory()``. Each test uses a fresh
        kernel source directory in the sandbox.
    """
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        reset_sandbox()
        self.config = sandbox_config()

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        rm_sandbox()

    def _kinds(self, result):
        return dict((c.name, c.kind) for c in result.classifications)

    def test_scan_kernels_and_initrds(self):
        mk_source([
            "vmlinuz-6.1.0-aosc",
            "initramfs-6.1.0-aosc.img",
            "vmlinuz-5.15.0-aosc",
        ])
        result = scan_directory(SOURCE_PATH, self.config)
        kinds = self._kinds(result)
        self.assertEqual(kinds["vmlinuz-6.1.0-aosc"], CLASS_KERNEL)
        self.assertEqual(kinds["initramfs-6.1.0-aosc.img"], CLASS_INITRD)
        self.assertEqual(kinds["vmlinuz-5.15.0-aosc"], CLASS_KERNEL)

        ks = result.kernel_set()
        self.assertEqual([str(v) for v in ks.versions()], ["6.1.0-aosc", "5.15.0-aosc"])
        newest = ks.get(parse_version("6.1.0-aosc"))
        self.assertEqual(newest.image_path, join(SOURCE_PATH, "vmlinuz-6.1.0-aosc"))
        self.assertEqual(
            newest.initrd_path, join(SOURCE_PATH, "initramfs-6.1.0-aosc.img")
        )

    def test_scan_kernel_without_initrd(self):
        mk_source(["vmlinuz-5.15.0-aosc"])
        ks = scan_directory(SOURCE_PATH, self.config).kernel_set()
        self.assertIsNone(ks.get(parse_version("5.15.0-aosc")).initrd_path)

    def test_scan_custom_templates(self):
        config = sandbox_config(initrd="initrd-{VERSION}")
        mk_source(["vmlinuz-6.1.0-aosc", "initrd-6.1.0-aosc"])
        ks = scan_directory(SOURCE_PATH, config).kernel_set()
        self.assertEqual(
            ks.get(parse_version("6.1.0-aosc")).initrd_path,
            join(SOURCE_PATH, "initrd-6.1.0-aosc")
        )

    def test_scan_malformed_and_no_match(self):
        mk_source(["vmlinuz-", "README.md", "vmlinuz-6.1.0-aosc"])
        result = scan_directory(SOURCE_PATH, self.config)
        kinds = self._kinds(result)
        self.assertEqual(kinds["vmlinuz-"], CLASS_MALFORMED)
        self.assertEqual(kinds["README.md"], CLASS_NO_MATCH)
        self.assertEqual([c.name for c in result.malformed], ["vmlinuz-"])
        self.assertEqual(result.no_match_count, 1)
        self.assertEqual(len(result.kernel_set()), 1)

    def test_scan_ucode(self):
        mk_source(["vmlinuz-6.1.0-aosc", UCODE_IMAGE])
        result = scan_directory(SOURCE_PATH, self.config)
        self.assertTrue(result.has_ucode)
        self.assertEqual(result.ucode_path, join(SOURCE_PATH, UCODE_IMAGE))
        self.assertEqual(self._kinds(result)[UCODE_IMAGE], CLASS_UCODE)

    def test_scan_directories_are_not_kernels(self):
        mk_source([])
        makedirs(join(SOURCE_PATH, "vmlinuz-6.1.0-aosc"))
        result = scan_directory(SOURCE_PATH, self.config)
        self.assertEqual(len(result.kernel_set()), 0)
        self.assertEqual(result.no_match_count, 1)

    def test_scan_duplicate_identity(self):
        mk_source(["vmlinuz-6.1.0-aosc", "vmlinuz-6.1.00-aosc"])
        ks = scan_directory(SOURCE_PATH, self.config).kernel_set()
        self.assertEqual(len(ks), 1)
        self.assertEqual(
            ks.latest().image_path, join(SOURCE_PATH, "vmlinuz-6.1.00-aosc")
        )

    def test_scan_empty_directory(self):
        mk_source([])
        result = scan_directory(SOURCE_PATH, self.config)
        self.assertEqual(len(result.kernel_set()), 0)
        self.assertFalse(result.has_ucode)

    def test_scan_missing_directory(self):
        with self.assertRaises(DirectoryUnavailableError) as cm:
            scan_directory(join(SANDBOX_PATH, "nonexistent"), self.config)
        self.assertIsInstance(cm.exception, SbfResourceError)

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# tests/test_kernelset.py - sbf KernelEntry and KernelSet tests.
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
import unittest
import logging

log = logging.getLogger()

from sbf import *
from sbf.version import *
from sbf.kernelset import *

from tests import *


def _entry(name, pattern=DEFAULT_VMLINUX):
    version = parse_kernel_filename(name, pattern)
    return KernelEntry(version, "/boot/%s" % name)


class KernelEntryTests(unittest.TestCase):
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_kernel_entry(self):
        ke = _entry("vmlinuz-6.1.0-aosc")
        self.assertEqual(str(ke), "6.1.0-aosc")
        self.assertEqual(ke.image_path, "/boot/vmlinuz-6.1.0-aosc")
        self.assertIsNone(ke.initrd_path)
        self.assertFalse(ke.ucode_bundled)

    def test_kernel_entry_bad_version(self):
        with self.assertRaises(TypeError):
            KernelEntry("6.1.0-aosc", "/boot/vmlinuz-6.1.0-aosc")

    def test_kernel_entry_is_immutable(self):
        ke = _entry("vmlinuz-6.1.0-aosc")
        with self.assertRaises(AttributeError):
            ke.image_path = "/boot/vmlinuz"


class KernelSetTests(unittest.TestCase):
    """Tests for the ``KernelSet`` class.
    """
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_build_and_iterate_descending(self):
        ks = KernelSet.build([
            _entry("vmlinuz-5.15.0-aosc"),
            _entry("vmlinuz-6.1.0-aosc"),
            _entry("vmlinuz-5.4.0-aosc"),
        ])
        self.assertEqual(len(ks), 3)
        self.assertEqual(
            [str(v) for v in ks.versions()],
            ["6.1.0-aosc", "5.15.0-aosc", "5.4.0-aosc"]
        )
        self.assertEqual([str(e) for e in ks], [str(v) for v in ks.versions()])

    def test_build_duplicate_identity(self):
        # Same parsed identity from two different names
        first = _entry("vmlinuz-6.1.0-aosc")
        second = _entry("vmlinuz-6.1.00-aosc")
        ks = KernelSet.build([first, second])
        self.assertEqual(len(ks), 1)
        self.assertIs(ks.get(first.version), second)
        # Order of input does not matter
        ks = KernelSet.build([second, first])
        self.assertIs(ks.get(first.version), second)

    def test_variants_are_distinct(self):
        ks = KernelSet.build([
            _entry("vmlinuz-6.1.0-aosc"),
            _entry("vmlinuz-6.1.0-generic"),
        ])
        self.assertEqual(len(ks), 2)
        self.assertEqual(
            [str(v) for v in ks.versions()],
            ["6.1.0-generic", "6.1.0-aosc"]
        )

    def test_contains(self):
        ks = KernelSet.build([_entry("vmlinuz-6.1.0-aosc")])
        self.assertIn(parse_version("6.1.0-aosc"), ks)
        self.assertTrue(ks.contains(parse_version("6.1.0-aosc")))
        self.assertNotIn(parse_version("6.1.0"), ks)

    def test_difference(self):
        a = KernelSet.build([
            _entry("vmlinuz-6.1.0-aosc"),
            _entry("vmlinuz-5.15.0-aosc"),
        ])
        b = KernelSet.build([_entry("vmlinuz-5.15.0-aosc")])
        diff = a.difference(b)
        self.assertEqual([str(v) for v in diff.versions()], ["6.1.0-aosc"])
        # Inputs are unchanged
        self.assertEqual(len(a), 2)
        self.assertEqual(len(b), 1)

    def test_difference_with_version_list(self):
        a = KernelSet.build([_entry("vmlinuz-6.1.0-aosc")])
        self.assertEqual(len(a.difference([parse_version("6.1.0-aosc")])), 0)

    def test_latest(self):
        ks = KernelSet.build([
            _entry("vmlinuz-5.15.0-aosc"),
            _entry("vmlinuz-6.1.0-aosc"),
        ])
        self.assertEqual(str(ks.latest()), "6.1.0-aosc")

    def test_latest_empty(self):
        self.assertIsNone(KernelSet().latest())
        self.assertEqual(len(KernelSet()), 0)

    def test_equality(self):
        a = KernelSet.build([_entry("vmlinuz-6.1.0-aosc")])
        b = KernelSet.build([_entry("vmlinuz-6.1.0-aosc")])
        self.assertEqual(a, b)
        self.assertNotEqual(a, KernelSet())

# vim: set et ts=4 sw=4 :

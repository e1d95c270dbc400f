# Copyright Red Hat
#
# tests/test_reconcile.py - sbf reconciler tests.
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
from sbf.reconcile import *

from tests import *


def _v(text):
    return parse_version(text)


def _set(*versions):
    return KernelSet.build(
        [KernelEntry(_v(text), "/boot/vmlinuz-%s" % text) for text in versions]
    )


def _summary(plan):
    return [(action.verb, str(action.version)) for action in plan]


class ReconcileInstallTests(unittest.TestCase):
    """Tests for ``reconcile()`` in ``MODE_INSTALL``.
    """
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_install_all_newest_first(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        plan = reconcile(available, KernelSet())
        self.assertEqual(_summary(plan), [
            ("install", "6.1.0-aosc"),
            ("install", "5.15.0-aosc"),
        ])
        self.assertTrue(plan.changes)
        self.assertEqual(plan.errors, [])

    def test_install_keeps_installed(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        installed = _set("5.15.0-aosc", "4.19.0-aosc")
        plan = reconcile(available, installed)
        self.assertEqual(_summary(plan), [
            ("install", "6.1.0-aosc"),
            ("keep", "5.15.0-aosc"),
            ("keep", "4.19.0-aosc"),
        ])
        self.assertEqual(plan.removes, [])

    def test_install_force(self):
        available = _set("6.1.0-aosc")
        installed = _set("6.1.0-aosc")
        self.assertEqual(_summary(reconcile(available, installed)),
                         [("keep", "6.1.0-aosc")])
        self.assertEqual(_summary(reconcile(available, installed, force=True)),
                         [("install", "6.1.0-aosc")])

    def test_install_nothing_to_do(self):
        plan = reconcile(_set("6.1.0-aosc"), _set("6.1.0-aosc"))
        self.assertFalse(plan.changes)

    def test_install_selection(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        plan = reconcile(available, KernelSet(), selection=[_v("5.15.0-aosc")])
        self.assertEqual(_summary(plan), [("install", "5.15.0-aosc")])

    def test_install_selection_unknown(self):
        available = _set("6.1.0-aosc")
        plan = reconcile(available, KernelSet(),
                         selection=[_v("6.1.0-aosc"), _v("9.9.9")])
        self.assertEqual(_summary(plan), [("install", "6.1.0-aosc")])
        self.assertEqual(len(plan.errors), 1)
        self.assertIsInstance(plan.errors[0], UnknownKernelError)
        self.assertIsInstance(plan.errors[0], SbfLookupError)
        self.assertEqual(plan.errors[0].version, _v("9.9.9"))

    def test_install_action_carries_entry(self):
        available = _set("6.1.0-aosc")
        plan = reconcile(available, KernelSet())
        self.assertIs(plan.installs[0].entry, available.get(_v("6.1.0-aosc")))

    def test_reconcile_is_pure(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        installed = _set("4.19.0-aosc")
        first = reconcile(available, installed, mode=MODE_UPDATE, keep=1)
        second = reconcile(available, installed, mode=MODE_UPDATE, keep=1)
        self.assertEqual(first, second)
        self.assertEqual(len(available), 2)
        self.assertEqual(len(installed), 1)

    def test_bad_mode(self):
        with self.assertRaises(ValueError):
            reconcile(KernelSet(), KernelSet(), mode="frobnicate")


class ReconcileRemoveTests(unittest.TestCase):
    """Tests for ``reconcile()`` in ``MODE_REMOVE``.
    """
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_remove_obsolete(self):
        available = _set("6.1.0-aosc")
        installed = _set("5.15.0-aosc", "6.1.0-aosc")
        plan = reconcile(available, installed, mode=MODE_REMOVE)
        self.assertEqual(_summary(plan), [
            ("keep", "6.1.0-aosc"),
            ("remove", "5.15.0-aosc"),
        ])

    def test_remove_selection(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        installed = _set("5.15.0-aosc", "6.1.0-aosc")
        plan = reconcile(available, installed, mode=MODE_REMOVE,
                         selection=[_v("6.1.0-aosc")])
        self.assertEqual(_summary(plan), [("remove", "6.1.0-aosc")])

    def test_remove_selection_not_installed(self):
        installed = _set("5.15.0-aosc")
        plan = reconcile(KernelSet(), installed, mode=MODE_REMOVE,
                         selection=[_v("6.1.0-aosc"), _v("5.15.0-aosc")])
        self.assertEqual(_summary(plan), [("remove", "5.15.0-aosc")])
        self.assertEqual(len(plan.errors), 1)
        self.assertIn("not installed", str(plan.errors[0]))

    def test_removes_follow_installs(self):
        available = _set("6.1.0-aosc")
        installed = _set("5.15.0-aosc")
        plan = reconcile(available, installed, mode=MODE_UPDATE)
        self.assertEqual([a.verb for a in plan], [ACTION_INSTALL, ACTION_REMOVE])


class ReconcileUpdateTests(unittest.TestCase):
    """Tests for ``reconcile()`` in ``MODE_UPDATE``.
    """
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_update_keep(self):
        available = _set("5.4.0-aosc", "5.15.0-aosc", "6.1.0-aosc")
        installed = _set("5.4.0-aosc", "5.15.0-aosc")
        plan = reconcile(available, installed, mode=MODE_UPDATE, keep=2)
        self.assertEqual(_summary(plan), [
            ("install", "6.1.0-aosc"),
            ("keep", "5.15.0-aosc"),
            ("remove", "5.4.0-aosc"),
        ])

    def test_update_keep_all(self):
        available = _set("5.15.0-aosc", "6.1.0-aosc")
        installed = _set("4.19.0-aosc")
        plan = reconcile(available, installed, mode=MODE_UPDATE)
        self.assertEqual(_summary(plan), [
            ("install", "6.1.0-aosc"),
            ("install", "5.15.0-aosc"),
            ("remove", "4.19.0-aosc"),
        ])

    def test_update_rejects_selection(self):
        with self.assertRaises(ValueError):
            reconcile(_set("6.1.0-aosc"), KernelSet(), mode=MODE_UPDATE,
                      selection=[_v("6.1.0-aosc")])

    def test_update_bad_keep(self):
        with self.assertRaises(ValueError):
            reconcile(KernelSet(), KernelSet(), mode=MODE_UPDATE, keep=0)

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# sbf/__init__.py - systemd-boot-friend package initialisation
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides classes and functions for discovering installed
kernels and managing the systemd-boot loader entries that boot them.

The ``sbf`` package contains global definitions, the exception
hierarchy shared by all sub-modules, the persistent configuration
object, and the logging infrastructure for the package.

Individual sub-modules provide the kernel version parser, the kernel
directory scanner, kernel sets, the reconciler that plans entry
changes, the boot entry store, the entry materializer that applies a
plan to the EFI System Partition, the default entry selector, and the
``sbf`` command line interface.
"""
from ._sbf import *
from ._sbf import __all__

__version__ = "0.27.3"
# vim: set et ts=4 sw=4 :

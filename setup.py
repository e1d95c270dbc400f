#!/usr/bin/env python
from setuptools import setup

from sbf import __version__ as sbf_version

setup(
    name='systemd-boot-friend',
    version=sbf_version,
    description=("""Manage kernels and systemd-boot entries on the EFI System Partition."""),
    license="GPLv2",
    test_suite="tests",
    scripts=['bin/sbf'],
    packages=['sbf'],
)


# vim: set et ts=4 sw=4 :

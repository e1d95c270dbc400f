# Copyright Red Hat
#
# tests/__init__.py - sbf test package initialisation
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
from os.path import abspath, dirname, join
from os import makedirs
import logging
import shutil
import errno

from sbf import SbfConfig

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
log.addHandler(file_handler)

# Root of the testing directory
SBF_ROOT_TEST = dirname(abspath(__file__))

# Location of the temporary sandbox for test data
SANDBOX_PATH = join(SBF_ROOT_TEST, "sandbox")

# Sandbox kernel source directory and ESP
SOURCE_PATH = join(SANDBOX_PATH, "boot")
ESP_PATH = join(SANDBOX_PATH, "efi")

# A mount table with a known root device
MOUNTS_PATH = join(SANDBOX_PATH, "mounts")

# Test sandbox functions

def rm_sandbox():
    """Remove the test sandbox at SANDBOX_PATH.
    """
    try:
        shutil.rmtree(SANDBOX_PATH)
    except OSError as e:
        if e.errno != errno.ENOENT:
            raise


def mk_sandbox():
    """Create a new test sandbox at SANDBOX_PATH.
    """
    makedirs(SANDBOX_PATH)


def reset_sandbox():
    """Reset the test sandbox at SANDBOX_PATH by removing it and
        re-creating the directory.
    """
    rm_sandbox()
    mk_sandbox()


def mk_file(path, content=""):
    """Create the file ``path`` containing ``content``, creating
        parent directories as needed.
    """
    makedirs(dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)


def mk_source(names):
    """Populate the sandbox kernel source directory with one file
        for each name in ``names``. Each file contains its own name
        so that different images have different content.
    """
    makedirs(SOURCE_PATH, exist_ok=True)
    for name in names:
        mk_file(join(SOURCE_PATH, name), "%s\n" % name)


def mk_esp():
    """Create the sbf directory structure on the sandbox ESP.
    """
    makedirs(join(ESP_PATH, "EFI/systemd-boot-friend"), exist_ok=True)
    makedirs(join(ESP_PATH, "loader/entries"), exist_ok=True)


def sandbox_config(**kwargs):
    """Return an ``SbfConfig`` using the sandbox source directory and
        ESP. Keyword arguments override individual values.
    """
    values = {
        "esp_mountpoint": ESP_PATH,
        "source_path": SOURCE_PATH,
        "distro": "AOSC OS",
        "bootarg": "root=/dev/sda2 rw",
    }
    values.update(kwargs)
    return SbfConfig(**values)


__all__ = [
    'SBF_ROOT_TEST', 'SANDBOX_PATH', 'SOURCE_PATH', 'ESP_PATH', 'MOUNTS_PATH',
    'rm_sandbox', 'mk_sandbox', 'reset_sandbox',
    'mk_file', 'mk_source', 'mk_esp', 'sandbox_config',
]

# vim: set et ts=4 sw=4 :

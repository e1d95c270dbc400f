# Copyright Red Hat
#
# sbf/config.py - sbf persistent configuration
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.config`` module defines constants and functions for
reading and writing persistent (on-disk) configuration for the sbf
library and tools.

The configuration file uses INI notation with a single ``[global]``
section. Option names are case insensitive, so the upper case names
used by older versions of the tool (``ESP_MOUNTPOINT``, ``BOOTARG``)
are accepted.
"""
from os.path import dirname, exists as path_exists
from os import fdopen, rename, chmod, fdatasync, unlink
from configparser import ConfigParser, Error as ConfigParserError
from tempfile import mkstemp
import logging

from sbf import *

# Module logging configuration
_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: The mount table used to detect the root device.
MOUNTS_PATH = "/proc/mounts"

#
# Constants for configuration sections and options: to add a new option,
# create a new _CFG_* constant giving the name of the option, add it to
# SbfConfig and add a hook to _read_sbf_config() to set the value when
# read.
#
_CFG_SECT_GLOBAL = "global"
_CFG_ESP_MOUNTPOINT = "esp_mountpoint"
_CFG_SOURCE_PATH = "source_path"
_CFG_DISTRO = "distro"
_CFG_VMLINUX = "vmlinux"
# Synonym for vmlinux
_CFG_VMLINUZ = "vmlinuz"
_CFG_INITRD = "initrd"
_CFG_BOOTARG = "bootarg"
_CFG_KEEP = "keep"

#: Image template fragment written by older versions of the tool.
_OLD_VERSION_TEMPLATE = "{VERSION}-{LOCALVERSION}"


class SbfConfigFileMissing(SbfConfigError):
    """The configuration file does not exist."""

    path = None

    def __init__(self, path):
        super(SbfConfigFileMissing, self).__init__(
            "Configuration file %s does not exist" % path
        )
        self.path = path


def _read_sbf_config(path):
    """Read sbf persistent configuration values from ``path`` and
    return them as an ``SbfConfig`` object.

    :rtype: SbfConfig
    """
    _log_debug("reading sbf configuration from '%s'", path)
    if not path_exists(path):
        raise SbfConfigFileMissing(path)

    cfg = ConfigParser(interpolation=None)
    try:
        cfg.read(path)
    except ConfigParserError as e:
        _log_error("Failed to parse configuration file '%s': %s", path, e)
        raise SbfConfigError("Failed to parse %s: %s" % (path, e)) from e

    if not cfg.has_section(_CFG_SECT_GLOBAL):
        raise SbfConfigError("Missing 'global' section in %s" % path)

    def get(option):
        if cfg.has_option(_CFG_SECT_GLOBAL, option):
            _log_debug("Found global.%s", option)
            return cfg.get(_CFG_SECT_GLOBAL, option)
        return None

    vmlinux = get(_CFG_VMLINUX)
    if vmlinux is None and get(_CFG_VMLINUZ) is not None:
        _log_debug("Found global.vmlinuz: redirecting to global.vmlinux")
        vmlinux = get(_CFG_VMLINUZ)

    initrd = get(_CFG_INITRD)
    migrated = False
    if any(t and _OLD_VERSION_TEMPLATE in t for t in (vmlinux, initrd)):
        _log_warn(
            "Migrating image templates in %s from %s to %s",
            path,
            _OLD_VERSION_TEMPLATE,
            VERSION_PLACEHOLDER,
        )
        if vmlinux:
            vmlinux = vmlinux.replace(_OLD_VERSION_TEMPLATE, VERSION_PLACEHOLDER)
        if initrd:
            initrd = initrd.replace(_OLD_VERSION_TEMPLATE, VERSION_PLACEHOLDER)
        migrated = True

    for (option, template) in ((_CFG_VMLINUX, vmlinux), (_CFG_INITRD, initrd)):
        if template is not None and template.count(VERSION_PLACEHOLDER) != 1:
            raise SbfConfigError(
                "Option '%s' must contain %s exactly once: %s"
                % (option, VERSION_PLACEHOLDER, template)
            )

    keep = get(_CFG_KEEP)
    if keep is not None and keep.strip():
        try:
            keep = int(keep)
        except ValueError as e:
            raise SbfConfigError("Invalid value for 'keep': %s" % keep) from e
        if keep < 1:
            raise SbfConfigError("Option 'keep' must be a positive integer: %d" % keep)
    else:
        keep = None

    bootarg = get(_CFG_BOOTARG)
    sc = SbfConfig(
        esp_mountpoint=get(_CFG_ESP_MOUNTPOINT),
        source_path=get(_CFG_SOURCE_PATH),
        distro=get(_CFG_DISTRO),
        vmlinux=vmlinux,
        initrd=initrd,
        bootarg=bootarg.strip() if bootarg else bootarg,
        keep=keep,
    )
    _log_debug("read configuration: %s", repr(sc))
    if migrated:
        try:
            write_sbf_config(sc, path=path)
        except OSError as e:
            _log_warn("Could not update configuration file %s: %s", path, e)
    return sc


def load_sbf_config(path=None):
    """Load sbf persistent configuration values from ``path``.

    :param path: the configuration file to read, or None to read the
                 default configuration file.
    :rtype: SbfConfig
    :raises: ``SbfConfigFileMissing`` if the file does not exist, or
             ``SbfConfigError`` if it is invalid.
    """
    return _read_sbf_config(path or DEFAULT_SBF_CONFIG_PATH)


def write_sbf_config(config=None, path=None):
    """Write sbf configuration to disk.

    :param config: the configuration values to write, or None to
                   write the default configuration
    :param path: the configuration file to write, or None to write
                 the default configuration file.
    :rtype: None
    """
    path = path or DEFAULT_SBF_CONFIG_PATH
    config = config or SbfConfig()
    (tmp_fd, tmp_path) = mkstemp(prefix="sbf", dir=dirname(path))

    with fdopen(tmp_fd, "w") as f_tmp:
        f_tmp.write(str(config))
        f_tmp.flush()
        fdatasync(f_tmp.fileno())

    try:
        rename(tmp_path, path)
        chmod(path, SBF_FILE_MODE)
    except Exception as e:
        _log_error("Error writing configuration file %s: %s", path, e)
        try:
            unlink(tmp_path)
        except Exception:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise e


def detect_root_device(mounts_path=MOUNTS_PATH):
    """Return the device mounted at '/' according to ``mounts_path``,
    or ``None`` if it cannot be determined.
    """
    root_device = None
    try:
        with open(mounts_path, "r") as mounts:
            for line in mounts:
                fields = line.split()
                if len(fields) >= 2 and fields[1] == "/":
                    root_device = fields[0]
    except OSError as e:
        _log_warn("Could not read mount table %s: %s", mounts_path, e)
    return root_device


def complete_bootarg(bootarg, mounts_path=MOUNTS_PATH):
    """Add the ``root=`` and ``rw`` kernel parameters to ``bootarg``
    if it does not already specify them.

    :param bootarg: a kernel command line template.
    :param mounts_path: the mount table used to detect the root device.
    :returns: the completed kernel command line.
    :rtype: str
    """
    params = bootarg.split()
    has_root = any(p.startswith("root=") for p in params)
    has_rw = any(p in ("rw", "ro") for p in params)

    if not has_root:
        root_device = detect_root_device(mounts_path)
        if root_device:
            params.append("root=%s" % root_device)
        else:
            _log_warn("Could not detect the root device for the kernel command line")
    if not has_rw:
        params.append("rw")

    return " ".join(params)


__all__ = [
    "MOUNTS_PATH",
    "SbfConfigFileMissing",
    # Configuration file handling
    "load_sbf_config",
    "write_sbf_config",
    # Kernel command line helpers
    "detect_root_device",
    "complete_bootarg",
]

# vim: set et ts=4 sw=4 :

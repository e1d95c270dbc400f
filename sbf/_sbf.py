# Copyright Red Hat
#
# sbf/_sbf.py - systemd-boot-friend package initialisation
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides the declarations, classes, and functions exposed
in the main ``sbf`` module. Users of sbf should not import this module
directly: it will be imported automatically with the top level module.
"""
from collections import namedtuple
from os.path import join as path_join
import logging
import string

#: The default location of the sbf configuration file.
DEFAULT_SBF_CONFIG_PATH = "/etc/systemd-boot-friend.conf"

#: The default EFI System Partition mount point.
DEFAULT_ESP_MOUNTPOINT = "/efi"

#: The default directory searched for kernel images.
DEFAULT_SOURCE_PATH = "/boot"

#: The default distribution name used in entry titles.
DEFAULT_DISTRO = "Linux"

#: Placeholder substituted with a kernel version in file name templates.
VERSION_PLACEHOLDER = "{VERSION}"

#: The default kernel image file name template.
DEFAULT_VMLINUX = "vmlinuz-" + VERSION_PLACEHOLDER

#: The default initramfs file name template.
DEFAULT_INITRD = "initramfs-" + VERSION_PLACEHOLDER + ".img"

#: Directory holding copied kernel images, relative to the ESP.
REL_DEST_PATH = "EFI/systemd-boot-friend"

#: Directory holding boot loader entries, relative to the ESP.
REL_ENTRIES_PATH = "loader/entries"

#: The systemd-boot loader configuration file, relative to the ESP.
REL_LOADER_CONF = "loader/loader.conf"

#: The well-known name of the CPU microcode image.
UCODE_IMAGE = "intel-ucode.img"

#: Mode used for files written by sbf.
SBF_FILE_MODE = 0o644

#
# Logging
#

SBF_LOG_DEBUG = logging.DEBUG
SBF_LOG_INFO = logging.INFO
SBF_LOG_WARN = logging.WARNING
SBF_LOG_ERROR = logging.ERROR

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# sbf debugging levels
SBF_DEBUG_VERSION = 1
SBF_DEBUG_SCAN = 2
SBF_DEBUG_PLAN = 4
SBF_DEBUG_ENTRY = 8
SBF_DEBUG_COMMAND = 16
SBF_DEBUG_ALL = (
    SBF_DEBUG_VERSION
    | SBF_DEBUG_SCAN
    | SBF_DEBUG_PLAN
    | SBF_DEBUG_ENTRY
    | SBF_DEBUG_COMMAND
)

__debug_mask = 0


#
# Exception hierarchy
#


class SbfError(Exception):
    """Base class of all sbf exceptions."""

    pass


class SbfStructuralError(SbfError):
    """Base class for recoverable structural problems: a run that
    encounters one continues in a degraded state.
    """

    pass


class SbfLookupError(SbfError):
    """Base class for errors looking up a single kernel: the failing
    item is reported and sibling items still proceed.
    """

    pass


class SbfResourceError(SbfError):
    """Base class for errors accessing a file system resource."""

    pass


class SbfConfigError(SbfError):
    """Base class for sbf configuration errors."""

    pass


class SbfLogger(logging.Logger):
    """SbfLogger()

    sbf logging wrapper class: wrap the Logger.debug() method
    to allow filtering of submodule debug messages by log mask.

    This allows us to selectively control which messages are
    logged in the library without having to tamper with the
    Handler, Filter or Formatter configurations (which belong
    to the client application using the library).
    """

    mask_bits = 0

    def set_debug_mask(self, mask_bits):
        """Set the debug mask for this ``SbfLogger``.

        This should normally be set to the ``SBF_DEBUG_*`` value
        corresponding to the ``sbf`` sub-module that this instance
        of ``SbfLogger`` belongs to.

        :param mask_bits: The bits to set in this logger's mask.
        :rtype: None
        """
        if mask_bits < 0 or mask_bits > SBF_DEBUG_ALL:
            raise ValueError(
                "Invalid SbfLogger mask bits: 0x%x" % (mask_bits & ~SBF_DEBUG_ALL)
            )

        self.mask_bits = mask_bits

    def debug_masked(self, msg, *args, **kwargs):
        """Log a debug message if it passes the current debug mask.

        :param msg: the message to be logged
        :rtype: None
        """
        if self.mask_bits & get_debug_mask():
            self.debug(msg, *args, **kwargs)


logging.setLoggerClass(SbfLogger)


def get_debug_mask():
    """Return the current debug mask for the ``sbf`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    return __debug_mask


def set_debug_mask(mask):
    """Set the debug mask for the ``sbf`` package.

    :param mask: the logical OR of the ``SBF_DEBUG_*``
                 values to log.
    :rtype: None
    """
    global __debug_mask
    if mask < 0 or mask > SBF_DEBUG_ALL:
        raise ValueError("Invalid sbf debug mask: %d" % mask)
    __debug_mask = mask


_SbfConfig = namedtuple(
    "SbfConfig",
    ["esp_mountpoint", "source_path", "distro", "vmlinux", "initrd", "bootarg", "keep"],
)


class SbfConfig(_SbfConfig):
    """Class representing sbf persistent configuration values.

    An ``SbfConfig`` is built once when the configuration file is
    loaded and is not modified afterwards: use ``_replace()`` to
    obtain a changed copy.
    """

    __slots__ = ()

    def __new__(
        cls,
        esp_mountpoint=None,
        source_path=None,
        distro=None,
        vmlinux=None,
        initrd=None,
        bootarg=None,
        keep=None,
    ):
        """Initialise a new ``SbfConfig`` object with the supplied
        configuration values, or defaults for any unset arguments.

        :param esp_mountpoint: the EFI System Partition mount point
        :param source_path: the directory searched for kernel images
        :param distro: the distribution name used in entry titles
        :param vmlinux: the kernel image file name template
        :param initrd: the initramfs file name template
        :param bootarg: the kernel command line template
        :param keep: the number of kernels kept by ``update``, or
                     ``None`` to keep every available kernel
        """
        if keep is not None and keep < 1:
            raise ValueError("keep must be a positive integer: %s" % keep)
        return _SbfConfig.__new__(
            cls,
            esp_mountpoint or DEFAULT_ESP_MOUNTPOINT,
            source_path or DEFAULT_SOURCE_PATH,
            distro or DEFAULT_DISTRO,
            vmlinux or DEFAULT_VMLINUX,
            initrd or DEFAULT_INITRD,
            bootarg if bootarg is not None else "",
            keep,
        )

    def __str__(self):
        """Return a string representation of this ``SbfConfig`` in
        systemd-boot-friend.conf (INI) notation.
        """
        cstr = "[global]\n"
        cstr += "esp_mountpoint = %s\n" % self.esp_mountpoint
        cstr += "source_path = %s\n" % self.source_path
        cstr += "distro = %s\n" % self.distro
        cstr += "vmlinux = %s\n" % self.vmlinux
        cstr += "initrd = %s\n" % self.initrd
        cstr += "bootarg = %s\n" % self.bootarg
        if self.keep is not None:
            cstr += "keep = %d\n" % self.keep
        return cstr

    @property
    def dest_path(self):
        """The absolute path of the ESP directory holding kernel images."""
        return path_join(self.esp_mountpoint, REL_DEST_PATH)

    @property
    def entries_path(self):
        """The absolute path of the ESP boot loader entries directory."""
        return path_join(self.esp_mountpoint, REL_ENTRIES_PATH)


#
# Generic routines for parsing name-value pairs.
#


def blank_or_comment(line):
    """Test whether line is empty of contains a comment.

    :param line: the line of text to be checked.
    :returns: ``True`` if the line is blank or a comment,
              and ``False`` otherwise.
    :rtype: bool
    """
    return not line.strip() or line.lstrip().startswith("#")


def parse_name_value(nvp, separator="=", allow_empty=False, strip_quotes=True):
    """Parse a name value pair string.

    Parse a ``name='value'`` style string into its component parts,
    stripping quotes from the value if necessary, and return the
    result as a (name, value) tuple.

    :param nvp: A name value pair optionally with an in-line
                comment.
    :param separator: The separator character used in this name
                      value pair, or ``None`` to split on white
                      space.
    :param allow_empty: Accept a name with no value.
    :param strip_quotes: Remove quotes surrounding the value.
    :returns: A ``(name, value)`` tuple.
    :rtype: (string, string) tuple.
    """
    val_err = ValueError("Malformed name/value pair: %s" % nvp)
    try:
        # Only strip newlines: values may contain embedded
        # whitespace anywhere within the string.
        name, value = nvp.rstrip("\n").split(separator, 1)
    except ValueError:
        if not allow_empty or not nvp.strip():
            raise val_err
        name = nvp.strip()
        value = None

    name = name.strip()
    value = value.strip() if value else None

    valid_name_chars = string.ascii_letters + string.digits + "_-"
    bad_chars = [c for c in name if c not in valid_name_chars]
    if any(bad_chars):
        raise ValueError("Invalid characters in name: %s (%s)" % (name, bad_chars))

    if value and strip_quotes:
        if value.startswith('"') or value.startswith("'"):
            quotes = "\"'"
            value = value.rstrip(quotes)
            value = value.lstrip(quotes)

    return (name, value)


__all__ = [
    # sbf module constants
    "DEFAULT_SBF_CONFIG_PATH",
    "DEFAULT_ESP_MOUNTPOINT",
    "DEFAULT_SOURCE_PATH",
    "DEFAULT_DISTRO",
    "VERSION_PLACEHOLDER",
    "DEFAULT_VMLINUX",
    "DEFAULT_INITRD",
    "REL_DEST_PATH",
    "REL_ENTRIES_PATH",
    "REL_LOADER_CONF",
    "UCODE_IMAGE",
    "SBF_FILE_MODE",
    # API Classes
    "SbfConfig",
    # sbf exception classes
    "SbfError",
    "SbfStructuralError",
    "SbfLookupError",
    "SbfResourceError",
    "SbfConfigError",
    # sbf logger class (used by test suite)
    "SbfLogger",
    # Debug logging
    "get_debug_mask",
    "set_debug_mask",
    "SBF_DEBUG_VERSION",
    "SBF_DEBUG_SCAN",
    "SBF_DEBUG_PLAN",
    "SBF_DEBUG_ENTRY",
    "SBF_DEBUG_COMMAND",
    "SBF_DEBUG_ALL",
    # Utility routines
    "blank_or_comment",
    "parse_name_value",
]

# vim: set et ts=4 sw=4

# Copyright Red Hat
#
# sbf/bootloader.py - systemd-boot entry store
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.bootloader`` module defines classes for working with the
on-disk systemd-boot configuration on the EFI System Partition: the
``BootEntry`` class represents an individual Boot Loader Specification
entry, the ``LoaderConf`` class holds the global loader settings
(the default entry and the menu timeout), and the ``BootEntryStore``
class reads and writes both.

Entries managed by sbf are stored in ``<ESP>/loader/entries`` with a
file name of the form ``<version>.conf``: the file name is parsed with
the same version parser that is used for kernel images so that an
installed entry compares equal to the available kernel it was created
from.

All files are written to a temporary file in the destination
directory and renamed into place so that a failed write never leaves
a partial entry behind.
"""
from collections import namedtuple
from os import fdatasync, fdopen, listdir, rename, chmod, unlink
from os.path import (
    basename,
    dirname,
    exists as path_exists,
    join as path_join,
    normpath,
)
from tempfile import mkstemp
import logging

from sbf import *
from sbf.version import (
    KernelNoMatchError,
    KernelMalformedError,
    parse_kernel_filename,
)
from sbf.kernelset import KernelEntry, KernelSet

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_ENTRY)

_log_debug = _log.debug
_log_debug_entry = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: File name template for sbf managed boot entries.
ENTRY_PATTERN = VERSION_PLACEHOLDER + ".conf"

#: BLS key for the entry title.
BLS_TITLE = "title"
#: BLS key for the kernel image.
BLS_LINUX = "linux"
#: BLS key for an initramfs image (may repeat).
BLS_INITRD = "initrd"
#: BLS key for the kernel command line.
BLS_OPTIONS = "options"

#: loader.conf key for the default entry.
LOADER_DEFAULT = "default"
#: loader.conf key for the menu timeout.
LOADER_TIMEOUT = "timeout"

#: ESP relative directory holding the images of sbf managed entries.
MANAGED_IMAGE_DIR = "/" + REL_DEST_PATH


class EspAccessError(SbfResourceError):
    """The ESP cannot be read or written: the run cannot continue."""

    @staticmethod
    def missing_path(path):
        return EspAccessError(
            "%s does not exist: run 'sbf init' or check ESP_MOUNTPOINT" % path
        )

    @staticmethod
    def from_os_error(path, err):
        return EspAccessError("Cannot write %s: %s" % (path, err.strerror or err))

    @staticmethod
    def unreadable(path, err):
        return EspAccessError("Cannot read %s: %s" % (path, err.strerror or err))


def is_managed_image(rel_path):
    """Return ``True`` if the ESP relative path ``rel_path`` names an
    image in the sbf image directory.
    """
    return bool(rel_path) and dirname(normpath(rel_path)) == MANAGED_IMAGE_DIR


def write_file_atomic(path, data, mode=SBF_FILE_MODE):
    """Write ``data`` to ``path`` via a temporary file in the same
    directory that is renamed into place once fully written.

    :param path: The destination path.
    :param data: The string data to write.
    :param mode: The file mode for the new file.
    :raises: ``OSError`` if the data cannot be written.
    """
    (tmp_fd, tmp_path) = mkstemp(prefix=".sbf", dir=dirname(path))
    try:
        with fdopen(tmp_fd, "w") as f:
            f.write(data)
            f.flush()
            fdatasync(f.fileno())
        rename(tmp_path, path)
        chmod(path, mode)
    except Exception as e:
        _log_error("Error writing file %s: %s", path, e)
        if path_exists(tmp_path):
            try:
                unlink(tmp_path)
            except OSError:
                _log_error("Error unlinking temporary path %s", tmp_path)
        raise


class BootEntry(object):
    """A class representing a BLS boot entry written by sbf.

    A ``BootEntry`` holds a title, a kernel image path, an ordered
    list of initramfs image paths, and a kernel command line. Paths
    are relative to the root of the ESP and start with '/'.
    """

    def __init__(self, entry_id, title, linux, initrd=None, options=None):
        """Initialise a new ``BootEntry``.

        :param entry_id: The entry file name, for e.g. "6.1.0-aosc.conf".
        :param title: The menu title.
        :param linux: The ESP relative path of the kernel image.
        :param initrd: A list of ESP relative initramfs paths.
        :param options: The kernel command line.
        """
        if not entry_id:
            raise ValueError("BootEntry requires an entry_id.")
        if not linux:
            raise ValueError("BootEntry requires a linux image path.")
        self.entry_id = entry_id
        self.title = title
        self.linux = linux
        self.initrd = list(initrd or [])
        self.options = options or ""

    def __str__(self):
        """Format this ``BootEntry`` as a BLS configuration snippet."""
        lines = []
        if self.title:
            lines.append("%s %s" % (BLS_TITLE, self.title))
        lines.append("%s %s" % (BLS_LINUX, self.linux))
        for initrd in self.initrd:
            lines.append("%s %s" % (BLS_INITRD, initrd))
        if self.options:
            lines.append("%s %s" % (BLS_OPTIONS, self.options))
        return "\n".join(lines) + "\n"

    def __repr__(self):
        return 'BootEntry("%s", "%s", "%s", initrd=%s, options="%s")' % (
            self.entry_id,
            self.title,
            self.linux,
            self.initrd,
            self.options,
        )

    def __eq__(self, other):
        if not isinstance(other, BootEntry):
            return NotImplemented
        return self.entry_id == other.entry_id and str(self) == str(other)

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    @classmethod
    def from_file(cls, entry_file):
        """Read a ``BootEntry`` from the BLS snippet at ``entry_file``.

        Keys not used by sbf are ignored.

        :param entry_file: The path to the entry file.
        :returns: A new ``BootEntry``.
        :raises: ``ValueError`` if the entry has no ``linux`` key.
        """
        title = None
        linux = None
        initrd = []
        options = None
        with open(entry_file, "r") as ef:
            for line in ef:
                if blank_or_comment(line):
                    continue
                (key, value) = parse_name_value(line, separator=None, allow_empty=True)
                if key == BLS_TITLE:
                    title = value
                elif key == BLS_LINUX:
                    linux = value
                elif key == BLS_INITRD and value:
                    initrd.append(value)
                elif key == BLS_OPTIONS:
                    options = value
                else:
                    _log_debug_entry("Ignoring BLS key '%s' in %s", key, entry_file)
        return cls(basename(entry_file), title, linux, initrd=initrd, options=options)


_LoaderConf = namedtuple("LoaderConf", ["default", "timeout", "other"])


class LoaderConf(_LoaderConf):
    """Global systemd-boot settings from ``loader/loader.conf``.

    ``other`` holds any further (key, value) pairs, which are written
    back unchanged.
    """

    __slots__ = ()

    def __new__(cls, default=None, timeout=None, other=()):
        return _LoaderConf.__new__(cls, default, timeout, tuple(other))

    def __str__(self):
        lines = []
        if self.default:
            lines.append("%s %s" % (LOADER_DEFAULT, self.default))
        if self.timeout is not None:
            lines.append("%s %d" % (LOADER_TIMEOUT, self.timeout))
        for (key, value) in self.other:
            lines.append("%s %s" % (key, value) if value is not None else key)
        return "\n".join(lines) + "\n" if lines else ""


class BootEntryStore(object):
    """The boot entries and loader configuration on an ESP."""

    def __init__(self, esp_mountpoint):
        self.esp_mountpoint = esp_mountpoint

    @property
    def entries_path(self):
        return path_join(self.esp_mountpoint, REL_ENTRIES_PATH)

    @property
    def loader_conf_path(self):
        return path_join(self.esp_mountpoint, REL_LOADER_CONF)

    def entry_path(self, entry_id):
        return path_join(self.entries_path, entry_id)

    def load_entries(self):
        """Load all boot entries from the entries directory.

        Entries that cannot be read are logged and skipped.

        :returns: A dictionary mapping entry ids to ``BootEntry``.
        :raises: ``OSError`` if the entries directory cannot be read.
        """
        entries = {}
        _log_debug("Loading boot entries from '%s'", self.entries_path)
        for name in sorted(listdir(self.entries_path)):
            if not name.endswith(".conf"):
                continue
            try:
                entries[name] = BootEntry.from_file(self.entry_path(name))
            except (OSError, ValueError) as e:
                _log_warn("Could not load boot entry '%s': %s", name, e)
        _log_debug("Loaded %d entries", len(entries))
        return entries

    def find_entry(self, entry_id):
        """Return the ``BootEntry`` stored as ``entry_id``, or ``None``."""
        path = self.entry_path(entry_id)
        if not path_exists(path):
            return None
        return BootEntry.from_file(path)

    def write_entry(self, entry):
        """Write ``entry`` to the entries directory.

        :raises: ``OSError`` if the entry cannot be written.
        """
        path = self.entry_path(entry.entry_id)
        _log_debug_entry("Writing boot entry %s", path)
        write_file_atomic(path, str(entry))

    def delete_entry(self, entry_id):
        """Remove the entry file for ``entry_id``.

        :raises: ``ValueError`` if the entry does not exist, or
                 ``OSError`` if it cannot be removed.
        """
        path = self.entry_path(entry_id)
        if not path_exists(path):
            raise ValueError("Entry does not exist: %s" % path)
        _log_debug_entry("Removing boot entry %s", path)
        unlink(path)

    def read_loader_conf(self):
        """Read ``loader.conf``. A missing file yields an empty
        ``LoaderConf``.

        :rtype: LoaderConf
        """
        path = self.loader_conf_path
        if not path_exists(path):
            return LoaderConf()
        default = None
        timeout = None
        other = []
        try:
            with open(path, "r") as f:
                lines = f.readlines()
        except OSError as e:
            raise EspAccessError.unreadable(path, e) from e
        for line in lines:
            if blank_or_comment(line):
                continue
            try:
                (key, value) = parse_name_value(
                    line, separator=None, allow_empty=True, strip_quotes=False
                )
            except ValueError:
                other.append((line.strip(), None))
                continue
            if key == LOADER_DEFAULT:
                default = value
            elif key == LOADER_TIMEOUT:
                try:
                    timeout = int(value)
                except (TypeError, ValueError):
                    _log_warn("Ignoring invalid timeout in %s: %s", path, value)
            else:
                other.append((key, value))
        return LoaderConf(default=default, timeout=timeout, other=other)

    def write_loader_conf(self, conf):
        """Write ``conf`` to ``loader.conf``.

        :raises: ``EspAccessError`` if the file cannot be written.
        """
        path = self.loader_conf_path
        _log_debug_entry("Writing loader configuration %s", path)
        try:
            write_file_atomic(path, str(conf))
        except OSError as e:
            raise EspAccessError.from_os_error(path, e) from e

    def get_default(self):
        """Return the entry id of the default entry, or ``None``."""
        return self.read_loader_conf().default

    def set_default(self, entry_id):
        """Set the default entry to ``entry_id``, or clear it if
        ``entry_id`` is ``None``.
        """
        conf = self.read_loader_conf()
        if conf.default == entry_id:
            return
        self.write_loader_conf(conf._replace(default=entry_id))

    def set_timeout(self, timeout):
        """Set the boot menu timeout in seconds."""
        conf = self.read_loader_conf()
        if conf.timeout == timeout:
            return
        self.write_loader_conf(conf._replace(timeout=timeout))

    def installed_kernels(self):
        """Return the ``KernelSet`` of kernels with an sbf entry.

        Entry files whose names do not parse as kernel versions, or
        whose kernel image is not in the sbf image directory, are not
        managed by sbf and are skipped.

        :rtype: KernelSet
        """
        if not path_exists(self.entries_path):
            return KernelSet()
        kernels = []
        for (entry_id, entry) in self.load_entries().items():
            try:
                version = parse_kernel_filename(entry_id, ENTRY_PATTERN)
            except KernelNoMatchError:
                continue
            except KernelMalformedError as e:
                _log_debug_entry("Skipping foreign entry %s: %s", entry_id, e.reason)
                continue
            if not is_managed_image(entry.linux):
                _log_debug_entry(
                    "Skipping foreign entry %s: image %s", entry_id, entry.linux
                )
                continue
            initrds = [i for i in entry.initrd if basename(i) != UCODE_IMAGE]
            kernels.append(
                KernelEntry(
                    version,
                    entry.linux,
                    initrd_path=initrds[-1] if initrds else None,
                    ucode_bundled=len(initrds) != len(entry.initrd),
                )
            )
        return KernelSet.build(kernels)


def entry_id_for(version):
    """Return the entry id used for the kernel ``version``."""
    return version.format(ENTRY_PATTERN)


__all__ = [
    "ENTRY_PATTERN",
    "MANAGED_IMAGE_DIR",
    "EspAccessError",
    "is_managed_image",
    "write_file_atomic",
    "BootEntry",
    "LoaderConf",
    "BootEntryStore",
    "entry_id_for",
]

# vim: set et ts=4 sw=4 :

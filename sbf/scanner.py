# Copyright Red Hat
#
# sbf/scanner.py - Kernel directory scanner
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.scanner`` module lists a kernel source directory and
classifies each entry found there: kernel images, their companion
initramfs images, the microcode image, malformed kernel names, and
unrelated files.

The result of a scan is a ``ScanResult`` containing one
``Classification`` per directory entry. Call ``ScanResult.kernel_set()``
to obtain the ``KernelSet`` of available kernels.
"""
from os import listdir
from os.path import isfile, join as path_join
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
_log.set_debug_mask(SBF_DEBUG_SCAN)

_log_debug = _log.debug
_log_debug_scan = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: A kernel image.
CLASS_KERNEL = "kernel"
#: An initramfs image.
CLASS_INITRD = "initrd"
#: The microcode image.
CLASS_UCODE = "ucode"
#: A file unrelated to kernels.
CLASS_NO_MATCH = "nomatch"
#: A file named like a kernel or initramfs with an invalid version.
CLASS_MALFORMED = "malformed"


class DirectoryUnavailableError(SbfResourceError):
    """The kernel source directory is missing or cannot be read."""

    path = None

    def __init__(self, path, reason):
        super(DirectoryUnavailableError, self).__init__(
            "Cannot read kernel directory %s: %s" % (path, reason)
        )
        self.path = path


class Classification(object):
    """The classification of a single directory entry."""

    def __init__(self, name, kind, version=None, reason=None):
        self.name = name
        self.kind = kind
        self.version = version
        self.reason = reason

    def __repr__(self):
        return 'Classification("%s", "%s", version=%s, reason=%s)' % (
            self.name,
            self.kind,
            self.version,
            self.reason,
        )


class ScanResult(object):
    """The result of scanning a kernel source directory."""

    #: The directory that was scanned.
    path = None
    #: ``Classification`` objects, one per entry, sorted by name.
    classifications = None
    #: Absolute path to the microcode image, if present.
    ucode_path = None

    def __init__(self, path, classifications, ucode_path=None, kernels=None):
        self.path = path
        self.classifications = classifications
        self.ucode_path = ucode_path
        self._kernels = kernels or []

    def _of_kind(self, kind):
        return [c for c in self.classifications if c.kind == kind]

    @property
    def kernels(self):
        """The ``KernelEntry`` objects for recognised kernel images."""
        return list(self._kernels)

    @property
    def malformed(self):
        """Classifications of names rejected as malformed."""
        return self._of_kind(CLASS_MALFORMED)

    @property
    def no_match_count(self):
        """The number of entries that are not kernel files."""
        return len(self._of_kind(CLASS_NO_MATCH))

    @property
    def has_ucode(self):
        return self.ucode_path is not None

    def kernel_set(self):
        """Build the ``KernelSet`` of kernels found by this scan."""
        return KernelSet.build(self._kernels)


def _classify(name, path, config):
    """Classify a single directory entry ``name``."""
    if name == UCODE_IMAGE and isfile(path):
        return Classification(name, CLASS_UCODE)

    if not isfile(path):
        return Classification(name, CLASS_NO_MATCH, reason="not a regular file")

    for (kind, pattern) in ((CLASS_KERNEL, config.vmlinux), (CLASS_INITRD, config.initrd)):
        try:
            version = parse_kernel_filename(name, pattern)
            return Classification(name, kind, version=version)
        except KernelMalformedError as e:
            return Classification(name, CLASS_MALFORMED, reason=e.reason)
        except KernelNoMatchError:
            continue

    return Classification(name, CLASS_NO_MATCH)


def scan_directory(path, config):
    """Scan the directory at ``path`` for kernel images.

    Each directory entry is classified using the kernel and initramfs
    file name templates in ``config``. Kernel images are matched with
    the initramfs image that has the same version; a kernel without an
    initramfs image is still returned, with ``initrd_path`` set to
    ``None``.

    :param path: The directory to scan.
    :param config: The ``SbfConfig`` providing file name templates.
    :returns: A new ``ScanResult``.
    :rtype: ScanResult
    :raises: ``DirectoryUnavailableError`` if ``path`` does not exist
             or cannot be read.
    """
    _log_debug("Scanning kernel directory '%s'", path)
    try:
        names = sorted(listdir(path))
    except OSError as e:
        raise DirectoryUnavailableError(path, e.strerror or str(e)) from e

    classifications = []
    for name in names:
        c = _classify(name, path_join(path, name), config)
        _log_debug_scan("Classified '%s' as %s", name, c.kind)
        if c.kind == CLASS_MALFORMED:
            _log_warn("Skipping malformed kernel file '%s': %s", name, c.reason)
        classifications.append(c)

    initrds = {}
    for c in classifications:
        if c.kind == CLASS_INITRD:
            initrds.setdefault(c.version, []).append(c.name)

    kernels = []
    for c in classifications:
        if c.kind != CLASS_KERNEL:
            continue
        initrd_path = None
        if c.version in initrds:
            # Prefer the name the template would produce for this version
            candidates = sorted(initrds[c.version])
            expected = c.version.format(config.initrd)
            initrd_name = expected if expected in candidates else candidates[-1]
            initrd_path = path_join(path, initrd_name)
        else:
            _log_info("No initramfs image found for kernel %s", c.version)
        kernels.append(KernelEntry(c.version, path_join(path, c.name), initrd_path))

    ucode = [c for c in classifications if c.kind == CLASS_UCODE]
    ucode_path = path_join(path, ucode[0].name) if ucode else None

    result = ScanResult(path, classifications, ucode_path=ucode_path, kernels=kernels)
    _log_debug(
        "Found %d kernels in '%s' (%d malformed, %d other files)",
        len(kernels),
        path,
        len(result.malformed),
        result.no_match_count,
    )
    return result


__all__ = [
    "CLASS_KERNEL",
    "CLASS_INITRD",
    "CLASS_UCODE",
    "CLASS_NO_MATCH",
    "CLASS_MALFORMED",
    "DirectoryUnavailableError",
    "Classification",
    "ScanResult",
    "scan_directory",
]

# vim: set et ts=4 sw=4 :

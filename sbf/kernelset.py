# Copyright Red Hat
#
# sbf/kernelset.py - Kernel entries and kernel sets
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.kernelset`` module defines the ``KernelEntry`` class,
binding a ``KernelVersion`` to the files that implement it, and the
``KernelSet`` class: a de-duplicated collection of kernel entries keyed
by version.

Kernel sets are used both for the kernels available in the source
directory and for the kernels installed on the EFI System Partition.
They are built fresh for each operation and are never persisted.
"""
import logging

from sbf import *
from sbf.version import KernelVersion

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_SCAN)

_log_debug = _log.debug
_log_debug_scan = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class KernelEntry(object):
    """A ``KernelVersion`` bound to a concrete location.

    For available kernels ``image_path`` and ``initrd_path`` are paths
    in the source directory; for installed kernels they are the paths
    recorded in the boot loader entry, relative to the ESP.
    """

    def __init__(self, version, image_path, initrd_path=None, ucode_bundled=False):
        if not isinstance(version, KernelVersion):
            raise TypeError("version must be a KernelVersion: %s" % repr(version))
        self._version = version
        self._image_path = image_path
        self._initrd_path = initrd_path
        self._ucode_bundled = bool(ucode_bundled)

    @property
    def version(self):
        return self._version

    @property
    def image_path(self):
        return self._image_path

    @property
    def initrd_path(self):
        return self._initrd_path

    @property
    def ucode_bundled(self):
        return self._ucode_bundled

    def __str__(self):
        return str(self._version)

    def __repr__(self):
        return 'KernelEntry(%s, "%s", initrd_path=%s, ucode_bundled=%s)' % (
            repr(self._version),
            self._image_path,
            '"%s"' % self._initrd_path if self._initrd_path else None,
            self._ucode_bundled,
        )

    def __eq__(self, other):
        if not isinstance(other, KernelEntry):
            return NotImplemented
        return (
            self._version == other._version
            and self._image_path == other._image_path
            and self._initrd_path == other._initrd_path
            and self._ucode_bundled == other._ucode_bundled
        )

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self._version, self._image_path, self._initrd_path))


def _sort_key(entry):
    """Descending display order: release first, then variant so that
    entries sharing a release are listed deterministically.
    """
    return (entry.version.release_key, entry.version.variant or "")


class KernelSet(object):
    """An ordered, de-duplicated collection of ``KernelEntry`` objects
    keyed by ``KernelVersion``.

    Iterating over a ``KernelSet`` yields entries newest first.
    """

    def __init__(self, entries=None):
        """Initialise a ``KernelSet`` from a mapping of
        ``KernelVersion`` to ``KernelEntry``. Use ``KernelSet.build()``
        to construct a set from a sequence that may contain duplicates.
        """
        self._entries = dict(entries or {})

    @classmethod
    def build(cls, entries):
        """Build a new ``KernelSet`` from a sequence of entries.

        If two entries share a ``KernelVersion`` the entry whose
        ``raw_name`` sorts later wins. This is a deterministic
        tie-break only: the directory that produced the duplicate
        is already inconsistent.

        :param entries: An iterable of ``KernelEntry`` objects.
        :returns: A new ``KernelSet``.
        :rtype: KernelSet
        """
        kernels = {}
        for entry in entries:
            version = entry.version
            if version in kernels:
                other = kernels[version]
                winner = max(other, entry, key=lambda e: e.version.raw_name)
                _log_warn(
                    "Duplicate kernel %s: using '%s' over '%s'",
                    version,
                    winner.version.raw_name,
                    (entry if winner is other else other).version.raw_name,
                )
                kernels[version] = winner
            else:
                kernels[version] = entry
        _log_debug_scan("Built KernelSet with %d kernels", len(kernels))
        return cls(kernels)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self.sorted_descending())

    def __contains__(self, version):
        return self.contains(version)

    def __eq__(self, other):
        if not isinstance(other, KernelSet):
            return NotImplemented
        return self._entries == other._entries

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __str__(self):
        return ", ".join(str(entry) for entry in self)

    def __repr__(self):
        return "KernelSet([%s])" % ", ".join(repr(entry) for entry in self)

    def contains(self, version):
        """Return ``True`` if ``version`` is a member of this set."""
        return version in self._entries

    def get(self, version):
        """Return the ``KernelEntry`` for ``version``, or ``None``."""
        return self._entries.get(version)

    def versions(self):
        """Return the versions in this set, newest first."""
        return [entry.version for entry in self.sorted_descending()]

    def sorted_descending(self):
        """Return the entries of this set as a list, newest first."""
        return sorted(self._entries.values(), key=_sort_key, reverse=True)

    def difference(self, other):
        """Return a new ``KernelSet`` containing the entries of this
        set whose versions are not present in ``other``.
        """
        return KernelSet(
            (version, entry)
            for (version, entry) in self._entries.items()
            if version not in other
        )

    def latest(self):
        """Return the newest entry in this set, or ``None`` if the set
        is empty.
        """
        if not self._entries:
            return None
        return self.sorted_descending()[0]


__all__ = [
    "KernelEntry",
    "KernelSet",
]

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# sbf/default.py - Default boot entry selection
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.default`` module maintains the systemd-boot default entry.

Once at least one kernel is installed exactly one installed kernel is
the default. A system with no installed kernels has no default. The
``DefaultSelector`` class implements the transitions between these
states; the timeout setter lives here too since both values are kept
in ``loader.conf``.
"""
import logging

from sbf import *
from sbf.version import KernelNoMatchError, KernelMalformedError, parse_kernel_filename
from sbf.bootloader import ENTRY_PATTERN, entry_id_for

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_ENTRY)

_log_debug = _log.debug
_log_debug_entry = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class NotInstalledError(SbfLookupError):
    """The requested default kernel is not installed."""

    version = None

    def __init__(self, version):
        super(NotInstalledError, self).__init__("Kernel %s is not installed" % version)
        self.version = version


class EmptyKernelListError(SbfLookupError):
    """There are no installed kernels to choose a default from."""

    def __init__(self):
        super(EmptyKernelListError, self).__init__(
            "No kernels are installed: the default entry is unset"
        )


def _entry_id(entry):
    """Return the entry id of an installed ``KernelEntry``."""
    raw_name = entry.version.raw_name
    if raw_name and raw_name.endswith(".conf"):
        return raw_name
    return entry_id_for(entry.version)


class DefaultSelector(object):
    """Choose and persist the default boot entry."""

    def __init__(self, store):
        """Initialise a ``DefaultSelector`` for the entries in the
        ``BootEntryStore`` ``store``.
        """
        self.store = store

    def current(self, installed):
        """Return the installed ``KernelVersion`` that is the current
        default, or ``None`` if the default is unset or does not
        refer to an installed kernel.
        """
        entry_id = self.store.get_default()
        if not entry_id:
            return None
        try:
            version = parse_kernel_filename(entry_id, ENTRY_PATTERN)
        except (KernelNoMatchError, KernelMalformedError):
            _log_debug_entry("Default entry '%s' is not an sbf entry", entry_id)
            return None
        entry = installed.get(version)
        return entry.version if entry else None

    def is_default(self, version, installed):
        """Return ``True`` if ``version`` is the current default."""
        return self.current(installed) == version

    def _set(self, entry):
        _log_info("Setting %s as the default boot entry", entry.version)
        self.store.set_default(_entry_id(entry))
        return entry.version

    def set_default(self, version, installed):
        """Make the installed kernel ``version`` the default.

        :param version: The ``KernelVersion`` to select.
        :param installed: The ``KernelSet`` of installed kernels.
        :returns: The selected ``KernelVersion``.
        :raises: ``NotInstalledError`` if ``version`` is not installed.
        """
        entry = installed.get(version)
        if entry is None:
            raise NotInstalledError(version)
        return self._set(entry)

    def clear(self):
        """Unset the default entry."""
        if self.store.get_default() is not None:
            _log_info("Clearing the default boot entry")
            self.store.set_default(None)

    def select_latest(self, installed):
        """Make the newest installed kernel the default.

        :returns: The selected ``KernelVersion``.
        :raises: ``EmptyKernelListError`` if no kernel is installed; the
                 default is cleared before raising.
        """
        latest = installed.latest()
        if latest is None:
            self.clear()
            raise EmptyKernelListError()
        return self._set(latest)

    def replace(self, version, remaining):
        """Pick a new default before the default kernel ``version`` is
        removed.

        :param version: The ``KernelVersion`` about to be removed.
        :param remaining: The ``KernelSet`` of kernels that will still
                          be installed after the removal.
        :returns: The new default ``KernelVersion``, or ``None`` if
                  there is no replacement. The default is left in
                  place in that case: the caller clears it once the
                  removal is complete.
        """
        candidates = remaining.difference([version])
        latest = candidates.latest()
        if latest is None:
            _log_warn("Removing %s leaves no kernel to use as default", version)
            return None
        return self._set(latest)

    def ensure(self, installed):
        """Make sure exactly one installed kernel is the default.

        The current default is kept if it refers to an installed
        kernel; otherwise the newest installed kernel is selected.

        :returns: The default ``KernelVersion``.
        :raises: ``EmptyKernelListError`` if no kernel is installed.
        """
        current = self.current(installed)
        if current is not None:
            return current
        return self.select_latest(installed)


def set_timeout(store, timeout):
    """Set the boot menu timeout.

    :param store: The ``BootEntryStore`` to update.
    :param timeout: The timeout in seconds.
    :raises: ``ValueError`` if ``timeout`` is not a non-negative
             integer.
    """
    try:
        timeout = int(timeout)
    except (TypeError, ValueError) as e:
        raise ValueError("Invalid timeout: %s" % timeout) from e
    if timeout < 0:
        raise ValueError("Timeout must not be negative: %d" % timeout)
    _log_info("Setting boot menu timeout to %d seconds", timeout)
    store.set_timeout(timeout)
    return timeout


__all__ = [
    "NotInstalledError",
    "EmptyKernelListError",
    "DefaultSelector",
    "set_timeout",
]

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# sbf/reconcile.py - Kernel reconciliation planning
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.reconcile`` module compares the set of available kernels
with the set of installed kernels and produces a
``ReconciliationPlan``: an ordered list of ``Install``, ``Remove``
and ``Keep`` actions.

``reconcile()`` performs no I/O. Calling it twice with the same
arguments returns equal plans.
"""
import logging

from sbf import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_PLAN)

_log_debug = _log.debug
_log_debug_plan = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Install selected or missing kernels. Never removes.
MODE_INSTALL = "install"
#: Remove selected or obsolete kernels.
MODE_REMOVE = "remove"
#: Install the newest kernels and remove everything else.
MODE_UPDATE = "update"

_modes = [MODE_INSTALL, MODE_REMOVE, MODE_UPDATE]

ACTION_INSTALL = "install"
ACTION_REMOVE = "remove"
ACTION_KEEP = "keep"


class UnknownKernelError(SbfLookupError):
    """A kernel named in an explicit selection does not exist."""

    version = None

    def __init__(self, version, where):
        super(UnknownKernelError, self).__init__(
            "Kernel %s is not %s" % (version, where)
        )
        self.version = version

    @staticmethod
    def not_available(version):
        return UnknownKernelError(version, "available")

    @staticmethod
    def not_installed(version):
        return UnknownKernelError(version, "installed")


class Action(object):
    """Base class for reconciliation plan actions."""

    verb = None

    def __init__(self, version):
        self.version = version

    def __str__(self):
        return "%s %s" % (self.verb, self.version)

    def __repr__(self):
        return "%s(%s)" % (self.__class__.__name__, repr(self.version))

    def __eq__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.verb == other.verb and self.version == other.version

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self.verb, self.version))


class Install(Action):
    """Copy a kernel to the ESP and write its boot entry."""

    verb = ACTION_INSTALL

    def __init__(self, entry):
        super(Install, self).__init__(entry.version)
        self.entry = entry

    def __repr__(self):
        return "Install(%s)" % repr(self.entry)

    def __eq__(self, other):
        if not isinstance(other, Install):
            return Action.__eq__(self, other)
        return self.entry == other.entry

    __hash__ = Action.__hash__


class Remove(Action):
    """Delete a kernel's files and boot entry from the ESP."""

    verb = ACTION_REMOVE


class Keep(Action):
    """Leave an installed kernel unchanged."""

    verb = ACTION_KEEP


class ReconciliationPlan(object):
    """An ordered sequence of actions and the lookup errors found
    while building it.

    Install actions are ordered newest first and precede Keep
    actions; Remove actions come last so that every install has
    been applied before anything is deleted.
    """

    def __init__(self, actions=None, errors=None):
        self.actions = list(actions or [])
        self.errors = list(errors or [])

    def __iter__(self):
        return iter(self.actions)

    def __len__(self):
        return len(self.actions)

    def __eq__(self, other):
        if not isinstance(other, ReconciliationPlan):
            return NotImplemented
        return self.actions == other.actions and [str(e) for e in self.errors] == [
            str(e) for e in other.errors
        ]

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __repr__(self):
        return "ReconciliationPlan(%s, errors=%s)" % (
            repr(self.actions),
            [str(e) for e in self.errors],
        )

    def _of_verb(self, verb):
        return [a for a in self.actions if a.verb == verb]

    @property
    def installs(self):
        return self._of_verb(ACTION_INSTALL)

    @property
    def removes(self):
        return self._of_verb(ACTION_REMOVE)

    @property
    def keeps(self):
        return self._of_verb(ACTION_KEEP)

    @property
    def changes(self):
        """``True`` if the plan contains any install or remove."""
        return any(a.verb != ACTION_KEEP for a in self.actions)


def _order(installs, keeps, removes):
    """Merge action lists into plan order."""
    def by_version(action):
        return (action.version.release_key, action.version.variant or "")

    return (
        sorted(installs, key=by_version, reverse=True)
        + sorted(keeps, key=by_version, reverse=True)
        + sorted(removes, key=by_version, reverse=True)
    )


def _install_or_keep(entry, installed, force, installs, keeps):
    if entry.version in installed and not force:
        keeps.append(Keep(entry.version))
    else:
        installs.append(Install(entry))


def reconcile(available, installed, force=False, selection=None, mode=MODE_INSTALL, keep=None):
    """Plan the actions needed to bring ``installed`` in line with
    ``available``.

    In ``MODE_INSTALL`` every available kernel that is not installed
    is installed, and kernels that are already installed are kept
    (or reinstalled if ``force`` is ``True``). Install runs never
    remove kernels.

    In ``MODE_REMOVE`` installed kernels that are no longer available
    are removed.

    In ``MODE_UPDATE`` the newest ``keep`` available kernels (or all
    of them if ``keep`` is ``None``) are installed as in
    ``MODE_INSTALL`` and every other installed kernel is removed.

    If ``selection`` is given the plan is restricted to the selected
    versions. A selected version that is not available (for install)
    or not installed (for remove) adds an ``UnknownKernelError`` to
    the plan's ``errors`` without affecting the other selections.
    A selection cannot be combined with ``MODE_UPDATE``.

    :param available: The ``KernelSet`` of available kernels.
    :param installed: The ``KernelSet`` of installed kernels.
    :param force: Reinstall kernels that are already installed.
    :param selection: An optional iterable of ``KernelVersion``.
    :param mode: One of ``MODE_INSTALL``, ``MODE_REMOVE`` or
                 ``MODE_UPDATE``.
    :param keep: The number of kernels to keep in ``MODE_UPDATE``.
    :returns: A new ``ReconciliationPlan``.
    :rtype: ReconciliationPlan
    """
    if mode not in _modes:
        raise ValueError("Invalid reconciliation mode: %s" % mode)
    if keep is not None and keep < 1:
        raise ValueError("keep must be a positive integer: %s" % keep)

    installs = []
    keeps = []
    removes = []
    errors = []

    if selection is not None:
        # Remove duplicates while preserving the caller's order
        selected = []
        for version in selection:
            if version not in selected:
                selected.append(version)
    else:
        selected = None

    _log_debug_plan(
        "Reconciling %d available and %d installed kernels (mode=%s, force=%s)",
        len(available),
        len(installed),
        mode,
        force,
    )

    if mode == MODE_INSTALL:
        if selected is None:
            for entry in available:
                _install_or_keep(entry, installed, force, installs, keeps)
            for entry in installed.difference(available):
                keeps.append(Keep(entry.version))
        else:
            for version in selected:
                entry = available.get(version)
                if entry is None:
                    errors.append(UnknownKernelError.not_available(version))
                    continue
                _install_or_keep(entry, installed, force, installs, keeps)

    elif mode == MODE_REMOVE:
        if selected is None:
            for entry in installed:
                if entry.version in available:
                    keeps.append(Keep(entry.version))
                else:
                    removes.append(Remove(entry.version))
        else:
            for version in selected:
                if version not in installed:
                    errors.append(UnknownKernelError.not_installed(version))
                    continue
                removes.append(Remove(version))

    else:
        if selected is not None:
            raise ValueError("Kernel selection is not supported in update mode")
        wanted = available.sorted_descending()
        if keep is not None:
            wanted = wanted[:keep]
        wanted_versions = [entry.version for entry in wanted]
        for entry in wanted:
            _install_or_keep(entry, installed, force, installs, keeps)
        for entry in installed:
            if entry.version not in wanted_versions:
                removes.append(Remove(entry.version))

    for error in errors:
        _log_debug_plan("Plan error: %s", error)

    plan = ReconciliationPlan(_order(installs, keeps, removes), errors)
    _log_debug_plan("Reconciliation plan: %s", repr(plan))
    return plan


__all__ = [
    "MODE_INSTALL",
    "MODE_REMOVE",
    "MODE_UPDATE",
    "ACTION_INSTALL",
    "ACTION_REMOVE",
    "ACTION_KEEP",
    "UnknownKernelError",
    "Action",
    "Install",
    "Remove",
    "Keep",
    "ReconciliationPlan",
    "reconcile",
]

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# sbf/materialize.py - Apply reconciliation plans to the ESP
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.materialize`` module executes a ``ReconciliationPlan``
against the EFI System Partition: kernel and initramfs images are
copied into ``<ESP>/EFI/systemd-boot-friend``, boot entries are
written to and removed from ``<ESP>/loader/entries``, and the default
entry is kept pointing at an installed kernel.

Image files are staged under a temporary name in the destination
directory and renamed into place only once every file needed by an
entry has been copied, so that running out of space never leaves a
half written image behind. A run that fails part way keeps the
actions already applied.
"""
from errno import ENOSPC, ENOENT
from hashlib import sha1
from os import chmod, fdopen, rename, unlink
from os.path import (
    basename,
    dirname,
    exists as path_exists,
    isdir,
    join as path_join,
    normpath,
)
from tempfile import mkstemp
import logging
import shutil

from sbf import *
from sbf.config import complete_bootarg
from sbf.version import KernelVersion
from sbf.kernelset import KernelEntry, KernelSet
from sbf.bootloader import (
    BootEntry,
    EspAccessError,
    entry_id_for,
    is_managed_image,
)
from sbf.reconcile import ACTION_INSTALL, ACTION_REMOVE, ACTION_KEEP
from sbf.default import EmptyKernelListError

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_ENTRY)

_log_debug = _log.debug
_log_debug_entry = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Block size for hashing image files
_hash_size = 1024**2


class NoSpaceError(SbfResourceError):
    """The ESP ran out of space while installing a kernel."""

    version = None

    def __init__(self, version, path):
        super(NoSpaceError, self).__init__(
            "No space left on device writing %s for kernel %s" % (path, version)
        )
        self.version = version


class SourceReadError(SbfResourceError):
    """A kernel, initramfs or microcode image in the source directory
    could not be read.
    """

    version = None

    def __init__(self, version, path, err):
        super(SourceReadError, self).__init__(
            "Cannot read %s for kernel %s: %s" % (path, version, err.strerror or err)
        )
        self.version = version


def _image_id_from_path(img_path):
    """Return the SHA1 digest of the file at ``img_path``."""
    digest = sha1(usedforsecurity=False)
    with open(img_path, "rb") as img_file:
        while True:
            hashdata = img_file.read(_hash_size)
            if not hashdata:
                break
            digest.update(hashdata)
    return digest.hexdigest()


def _esp_relative(path):
    """Return the ESP relative BLS path for an image copied to
    ``REL_DEST_PATH``.
    """
    return "/%s/%s" % (REL_DEST_PATH, basename(path))


class MaterializeResult(object):
    """The outcome of executing a reconciliation plan.

    ``failed`` and ``skipped`` hold ``(version, reason)`` tuples;
    ``warnings`` holds exceptions or messages that did not stop any
    action.
    """

    def __init__(self):
        self.installed = []
        self.unchanged = []
        self.kept = []
        self.removed = []
        self.skipped = []
        self.failed = []
        self.warnings = []
        self.default = None

    def __repr__(self):
        return (
            "MaterializeResult(installed=%s, unchanged=%s, removed=%s, "
            "skipped=%s, failed=%s, default=%s)"
            % (
                [str(v) for v in self.installed],
                [str(v) for v in self.unchanged],
                [str(v) for v in self.removed],
                [(str(v), str(r)) for (v, r) in self.skipped],
                [(str(v), str(r)) for (v, r) in self.failed],
                self.default,
            )
        )

    @property
    def success(self):
        """``True`` if no item in the plan failed."""
        return not self.failed


class EntryMaterializer(object):
    """Apply ``Install`` and ``Remove`` actions to the ESP."""

    def __init__(self, config, store, ucode_path=None, force=False, confirm=None):
        """Initialise a new ``EntryMaterializer``.

        :param config: The ``SbfConfig`` in use.
        :param store: The ``BootEntryStore`` for the ESP.
        :param ucode_path: The microcode image found by the scanner,
                           or ``None``.
        :param force: Overwrite differing files and entries without
                      asking.
        :param confirm: A callable taking a prompt string and returning
                        ``True`` to allow an overwrite, or ``None`` to
                        skip overwrites when ``force`` is unset.
        """
        self.config = config
        self.store = store
        self.ucode_path = ucode_path
        self.force = force
        self.confirm = confirm
        self._ucode_installed = False
        self._options = None

    @property
    def options(self):
        """The kernel command line written to every new entry."""
        if self._options is None:
            bootarg = self.config.bootarg.strip()
            if not bootarg:
                _log_warn(
                    "BOOTARG is empty: entries will be written without a kernel "
                    "command line and may not boot. Set BOOTARG in the sbf "
                    "configuration file."
                )
                self._options = ""
            else:
                self._options = complete_bootarg(bootarg)
        return self._options

    def make_entry(self, entry):
        """Build the ``BootEntry`` for the available ``KernelEntry``
        ``entry``.
        """
        initrd = []
        if self.ucode_path:
            initrd.append(_esp_relative(self.ucode_path))
        if entry.initrd_path:
            initrd.append(_esp_relative(entry.initrd_path))
        return BootEntry(
            entry_id_for(entry.version),
            "%s (%s)" % (self.config.distro, entry.version),
            _esp_relative(entry.image_path),
            initrd=initrd,
            options=self.options,
        )

    def _check_esp(self):
        for path in (self.config.dest_path, self.config.entries_path):
            if not isdir(path):
                raise EspAccessError.missing_path(path)

    def _confirm_overwrite(self, version, paths):
        if self.force:
            return True
        if self.confirm is None:
            return False
        prompt = "Overwrite %s for kernel %s?" % (", ".join(paths), version)
        return bool(self.confirm(prompt))

    def _stage(self, version, src, dest):
        """Copy ``src`` to a temporary file beside ``dest`` and return
        the temporary path.
        """
        (tmp_fd, tmp_path) = mkstemp(prefix=".sbf", dir=dirname(dest))
        try:
            with fdopen(tmp_fd, "wb") as f_tmp, open(src, "rb") as f_src:
                shutil.copyfileobj(f_src, f_tmp)
            chmod(tmp_path, SBF_FILE_MODE)
        except OSError as e:
            try:
                unlink(tmp_path)
            except OSError:
                _log_error("Error unlinking temporary path %s", tmp_path)
            if e.errno == ENOSPC:
                raise NoSpaceError(version, dest) from e
            if e.filename == src:
                raise SourceReadError(version, src, e) from e
            raise EspAccessError.from_os_error(dest, e) from e
        return tmp_path

    def _copy_files(self, version, files):
        """Copy each ``(src, dest)`` pair in ``files``, replacing the
        destinations only once every file has been staged.
        """
        staged = []
        try:
            for (src, dest) in files:
                _log_debug_entry("Copying %s to %s", src, dest)
                staged.append((self._stage(version, src, dest), dest))
        except SbfResourceError:
            for (tmp_path, dest) in staged:
                unlink(tmp_path)
            raise
        for (tmp_path, dest) in staged:
            try:
                rename(tmp_path, dest)
            except OSError as e:
                raise EspAccessError.from_os_error(dest, e) from e

    def _changed_files(self, version, files):
        """Return the ``(src, dest)`` pairs in ``files`` whose
        destination is missing or differs from the source image.

        :raises: ``SourceReadError`` if a source image cannot be read,
                 or ``EspAccessError`` if a destination cannot be read.
        """
        changed = []
        for (src, dest) in files:
            try:
                src_id = _image_id_from_path(src)
            except OSError as e:
                raise SourceReadError(version, src, e) from e
            if not path_exists(dest):
                changed.append((src, dest))
                continue
            try:
                dest_id = _image_id_from_path(dest)
            except OSError as e:
                raise EspAccessError.unreadable(dest, e) from e
            if src_id != dest_id:
                changed.append((src, dest))
        return changed

    def _install_ucode(self, version):
        """Copy the microcode image to the ESP if it is missing or out
        of date. The image is shared by every entry and is replaced
        without asking.
        """
        if not self.ucode_path or self._ucode_installed:
            return
        ucode_dest = path_join(self.config.dest_path, basename(self.ucode_path))
        changed = self._changed_files(version, [(self.ucode_path, ucode_dest)])
        if changed:
            _log_info("Updating microcode image %s", ucode_dest)
            self._copy_files(version, changed)
        self._ucode_installed = True

    def install(self, entry, result):
        """Install the available kernel ``entry``.

        :returns: The installed-side ``KernelEntry``, or ``None`` if
                  the kernel was skipped.
        :raises: ``NoSpaceError`` if the ESP is full,
                 ``SourceReadError`` if an image of this kernel cannot
                 be read, or ``EspAccessError`` if the ESP cannot be
                 written.
        """
        version = entry.version
        dest_path = self.config.dest_path
        boot_entry = self.make_entry(entry)

        files = [(entry.image_path, path_join(dest_path, basename(entry.image_path)))]
        if entry.initrd_path:
            initrd_dest = path_join(dest_path, basename(entry.initrd_path))
            files.append((entry.initrd_path, initrd_dest))
        else:
            _log_info("Kernel %s has no initramfs image", version)

        self._install_ucode(version)
        pending = self._changed_files(version, files)
        try:
            existing = self.store.find_entry(boot_entry.entry_id)
        except ValueError as e:
            _log_warn("Existing entry for %s is unreadable: %s", version, e)
            existing = False
        except OSError as e:
            entry_path = self.store.entry_path(boot_entry.entry_id)
            raise EspAccessError.unreadable(entry_path, e) from e

        installed = KernelEntry(
            KernelVersion(version.release, version.variant, raw_name=boot_entry.entry_id),
            boot_entry.linux,
            initrd_path=_esp_relative(entry.initrd_path) if entry.initrd_path else None,
            ucode_bundled=bool(self.ucode_path),
        )

        entry_changed = existing != boot_entry
        if not pending and not entry_changed:
            _log_info("Kernel %s is up to date: no changes", version)
            result.unchanged.append(version)
            return installed

        overwrites = [dest for (src, dest) in pending if path_exists(dest)]
        if existing is not None and entry_changed:
            overwrites.append(self.store.entry_path(boot_entry.entry_id))
        if overwrites and not self._confirm_overwrite(version, overwrites):
            _log_warn(
                "Not overwriting existing files for kernel %s: %s",
                version,
                ", ".join(overwrites),
            )
            result.skipped.append((version, "existing entry not overwritten"))
            return None

        _log_info("Installing kernel %s to %s", version, dest_path)
        self._copy_files(version, pending)
        if entry_changed:
            try:
                self.store.write_entry(boot_entry)
            except OSError as e:
                if e.errno == ENOSPC:
                    entry_path = self.store.entry_path(boot_entry.entry_id)
                    raise NoSpaceError(version, entry_path) from e
                raise EspAccessError.from_os_error(self.store.entries_path, e) from e
        result.installed.append(version)
        return installed

    def _delete_image(self, version, rel_path):
        path = path_join(self.config.esp_mountpoint, rel_path.lstrip("/"))
        if dirname(normpath(path)) != normpath(self.config.dest_path):
            _log_warn(
                "Not removing %s for kernel %s: not managed by sbf", rel_path, version
            )
            return
        if basename(path) == UCODE_IMAGE:
            return
        try:
            unlink(path)
            _log_debug_entry("Removed %s", path)
        except OSError as e:
            if e.errno != ENOENT:
                raise EspAccessError.from_os_error(path, e) from e
            _log_warn("%s for kernel %s is already missing", path, version)

    def remove(self, version, installed, remaining, selector, result):
        """Remove the installed kernel ``version``.

        If ``version`` is the current default a replacement is chosen
        from ``remaining`` before anything is deleted; if there is no
        replacement the default is cleared after the removal and an
        ``EmptyKernelListError`` is added to ``result.warnings``.

        :returns: ``True`` if the kernel was removed.
        """
        entry = installed.get(version)
        if entry is None:
            result.skipped.append((version, "not installed"))
            return False
        version = entry.version
        if not is_managed_image(entry.image_path):
            _log_warn(
                "Not removing kernel %s: %s is not managed by sbf",
                version,
                entry.image_path,
            )
            result.skipped.append((version, "entry not managed by sbf"))
            return False

        was_default = selector.is_default(version, installed)
        replacement = None
        if was_default:
            replacement = selector.replace(version, remaining)

        _log_info("Removing kernel %s", version)
        for rel_path in (entry.image_path, entry.initrd_path):
            if rel_path:
                self._delete_image(version, rel_path)

        entry_id = version.raw_name or entry_id_for(version)
        try:
            self.store.delete_entry(entry_id)
        except ValueError as e:
            _log_warn("%s", e)
        except OSError as e:
            raise EspAccessError.from_os_error(self.store.entry_path(entry_id), e) from e

        result.removed.append(version)
        if was_default and replacement is None:
            selector.clear()
            result.warnings.append(EmptyKernelListError())
        return True

    def execute(self, plan, selector, installed):
        """Execute ``plan``.

        :param plan: The ``ReconciliationPlan`` to apply.
        :param selector: The ``DefaultSelector`` for the ESP.
        :param installed: The ``KernelSet`` of installed kernels the
                          plan was computed against.
        :returns: A ``MaterializeResult``.
        :raises: ``EspAccessError`` if the ESP cannot be written; the
                 actions applied before the error are kept.
        """
        result = MaterializeResult()
        for error in plan.errors:
            _log_error("%s", error)
            result.failed.append((error.version, error))

        if plan.installs or plan.removes:
            self._check_esp()

        state = dict((entry.version, entry) for entry in installed)
        doomed = [action.version for action in plan.removes]

        for action in plan:
            if action.verb == ACTION_INSTALL:
                try:
                    new_entry = self.install(action.entry, result)
                except (NoSpaceError, SourceReadError) as e:
                    _log_error("Failed to install kernel %s: %s", action.version, e)
                    result.failed.append((action.version, e))
                    continue
                if new_entry is not None:
                    state[new_entry.version] = new_entry
            elif action.verb == ACTION_REMOVE:
                current = KernelSet(state)
                remaining = KernelSet(
                    (v, e) for (v, e) in state.items() if v not in doomed
                )
                if self.remove(action.version, current, remaining, selector, result):
                    state.pop(action.version, None)
            elif action.verb == ACTION_KEEP:
                result.kept.append(action.version)

        final = KernelSet(state)
        try:
            result.default = selector.ensure(final)
        except EmptyKernelListError as e:
            if not any(isinstance(w, EmptyKernelListError) for w in result.warnings):
                result.warnings.append(e)

        for warning in result.warnings:
            _log_warn("%s", warning)
        return result


__all__ = [
    "NoSpaceError",
    "SourceReadError",
    "MaterializeResult",
    "EntryMaterializer",
]

# vim: set et ts=4 sw=4 :

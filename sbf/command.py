# Copyright Red Hat
#
# sbf/command.py - sbf command line interface
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.command`` module provides both the sbf command line
interface infrastructure, and a simple procedural interface to the
``sbf`` library modules.

The procedural interface is used by the ``sbf`` command line tool,
and may be used by application programs, or interactively in the
Python shell by users who do not require all the features present
in the sbf object API.

Each API function takes the ``SbfConfig`` to use as its first
argument; the command line front end loads it from the file named by
``--config``.
"""
from argparse import ArgumentParser
from os import makedirs
from subprocess import run, CalledProcessError
import logging
import sys

from sbf import *
from sbf.config import SbfConfigFileMissing, load_sbf_config, write_sbf_config
from sbf.version import KernelMalformedError, parse_version
from sbf.scanner import scan_directory
from sbf.bootloader import BootEntryStore, EspAccessError
from sbf.reconcile import MODE_INSTALL, MODE_REMOVE, MODE_UPDATE, reconcile
from sbf.materialize import EntryMaterializer
from sbf.default import DefaultSelector, EmptyKernelListError, set_timeout

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_COMMAND)

_log_debug = _log.debug
_log_debug_cmd = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: The command used to install systemd-boot on the ESP.
BOOTCTL_CMD = "bootctl"

_CMD_ENV = {
    "LC_ALL": "C",
}

#: Marker printed beside installed or default kernels in listings.
_MARK = "[*]"
_NO_MARK = "[ ]"


#
# Command driven API
#


def _context(config):
    """Return the ``(store, selector)`` pair for ``config``."""
    store = BootEntryStore(config.esp_mountpoint)
    return (store, DefaultSelector(store))


def _parse_targets(targets):
    """Parse a list of kernel version strings.

    :returns: A ``(versions, failed)`` tuple, where ``failed`` is a
              list of ``(target, error)`` tuples for targets that are
              not valid kernel versions.
    """
    versions = []
    failed = []
    for target in targets:
        try:
            versions.append(parse_version(target))
        except KernelMalformedError as e:
            _log_error("Invalid kernel version '%s': %s", target, e.reason)
            failed.append((target, e))
    return (versions, failed)


def _apply(config, mode, targets=None, force=False, confirm=None):
    """Scan, reconcile and materialize in one pass.

    :returns: A ``MaterializeResult``.
    """
    scan = scan_directory(config.source_path, config)
    available = scan.kernel_set()
    (store, selector) = _context(config)
    installed = store.installed_kernels()

    selection = None
    failed = []
    if targets:
        (selection, failed) = _parse_targets(targets)

    plan = reconcile(
        available,
        installed,
        force=force,
        selection=selection,
        mode=mode,
        keep=config.keep if mode == MODE_UPDATE else None,
    )
    _log_debug_cmd("Executing plan: %s", repr(plan))

    materializer = EntryMaterializer(
        config, store, ucode_path=scan.ucode_path, force=force, confirm=confirm
    )
    result = materializer.execute(plan, selector, installed)
    result.failed.extend(failed)
    return result


def install_kernels(config, targets=None, force=False, confirm=None):
    """Install kernels from the kernel source directory to the ESP.

    :param config: The ``SbfConfig`` to use.
    :param targets: An optional list of kernel version strings; when
                    empty every available kernel is considered.
    :param force: Reinstall kernels that are already installed and
                  overwrite differing files without asking.
    :param confirm: An optional callable used to confirm overwrites.
    :returns: A ``MaterializeResult``.
    :raises: ``DirectoryUnavailableError`` if the kernel source
             directory cannot be read, or ``EspAccessError`` if the
             ESP cannot be written.
    """
    return _apply(config, MODE_INSTALL, targets=targets, force=force, confirm=confirm)


def remove_kernels(config, targets=None):
    """Remove installed kernels from the ESP.

    With no ``targets`` every installed kernel that is no longer
    present in the kernel source directory is removed.

    :param config: The ``SbfConfig`` to use.
    :param targets: An optional list of kernel version strings.
    :returns: A ``MaterializeResult``.
    """
    return _apply(config, MODE_REMOVE, targets=targets)


def update_kernels(config, force=False, confirm=None):
    """Install the newest ``config.keep`` kernels, remove every other
    installed kernel, and make the newest installed kernel the default.

    :param config: The ``SbfConfig`` to use.
    :returns: A ``MaterializeResult``.
    """
    result = _apply(config, MODE_UPDATE, force=force, confirm=confirm)
    (store, selector) = _context(config)
    try:
        result.default = selector.select_latest(store.installed_kernels())
    except EmptyKernelListError as e:
        if not any(isinstance(w, EmptyKernelListError) for w in result.warnings):
            _log_warn("%s", e)
            result.warnings.append(e)
    return result


def install_bootloader(esp_mountpoint):
    """Install systemd-boot to the ESP at ``esp_mountpoint`` by
    running ``bootctl install``.

    :raises: ``SbfResourceError`` if ``bootctl`` is missing or fails.
    """
    bootctl_args = [BOOTCTL_CMD, "install", "--esp-path=%s" % esp_mountpoint]
    _log_info("Installing systemd-boot to %s", esp_mountpoint)
    try:
        run(bootctl_args, env=_CMD_ENV, capture_output=True, check=True)
    except FileNotFoundError as e:
        raise SbfResourceError("%s command not found" % BOOTCTL_CMD) from e
    except CalledProcessError as err:
        stderr = err.stderr.decode("utf8") if err.stderr else ""
        _log_debug(
            "Error calling bootctl command: '%s': %s", " ".join(bootctl_args), stderr
        )
        raise SbfResourceError(
            "'%s' failed: %s" % (" ".join(bootctl_args), stderr.strip())
        ) from err


def init(config, bootloader=True, confirm=None):
    """Prepare the ESP for sbf and install the available kernels.

    Create the kernel image and boot entry directories, optionally
    install systemd-boot, then run ``update_kernels()``.

    :param config: The ``SbfConfig`` to use.
    :param bootloader: Run ``bootctl install`` before updating.
    :returns: A ``MaterializeResult``.
    """
    for path in (config.dest_path, config.entries_path):
        try:
            makedirs(path, exist_ok=True)
        except OSError as e:
            raise EspAccessError.from_os_error(path, e) from e
        _log_debug_cmd("Created directory %s", path)
    if bootloader:
        install_bootloader(config.esp_mountpoint)
    return update_kernels(config, confirm=confirm)


def list_available(config, out_file=None):
    """Print the kernels available in the kernel source directory,
    newest first, marking those that are installed.

    :returns: The list of available ``KernelVersion`` objects.
    """
    out_file = out_file or sys.stdout
    available = scan_directory(config.source_path, config).kernel_set()
    (store, selector) = _context(config)
    installed = store.installed_kernels()
    for version in available.versions():
        mark = _MARK if version in installed else _NO_MARK
        print("%s %s" % (mark, version), file=out_file)
    return available.versions()


def list_installed(config, out_file=None):
    """Print the kernels installed on the ESP, newest first, marking
    the default.

    :returns: The list of installed ``KernelVersion`` objects.
    """
    out_file = out_file or sys.stdout
    (store, selector) = _context(config)
    installed = store.installed_kernels()
    default = selector.current(installed)
    for version in installed.versions():
        mark = _MARK if version == default else _NO_MARK
        print("%s %s" % (mark, version), file=out_file)
    return installed.versions()


def set_default_kernel(config, target=None):
    """Set the default boot entry.

    :param config: The ``SbfConfig`` to use.
    :param target: A kernel version string, or ``None`` to select the
                   newest installed kernel.
    :returns: The new default ``KernelVersion``.
    :raises: ``KernelMalformedError`` if ``target`` is not a valid
             version, ``NotInstalledError`` if it is not installed, or
             ``EmptyKernelListError`` if no kernel is installed.
    """
    (store, selector) = _context(config)
    installed = store.installed_kernels()
    if target is None:
        return selector.select_latest(installed)
    return selector.set_default(parse_version(target), installed)


def set_menu_timeout(config, timeout):
    """Set the boot menu timeout in seconds.

    :raises: ``ValueError`` if ``timeout`` is not a non-negative
             integer, or ``EspAccessError`` if ``loader.conf``
             cannot be written.
    """
    (store, selector) = _context(config)
    return set_timeout(store, timeout)


#
# sbf command line tool
#


def _confirm_tty(prompt):
    """Ask the user to confirm ``prompt`` on the terminal."""
    try:
        answer = input("%s [y/N] " % prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _confirm_for(cmd_args):
    """Return the confirmation callable for this invocation."""
    if cmd_args.yes:
        return lambda prompt: True
    if sys.stdin is not None and sys.stdin.isatty():
        return _confirm_tty
    return None


def _print_result(result, out_file=None):
    """Print a summary of a ``MaterializeResult``.

    :returns: The command exit status.
    """
    out_file = out_file or sys.stdout
    for version in result.installed:
        print("Installed %s" % version, file=out_file)
    for version in result.unchanged:
        print("%s: no changes" % version, file=out_file)
    for version in result.removed:
        print("Removed %s" % version, file=out_file)
    for (version, reason) in result.skipped:
        print("Skipped %s: %s" % (version, reason), file=out_file)
    for (version, error) in result.failed:
        print("Failed %s: %s" % (version, error), file=out_file)
    if result.default is not None:
        print("Default: %s" % result.default, file=out_file)
    return 0 if result.success else 1


def _init_cmd(cmd_args, config):
    result = init(
        config, bootloader=not cmd_args.no_bootloader, confirm=_confirm_for(cmd_args)
    )
    return _print_result(result)


def _update_cmd(cmd_args, config):
    result = update_kernels(config, confirm=_confirm_for(cmd_args))
    return _print_result(result)


def _install_kernel_cmd(cmd_args, config):
    result = install_kernels(
        config,
        targets=cmd_args.targets,
        force=cmd_args.force,
        confirm=_confirm_for(cmd_args),
    )
    return _print_result(result)


def _remove_kernel_cmd(cmd_args, config):
    result = remove_kernels(config, targets=cmd_args.targets)
    return _print_result(result)


def _list_available_cmd(cmd_args, config):
    list_available(config)
    return 0


def _list_installed_cmd(cmd_args, config):
    list_installed(config)
    return 0


def _set_default_cmd(cmd_args, config):
    version = set_default_kernel(config, target=cmd_args.target)
    print("Default: %s" % version)
    return 0


def _set_timeout_cmd(cmd_args, config):
    timeout = cmd_args.timeout
    if timeout is None:
        if sys.stdin is None or not sys.stdin.isatty():
            _log_error("set-timeout requires a timeout value")
            return 1
        timeout = input("Boot menu timeout in seconds: ").strip()
    try:
        set_menu_timeout(config, timeout)
    except ValueError as e:
        _log_error("%s", e)
        return 1
    return 0


#: Map debug mask names to ``SBF_DEBUG_*`` values
_debug_masks = {
    "version": SBF_DEBUG_VERSION,
    "scan": SBF_DEBUG_SCAN,
    "plan": SBF_DEBUG_PLAN,
    "entry": SBF_DEBUG_ENTRY,
    "command": SBF_DEBUG_COMMAND,
    "all": SBF_DEBUG_ALL,
}


def set_debug(debug_arg):
    """Set debugging mask from command line argument list.

    :param debug_arg: A comma separated list of debug mask names.
    :raises: ``ValueError`` if an unknown mask name is given.
    """
    if not debug_arg:
        return

    mask = 0
    for name in debug_arg.split(","):
        if name not in _debug_masks:
            raise ValueError("Unknown debug mask: %s" % name)
        mask |= _debug_masks[name]
    set_debug_mask(mask)


def _add_target_args(parser, help_text):
    parser.add_argument(
        "targets", metavar="VERSION", type=str, nargs="*", help=help_text
    )


def _build_parser():
    parser = ArgumentParser(
        prog="sbf", description="Manage kernels and systemd-boot entries on the ESP"
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=str,
        default=DEFAULT_SBF_CONFIG_PATH,
        help="Path to the sbf configuration file",
    )
    parser.add_argument(
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable "
        "(%s)" % ",".join(sorted(_debug_masks.keys())),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity level",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Answer yes to all overwrite prompts",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    init_parser = subparsers.add_parser(
        "init", help="Prepare the ESP and install the newest kernels"
    )
    init_parser.add_argument(
        "--no-bootloader",
        action="store_true",
        help="Do not run 'bootctl install'",
    )
    init_parser.set_defaults(func=_init_cmd)

    update_parser = subparsers.add_parser(
        "update", help="Install the newest kernels and remove old ones"
    )
    update_parser.set_defaults(func=_update_cmd)

    install_parser = subparsers.add_parser(
        "install-kernel", help="Install kernels to the ESP"
    )
    _add_target_args(install_parser, "Kernel versions to install (default: all)")
    install_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Reinstall kernels and overwrite existing files",
    )
    install_parser.set_defaults(func=_install_kernel_cmd)

    remove_parser = subparsers.add_parser(
        "remove-kernel", help="Remove kernels from the ESP"
    )
    _add_target_args(
        remove_parser, "Kernel versions to remove (default: kernels no longer available)"
    )
    remove_parser.set_defaults(func=_remove_kernel_cmd)

    subparsers.add_parser(
        "list-available", help="List kernels in the kernel source directory"
    ).set_defaults(func=_list_available_cmd)

    subparsers.add_parser(
        "list-installed", help="List kernels installed on the ESP"
    ).set_defaults(func=_list_installed_cmd)

    default_parser = subparsers.add_parser(
        "set-default", help="Set the default boot entry"
    )
    default_parser.add_argument(
        "target",
        metavar="VERSION",
        type=str,
        nargs="?",
        help="Kernel version to boot by default (default: newest)",
    )
    default_parser.set_defaults(func=_set_default_cmd)

    timeout_parser = subparsers.add_parser(
        "set-timeout", help="Set the boot menu timeout"
    )
    timeout_parser.add_argument(
        "timeout", metavar="SECONDS", type=str, nargs="?", help="Timeout in seconds"
    )
    timeout_parser.set_defaults(func=_set_timeout_cmd)

    return parser


def _log_level(cmd_args):
    if cmd_args.debug:
        return logging.DEBUG
    if cmd_args.verbose:
        return logging.INFO
    return logging.WARNING


def main(args):
    """Run the sbf command line tool with the argument vector
    ``args`` (including the program name).

    :returns: The exit status: 0 on success, 1 if any item failed or
              a fatal error occurred.
    """
    parser = _build_parser()
    cmd_args = parser.parse_args(args[1:])

    sbf_log = logging.getLogger("sbf")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))
    sbf_log.addHandler(handler)
    old_level = sbf_log.level
    sbf_log.setLevel(_log_level(cmd_args))

    try:
        set_debug(cmd_args.debug)
    except ValueError as e:
        _log_error("%s", e)
        sbf_log.removeHandler(handler)
        sbf_log.setLevel(old_level)
        return 1

    try:
        try:
            config = load_sbf_config(cmd_args.config)
        except SbfConfigFileMissing as e:
            _log_error("%s", e)
            try:
                write_sbf_config(path=e.path)
            except OSError as write_err:
                _log_error("Could not write default configuration: %s", write_err)
            else:
                _log_error(
                    "A default configuration has been written to %s: "
                    "edit it and run sbf again",
                    e.path,
                )
            return 1
        _log_debug_cmd("Running command '%s'", cmd_args.command)
        return cmd_args.func(cmd_args, config)
    except SbfError as e:
        _log_error("%s", e)
        return 1
    finally:
        sbf_log.removeHandler(handler)
        sbf_log.setLevel(old_level)


__all__ = [
    # Command driven API
    "install_kernels",
    "remove_kernels",
    "update_kernels",
    "install_bootloader",
    "init",
    "list_available",
    "list_installed",
    "set_default_kernel",
    "set_menu_timeout",
    "set_debug",
    # Command line tool
    "main",
]

# vim: set et ts=4 sw=4 :

# Copyright Red Hat
#
# sbf/version.py - Kernel version parsing
#
# This file is part of the sbf project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sbf.version`` module turns kernel file names and version
strings into ``KernelVersion`` objects.

A kernel version string has the form ``<release>[-<variant>]``. The
release is one or more hyphen separated release groups, each made of
dot separated alphanumeric components: the first group must begin with
a digit, and later groups are part of the release if they begin with a
digit or are a pre-release tag (``rc3``). The first group that is not a
release group starts the variant, which extends to the end of the
string::

    6.1.0-aosc                 release 6.1.0        variant aosc
    5.12.0-rc3-aosc-main       release 5.12.0-rc3   variant aosc-main
    5.15.12-100.fc34.x86_64    release 5.15.12-100.fc34.x86_64

File names are matched against a template containing the
``{VERSION}`` placeholder (``vmlinuz-{VERSION}``). A name that does not
carry the template's prefix and suffix raises ``KernelNoMatchError``;
a name that does, but whose version part is empty or broken, raises
``KernelMalformedError``.
"""
import logging
import re

from sbf import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SBF_DEBUG_VERSION)

_log_debug = _log.debug
_log_debug_version = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: A single dot separated release or variant component.
_COMPONENT_PATTERN = re.compile(r"^[0-9A-Za-z_]+$")

#: A hyphen separated group that continues the release.
_PRERELEASE_PATTERN = re.compile(r"^rc[0-9]+$")


class SbfVersionError(SbfError):
    """Base class for kernel version parsing errors."""

    name = None
    reason = None

    def __init__(self, name, reason):
        super(SbfVersionError, self).__init__("%s: %s" % (name, reason))
        self.name = name
        self.reason = reason


class KernelNoMatchError(SbfVersionError):
    """The name is not a kernel file name for the given template."""

    @staticmethod
    def no_match(name, pattern):
        return KernelNoMatchError(name, "does not match '%s'" % pattern)


class KernelMalformedError(SbfVersionError, SbfStructuralError):
    """The name looks like a kernel file name but its version part
    cannot be parsed.
    """

    @staticmethod
    def empty_release(name):
        return KernelMalformedError(name, "empty kernel release")

    @staticmethod
    def bad_release(name, group):
        return KernelMalformedError(name, "invalid kernel release '%s'" % group)

    @staticmethod
    def empty_group(name):
        return KernelMalformedError(name, "empty version component")

    @staticmethod
    def bad_variant(name, variant):
        return KernelMalformedError(name, "invalid kernel variant '%s'" % variant)


def _component_key(component):
    """Return the sort key for a single release component: numeric
    components sort before, and compare as integers against, other
    numeric components.
    """
    if component.isdigit():
        return (0, int(component), "")
    return (1, 0, component)


def _split_components(name, group):
    """Split a hyphen group into its dot separated components."""
    components = group.split(".")
    for component in components:
        if not component:
            raise KernelMalformedError.empty_group(name)
        if not _COMPONENT_PATTERN.match(component):
            raise KernelMalformedError.bad_release(name, group)
    return components


def _is_release_group(group):
    """Return ``True`` if ``group`` continues a kernel release."""
    return group[0].isdigit() or bool(_PRERELEASE_PATTERN.match(group))


class KernelVersion(object):
    """The parsed identity of a kernel.

    Two ``KernelVersion`` objects are equal if their release
    components and variants are equal, regardless of the name they
    were parsed from. Ordering compares the release only: numeric
    components compare as integers, other components compare
    lexically, and a release that is a prefix of another is older.
    """

    #: The release as written, for e.g. "6.1.0-rc1".
    release = None
    #: The optional variant, for e.g. "aosc".
    variant = None
    #: The name this version was parsed from.
    raw_name = None

    # Tuple of per-group component keys
    _key = None

    def __init__(self, release, variant=None, raw_name=None):
        """Initialise a new ``KernelVersion``.

        :param release: The release string.
        :param variant: An optional variant string.
        :param raw_name: The file name or string the version was
                         parsed from.
        :raises: ``KernelMalformedError`` if ``release`` is invalid.
        """
        name = raw_name or release
        if not release:
            raise KernelMalformedError.empty_release(name)
        groups = release.split("-")
        key = []
        for group in groups:
            if not group:
                raise KernelMalformedError.empty_group(name)
            components = _split_components(name, group)
            key.append(tuple(_component_key(c) for c in components))
        if not groups[0][0].isdigit():
            raise KernelMalformedError.bad_release(name, groups[0])

        self.release = release
        self.variant = variant or None
        self.raw_name = raw_name or str(self)
        self._key = tuple(key)

    def __str__(self):
        if self.variant:
            return "%s-%s" % (self.release, self.variant)
        return self.release

    def __repr__(self):
        return 'KernelVersion("%s", variant=%s, raw_name="%s")' % (
            self.release,
            '"%s"' % self.variant if self.variant else None,
            self.raw_name,
        )

    @property
    def release_key(self):
        """The comparison key for this version's release."""
        return self._key

    def __eq__(self, other):
        if not isinstance(other, KernelVersion):
            return NotImplemented
        return self._key == other._key and self.variant == other.variant

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __hash__(self):
        return hash((self._key, self.variant))

    def __lt__(self, other):
        if not isinstance(other, KernelVersion):
            return NotImplemented
        return self._key < other._key

    def __gt__(self, other):
        if not isinstance(other, KernelVersion):
            return NotImplemented
        return self._key > other._key

    def __le__(self, other):
        if not isinstance(other, KernelVersion):
            return NotImplemented
        return self._key <= other._key

    def __ge__(self, other):
        if not isinstance(other, KernelVersion):
            return NotImplemented
        return self._key >= other._key

    def format(self, pattern):
        """Return the file name for this version according to the
        ``{VERSION}`` template ``pattern``.
        """
        return pattern.replace(VERSION_PLACEHOLDER, str(self))


def parse_version(text, raw_name=None):
    """Parse a kernel version string.

    :param text: A version string such as "6.1.0-aosc".
    :param raw_name: The name ``text`` was extracted from, used in
                     diagnostics. Defaults to ``text``.
    :returns: A new ``KernelVersion``.
    :rtype: KernelVersion
    :raises: ``KernelMalformedError`` if ``text`` is not a valid
             kernel version.
    """
    name = raw_name or text
    if not text:
        raise KernelMalformedError.empty_release(name)

    groups = text.split("-")
    if not groups[0] or not groups[0][0].isdigit():
        raise KernelMalformedError.bad_release(name, groups[0])

    release = []
    for (index, group) in enumerate(groups):
        if not group:
            raise KernelMalformedError.empty_group(name)
        if index and not _is_release_group(group):
            break
        release.append(group)

    variant_groups = groups[len(release):]
    for group in variant_groups:
        if not group:
            raise KernelMalformedError.bad_variant(name, "-".join(variant_groups))
        _split_components(name, group)

    variant = "-".join(variant_groups) if variant_groups else None
    version = KernelVersion("-".join(release), variant=variant, raw_name=name)
    _log_debug_version("Parsed '%s' as %s", name, repr(version))
    return version


def _split_pattern(pattern):
    """Return the (prefix, suffix) pair surrounding the version
    placeholder of a file name template.
    """
    if pattern.count(VERSION_PLACEHOLDER) != 1:
        raise ValueError(
            "File name template must contain %s exactly once: %s"
            % (VERSION_PLACEHOLDER, pattern)
        )
    (prefix, suffix) = pattern.split(VERSION_PLACEHOLDER)
    return (prefix, suffix)


def match_pattern(name, pattern):
    """Test whether ``name`` has the prefix and suffix of the template
    ``pattern``, without parsing the version it contains.

    :rtype: bool
    """
    (prefix, suffix) = _split_pattern(pattern)
    if not name.startswith(prefix) or not name.endswith(suffix):
        return False
    return len(name) >= len(prefix) + len(suffix)


def parse_kernel_filename(name, pattern):
    """Parse a kernel file name according to a file name template.

    :param name: The file name to parse, for e.g. "vmlinuz-6.1.0-aosc".
    :param pattern: The file name template, for e.g. "vmlinuz-{VERSION}".
    :returns: A new ``KernelVersion`` with ``raw_name`` set to ``name``.
    :rtype: KernelVersion
    :raises: ``KernelNoMatchError`` if ``name`` does not match
             ``pattern``, or ``KernelMalformedError`` if it matches
             but the embedded version is invalid.
    """
    if not match_pattern(name, pattern):
        raise KernelNoMatchError.no_match(name, pattern)
    (prefix, suffix) = _split_pattern(pattern)
    text = name[len(prefix):len(name) - len(suffix)]
    return parse_version(text, raw_name=name)


__all__ = [
    "SbfVersionError",
    "KernelNoMatchError",
    "KernelMalformedError",
    "KernelVersion",
    "parse_version",
    "match_pattern",
    "parse_kernel_filename",
]

# vim: set et ts=4 sw=4 :

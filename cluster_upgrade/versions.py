#!/usr/bin/env python3
"""Kubernetes version parsing and comparison helpers."""

import functools
import re
from typing import Iterable, Optional, Tuple

from .exceptions import ConfigurationError

_VERSION_PATTERN = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


def _pre_release_key(pre: str) -> Tuple:
    # Numeric identifiers sort before alphanumeric ones, and numerically among themselves
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre.split("."))


@functools.total_ordering
class KubernetesVersion:
    """A semantic version as used for Kubernetes releases.

    Build metadata is kept for display but ignored when comparing.
    """

    def __init__(self, major: int, minor: int = 0, patch: int = 0, pre: str = "", build: str = ""):
        self.major = major
        self.minor = minor
        self.patch = patch
        self.pre = pre
        self.build = build

    @classmethod
    def parse(cls, raw: str) -> "KubernetesVersion":
        """Parse a version tolerantly.

        Surrounding whitespace and a leading ``v`` are ignored and a missing
        minor or patch component is treated as zero, so ``v1.14`` parses as
        ``1.14.0``.

        Args:
            raw: Version string such as ``v1.13.7`` or ``1.14``

        Returns:
            KubernetesVersion: The parsed version

        Raises:
            ConfigurationError: If the string is not a version
        """
        match = _VERSION_PATTERN.match((raw or "").strip())
        if not match:
            raise ConfigurationError(f"invalid version {raw!r}")
        return cls(
            int(match.group("major")),
            int(match.group("minor") or 0),
            int(match.group("patch") or 0),
            match.group("pre") or "",
            match.group("build") or "",
        )

    def _sort_key(self):
        # A release sorts after any of its pre-releases
        if self.pre:
            return (self.major, self.minor, self.patch, 0, _pre_release_key(self.pre))
        return (self.major, self.minor, self.patch, 1, ())

    def __eq__(self, other):
        if not isinstance(other, KubernetesVersion):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other):
        if not isinstance(other, KubernetesVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self):
        return hash(self._sort_key())

    def __str__(self):
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            version += f"-{self.pre}"
        if self.build:
            version += f"+{self.build}"
        return version

    def __repr__(self):
        return f"KubernetesVersion('{self}')"

    @property
    def major_minor(self) -> str:
        return f"{self.major}.{self.minor}"


def is_minor_version_upgrade(base: KubernetesVersion, update: KubernetesVersion) -> bool:
    """True when ``update`` stays on the same major version with a strictly higher minor version."""
    return base.major == update.major and base.minor < update.minor


def min_max_versions(
    versions: Iterable[KubernetesVersion],
) -> Tuple[Optional[KubernetesVersion], Optional[KubernetesVersion]]:
    """Return the lowest and highest version, or (None, None) for an empty input."""
    lowest = None
    highest = None
    for version in versions:
        if lowest is None or version < lowest:
            lowest = version
        if highest is None or version > highest:
            highest = version
    return lowest, highest

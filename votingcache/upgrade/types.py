# MIT License
# Copyright (c) 2025 Hashborn

"""
Semantic version handling for generator compatibility checks.
"""

from dataclasses import dataclass, field
from typing import Tuple, Union


@dataclass
class Version:
    """
    Semantic version (MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]).

    Pre-releases sort before the release they precede (1.12.0-dev < 1.12.0).
    Build metadata is accepted but ignored for precedence, as in semver 2.0.
    """
    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{base}-{'.'.join(self.prerelease)}"
        return base

    @classmethod
    def from_string(cls, version_str: str) -> 'Version':
        """Parse version from string (e.g., '1.2.3', 'v1.12.0-dev', '1.0.0+abc')."""
        text = version_str.strip()
        if text.startswith(("v", "V")):
            text = text[1:]

        text = text.split('+', 1)[0]
        core, _, prerelease = text.partition('-')

        parts = core.split('.')
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid version format: {version_str}")

        identifiers: Tuple[str, ...] = ()
        if prerelease:
            identifiers = tuple(prerelease.split('.'))
            if any(not ident for ident in identifiers):
                raise ValueError(f"Invalid pre-release in version: {version_str}")
        elif text.endswith('-'):
            raise ValueError(f"Invalid pre-release in version: {version_str}")

        return cls(
            major=int(parts[0]),
            minor=int(parts[1]),
            patch=int(parts[2]),
            prerelease=identifiers,
        )

    def _precedence(self) -> tuple:
        # Numeric identifiers rank below alphanumeric ones; a release ranks above any pre-release
        identifiers = tuple(
            (0, int(ident), "") if ident.isdigit() else (1, 0, ident)
            for ident in self.prerelease
        )
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, identifiers)

    def __lt__(self, other: 'Version') -> bool:
        return self._precedence() < other._precedence()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Version):
            return False
        return self._precedence() == other._precedence()

    def __le__(self, other: 'Version') -> bool:
        return self < other or self == other

    def __gt__(self, other: 'Version') -> bool:
        return not self <= other

    def __ge__(self, other: 'Version') -> bool:
        return not self < other


def is_compatible(version: Union[str, Version], floor: Union[str, Version]) -> bool:
    """
    True if `version` is at or above the compatibility floor.

    Raises:
        ValueError: If either version cannot be parsed
    """
    if isinstance(version, str):
        version = Version.from_string(version)
    if isinstance(floor, str):
        floor = Version.from_string(floor)
    return version >= floor

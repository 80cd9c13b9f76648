"""
Semantic version handling for backups.

A backup can be restored only by a release with the same major version;
minor and patch differences are accepted in both directions.
"""

from dataclasses import dataclass

from entrystore.errors import BackupVersionError, VersionFormatError


@dataclass(frozen=True, order=True)
class SemanticVersion:
    """A MAJOR.MINOR.PATCH version, ordered component-wise."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(version: str) -> SemanticVersion:
    """
    Parse a MAJOR.MINOR.PATCH string.

    Raises:
        VersionFormatError: If there aren't exactly three integer parts
    """
    parts = version.split(".")
    if len(parts) != 3:
        raise VersionFormatError(version=version)
    try:
        major, minor, patch = (int(part) for part in parts)
    except ValueError as e:
        raise VersionFormatError(
            version=version,
            message=f"Invalid version format. Version parts must be integers, got: {version}",
        ) from e
    return SemanticVersion(major=major, minor=minor, patch=patch)


def verify_version_compatibility(backup_version: str, current_version: str) -> None:
    """
    Check that a backup can be imported by the running version.

    Raises:
        VersionFormatError: If either version string is malformed
        BackupVersionError: If the major versions differ
    """
    backup = parse_version(backup_version)
    current = parse_version(current_version)

    if backup.major < current.major:
        raise BackupVersionError(
            backup_version=backup_version,
            current_version=current_version,
            message=(
                f"Backup from older major version ({backup.major}) is not supported "
                f"(Current: {current.major})."
            ),
        )
    if backup.major > current.major:
        raise BackupVersionError(
            backup_version=backup_version,
            current_version=current_version,
            message=(
                f"Backup from newer major version ({backup.major}) is not supported "
                f"(Current: {current.major})."
            ),
        )

"""
JSON backup export and import.

An export captures every entry together with the exporting version and
time. An import checks version compatibility first and then replaces the
whole table in one transaction, so a failed import leaves the store as it
was.

File format:
    {
        "metadata": {"version": "0.1.0", "timestamp": 1700000000000},
        "entries": [{"id": 1, "timestamp": "2023-01-01T10:00:00Z", "entryValue": 456}]
    }
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from pydantic import ValidationError

from entrystore import __version__
from entrystore.converters import to_epoch_millis
from entrystore.errors import BackupFormatError
from entrystore.repository import EntryRepository
from entrystore.schema import BackupData, BackupEntry, BackupMetadata
from entrystore.version import verify_version_compatibility

logger = logging.getLogger(__name__)


class BackupService:
    """
    Export and import all entries as a JSON document.

    Usage:
        service = BackupService(EntryRepository(store))
        service.export_data(Path("backup.json"))
        service.import_data(Path("backup.json"))

    Attributes:
        repository: Source and destination of entries
        app_version: Version written to, and checked against, backups
    """

    def __init__(self, repository: EntryRepository, app_version: str = __version__) -> None:
        self.repository = repository
        self.app_version = app_version

    def build_backup(self) -> BackupData:
        """Snapshot the store into a BackupData document."""
        return BackupData(
            metadata=BackupMetadata(
                version=self.app_version,
                timestamp=to_epoch_millis(datetime.now(UTC)),
            ),
            entries=[
                BackupEntry.model_validate(entry.model_dump())
                for entry in self.repository.list_entries()
            ],
        )

    def export_data(self, destination: Path | str | IO[str]) -> int:
        """
        Write a backup.

        Args:
            destination: File path or writable text stream

        Returns:
            Number of entries exported
        """
        backup = self.build_backup()
        content = backup.to_json()
        if isinstance(destination, (str, Path)):
            Path(destination).write_text(content, encoding="utf-8")
        else:
            destination.write(content)
        logger.info("Exported backup", extra={"count": len(backup.entries)})
        return len(backup.entries)

    def parse_backup(self, content: str, source: str = "<stream>") -> BackupData:
        """
        Parse backup JSON.

        Raises:
            BackupFormatError: If the content is not a valid backup document
        """
        try:
            return BackupData.model_validate_json(content)
        except ValidationError as e:
            raise BackupFormatError(
                source=source,
                underlying_error=f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}",
            ) from e

    def import_data(self, source: Path | str | IO[str]) -> int:
        """
        Restore a backup, replacing every stored entry.

        Args:
            source: File path or readable text stream

        Returns:
            Number of entries imported

        Raises:
            BackupFormatError: If the document can't be parsed
            BackupVersionError: If its major version differs from ours
            EntryValidationError: If any entry has a non-positive value
        """
        if isinstance(source, (str, Path)):
            name = str(source)
            content = Path(source).read_text(encoding="utf-8")
        else:
            name = getattr(source, "name", "<stream>")
            content = source.read()

        backup = self.parse_backup(content, source=name)
        verify_version_compatibility(
            backup_version=backup.metadata.version,
            current_version=self.app_version,
        )
        self.repository.replace_all_entries(backup.entries)
        logger.info("Imported backup", extra={"count": len(backup.entries), "source": name})
        return len(backup.entries)

"""
Schema definitions for entrystore.

This module defines the Pydantic models used throughout entrystore:
- Entry: the single persisted record type
- BackupMetadata/BackupEntry/BackupData: the JSON backup file format
- StoreConfig: runtime configuration, loadable from YAML

Design Decisions:
    - Entry is immutable (frozen=True); replace it, don't mutate it
    - Timestamps are normalized to UTC at millisecond resolution on the way in,
      so what you write is exactly what you read back
    - The backup format keeps the `entryValue` key of the persisted column
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from entrystore.converters import normalize_timestamp


# =============================================================================
# Enums
# =============================================================================


class JournalMode(str, Enum):
    """SQLite journal mode used for file-backed stores."""

    WAL = "wal"
    DELETE = "delete"
    MEMORY = "memory"


# =============================================================================
# Entry
# =============================================================================


class Entry(BaseModel):
    """
    A single timestamped entry.

    Attributes:
        id: Row identifier. 0 means "let the store assign one" on insert.
        timestamp: The instant the entry refers to. None is accepted only so
                   that a missing timestamp can reach the store and be
                   rejected on read-back; every stored row must have one.
        value: Integer payload, persisted as `entryValue`.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: int = Field(default=0, description="Row id, 0 to auto-assign", ge=0)
    timestamp: datetime | None = Field(..., description="Instant of the entry")
    value: int = Field(
        ...,
        description="Integer payload",
        validation_alias=AliasChoices("value", "entryValue"),
        serialization_alias="entryValue",
    )

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime | None) -> datetime | None:
        """Normalize to UTC and millisecond resolution."""
        if v is None:
            return None
        return normalize_timestamp(v)

    def with_id(self, entry_id: int) -> "Entry":
        """Return a copy of this entry carrying the given id."""
        return self.model_copy(update={"id": entry_id})


# =============================================================================
# Backup Models
# =============================================================================


class BackupEntry(Entry):
    """
    An entry as read from a backup file.

    Unlike Entry, the timestamp may not be null: a backup restores rows
    straight into the store, and every stored row needs a timestamp.
    """

    timestamp: datetime = Field(..., description="Instant of the entry")


class BackupMetadata(BaseModel):
    """
    Header of a backup file.

    Attributes:
        version: Package version that produced the backup (MAJOR.MINOR.PATCH)
        timestamp: Export time in epoch milliseconds
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    version: str = Field(..., description="Exporting package version", min_length=1)
    timestamp: int = Field(..., description="Export time in epoch milliseconds")


class BackupData(BaseModel):
    """A complete backup: metadata plus every entry at export time."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    metadata: BackupMetadata
    entries: list[BackupEntry] = Field(default_factory=list)

    def to_json(self, indent: int = 4) -> str:
        """Serialize using the on-disk key names (`entryValue`)."""
        return self.model_dump_json(indent=indent, by_alias=True)


# =============================================================================
# Configuration
# =============================================================================


class StoreConfig(BaseModel):
    """
    Runtime configuration for an EntryStore.

    Attributes:
        db_path: SQLite database file, or ":memory:"
        journal_mode: Journal mode for file-backed databases
        busy_timeout_ms: How long a connection waits on a locked database
        log_level: Level for the `entrystore` logger
        log_json: Emit logs as JSON lines instead of plain text
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: str = Field(default="entrystore.db", description="SQLite database path")
    journal_mode: JournalMode = Field(
        default=JournalMode.WAL,
        description="SQLite journal mode",
    )
    busy_timeout_ms: int = Field(default=5000, description="Busy timeout", ge=0)
    log_level: str = Field(default="WARNING", description="Logging level")
    log_json: bool = Field(default=False, description="JSON formatted logs")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard logging level names, case-insensitively."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {v}"
            raise ValueError(msg)
        return level

    @property
    def in_memory(self) -> bool:
        """Whether this configuration targets an in-memory database."""
        return self.db_path == ":memory:"


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_config(path: Path | str) -> StoreConfig:
    """
    Load a store configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated StoreConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return StoreConfig.model_validate(data or {})


def load_config_from_string(content: str) -> StoreConfig:
    """Load a store configuration from a YAML string."""
    data: Any = yaml.safe_load(content)
    return StoreConfig.model_validate(data or {})

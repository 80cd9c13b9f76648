"""
Exception hierarchy for entrystore.

All entrystore exceptions inherit from EntryStoreError, allowing callers to
catch every store-specific failure with a single except clause.

Exception Categories:
    - StorageError: Database operation failed (connect, write, read, integrity)
    - EntryValidationError: Entry rejected by repository rules
    - SubscriptionError: Live query terminated abnormally
    - BackupError: Backup file could not be exported or imported
    - ConfigError: Configuration file could not be loaded

Absence is not an error: EntryStore.get_by_id returns None for a missing id.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (operation, entry id where applicable)
    - All errors provide actionable suggestions where possible
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_TRANSACTION = 5002
ERROR_STORAGE_READ = 5003
ERROR_STORAGE_INTEGRITY = 5004

# Validation errors: 6xxx
ERROR_ENTRY_INVALID_VALUE = 6001

# Subscription errors: 7xxx
ERROR_SUBSCRIPTION_FAILED = 7001
ERROR_SUBSCRIPTION_CLOSED = 7002

# Backup errors: 8xxx
ERROR_BACKUP_FORMAT = 8001
ERROR_BACKUP_VERSION = 8002
ERROR_VERSION_FORMAT = 8003

# Configuration errors: 9xxx
ERROR_CONFIG_INVALID = 9001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class EntryStoreError(Exception):
    """
    Base exception for all entrystore errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(EntryStoreError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "insert_or_replace", "get_by_id")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when the database cannot be opened or has been closed."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class TransactionError(StorageError):
    """
    Raised when a mutation cannot commit.

    The transaction has been rolled back: no partial write is visible.
    """

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Transaction failed and was rolled back: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_TRANSACTION
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class DataIntegrityError(StorageError):
    """
    Raised when a stored row violates a schema guarantee.

    The timestamp column is nullable on disk but never optional for an
    Entry; reading a null back means the row was corrupted or written
    around the store.
    """

    entry_id: int | None = None
    column: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Expected non-null '{self.column}' for entry {self.entry_id}, but it was NULL"
            )
        if self.code == 0:
            self.code = ERROR_STORAGE_INTEGRITY
        if not self.suggestion:
            self.suggestion = "The database may be corrupted. Try restoring from a backup."
        super().__post_init__()
        self.context.update({
            "entry_id": self.entry_id,
            "column": self.column,
        })


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class EntryValidationError(EntryStoreError):
    """Raised when an entry is rejected before it reaches the store."""

    value: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Entry value must be a positive integer, got {self.value}"
        if self.code == 0:
            self.code = ERROR_ENTRY_INVALID_VALUE
        self.context["value"] = self.value


# =============================================================================
# Subscription Errors
# =============================================================================


@dataclass
class SubscriptionError(EntryStoreError):
    """
    Terminal signal of a live query that stopped because of an error.

    Attributes:
        query: The SQL the subscription was re-running
        underlying_error: Description of the cause
    """

    query: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Subscription terminated: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_SUBSCRIPTION_FAILED
        self.context.update({
            "query": self.query,
            "underlying_error": self.underlying_error,
        })


@dataclass
class SubscriptionClosedError(SubscriptionError):
    """Raised to subscribers when the store they were attached to is closed."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Subscription terminated: the store was closed"
        if self.code == 0:
            self.code = ERROR_SUBSCRIPTION_CLOSED
        super().__post_init__()


# =============================================================================
# Backup Errors
# =============================================================================


@dataclass
class BackupError(EntryStoreError):
    """
    Base class for backup export/import errors.

    Attributes:
        source: File path or stream description involved
    """

    source: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["source"] = self.source


@dataclass
class BackupFormatError(BackupError):
    """Raised when a backup file is not valid JSON or does not match the schema."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid backup file: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_BACKUP_FORMAT
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class BackupVersionError(BackupError):
    """Raised when a backup's major version differs from the running version."""

    backup_version: str = ""
    current_version: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Backup version {self.backup_version} is not compatible "
                f"with current version {self.current_version}"
            )
        if self.code == 0:
            self.code = ERROR_BACKUP_VERSION
        if not self.suggestion:
            self.suggestion = "Import the backup with a release of the same major version"
        super().__post_init__()
        self.context.update({
            "backup_version": self.backup_version,
            "current_version": self.current_version,
        })


@dataclass
class VersionFormatError(EntryStoreError):
    """Raised when a version string is not MAJOR.MINOR.PATCH."""

    version: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid version format. Expected Major.Minor.Patch, got: {self.version}"
        if self.code == 0:
            self.code = ERROR_VERSION_FORMAT
        self.context["version"] = self.version


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(EntryStoreError):
    """
    Raised when a configuration file is not valid YAML or doesn't match StoreConfig.

    Attributes:
        path: The configuration file
        underlying_error: Description of the parse or validation failure
    """

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        if not self.suggestion:
            self.suggestion = "Check the file against the documented StoreConfig keys"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })

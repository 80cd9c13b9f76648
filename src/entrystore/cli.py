"""
CLI entry point for entrystore.

This module provides the Typer-based command-line interface for entrystore.

Commands:
    add         Store a new entry
    show        Show one entry
    list        List all entries, newest first
    delete      Delete an entry
    watch       Print the entry list every time it changes
    export      Write a JSON backup
    import      Restore a JSON backup, replacing all entries
    doctor      Check the environment and the database

Architecture Note:
    The CLI parses arguments and delegates to EntryRepository/BackupService.
    Every command opens the store, does its work and closes it again.
"""

import json
import sqlite3
import sys
import traceback
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Generator, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from entrystore import __version__
from entrystore.backup import BackupService
from entrystore.errors import ConfigError, EntryStoreError
from entrystore.logging_config import configure_logging
from entrystore.repository import EntryRepository
from entrystore.schema import Entry, StoreConfig, load_config
from entrystore.store import EntryStore

# Initialize Typer app with metadata
app = typer.Typer(
    name="entrystore",
    help="Store and watch timestamped entries in a local SQLite database.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

DEFAULT_DB = "entrystore.db"

DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help=f"Path to the SQLite database. Defaults to {DEFAULT_DB} or the config value.",
        resolve_path=True,
    ),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to a YAML configuration file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        help="Enable debug logging.",
    ),
]
DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug mode with full error tracebacks.",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]entrystore[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    entrystore - Durable storage for timestamped entries.

    Add, list and delete entries, watch the list change live, and move
    everything in and out of JSON backups.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _resolve_config(db: Path | None, config: Path | None) -> StoreConfig:
    """
    Merge the config file (if any) with the --db override.

    Raises:
        ConfigError: If the config file is not valid YAML or not a valid StoreConfig
    """
    if config is None:
        base = StoreConfig(db_path=DEFAULT_DB)
    else:
        try:
            base = load_config(config)
        except (yaml.YAMLError, ValidationError, OSError) as e:
            raise ConfigError(path=str(config), underlying_error=str(e)) from e
    if db is not None:
        base = base.model_copy(update={"db_path": str(db)})
    return base


@contextmanager
def _open_repository(
    db: Path | None,
    config: Path | None,
    verbose: bool,
) -> Generator[EntryRepository, None, None]:
    """Configure logging, open the store and hand out a repository."""
    cfg = _resolve_config(db, config)
    configure_logging("DEBUG" if verbose else cfg.log_level, json_format=cfg.log_json)
    with EntryStore(cfg) as store:
        yield EntryRepository(store)


def _handle_error(error: Exception, json_output: bool, debug: bool) -> None:
    """Report an error and exit with status 1."""
    if json_output:
        if isinstance(error, EntryStoreError):
            output = {"error": True, **error.to_dict()}
        else:
            output = {"error": True, "error_type": type(error).__name__, "message": str(error)}
        if debug:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2, default=str))
    else:
        console.print(str(error), style="red", markup=False)
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _parse_timestamp(value: str | None) -> datetime:
    """Parse --at (ISO 8601); now if not given."""
    if value is None:
        return datetime.now(UTC)
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"Not an ISO 8601 timestamp: {value}", param_hint="--at") from e


def _format_timestamp(entry: Entry) -> str:
    if entry.timestamp is None:
        return "—"
    return entry.timestamp.isoformat(timespec="milliseconds")


def _entry_dict(entry: Entry) -> dict:
    return entry.model_dump(mode="json")


def _entries_table(entries: list[Entry]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Timestamp (UTC)")
    table.add_column("Value", justify="right")
    for entry in entries:
        table.add_row(str(entry.id), _format_timestamp(entry), str(entry.value))
    return table


# =============================================================================
# Entry Commands
# =============================================================================


@app.command()
def add(
    value: Annotated[
        int,
        typer.Argument(help="Entry value (a positive integer)."),
    ],
    at: Annotated[
        Optional[str],
        typer.Option(
            "--at",
            help="Entry timestamp in ISO 8601. Defaults to now.",
        ),
    ] = None,
    entry_id: Annotated[
        int,
        typer.Option(
            "--id",
            help="Replace the entry with this id instead of creating a new one.",
            min=0,
        ),
    ] = 0,
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Store an entry.

    Without --id a new id is assigned. With --id the entry with that id is
    replaced, or created if it doesn't exist.

    Example:
        $ entrystore add 5 --at 2024-01-01T10:00:00Z
    """
    timestamp = _parse_timestamp(at)
    try:
        with _open_repository(db, config, verbose) as repository:
            new_id = repository.insert_entry(Entry(id=entry_id, timestamp=timestamp, value=value))
            stored = repository.get_entry_by_id(new_id)
    except (EntryStoreError, ValidationError) as e:
        _handle_error(e, json_output, debug)
        return

    if json_output:
        print(json.dumps(_entry_dict(stored), indent=2))
    else:
        console.print(f"[green]✓[/green] Stored entry [cyan]{new_id}[/cyan]: {stored.value} at {_format_timestamp(stored)}")


@app.command()
def show(
    entry_id: Annotated[
        int,
        typer.Argument(help="The entry id to show."),
    ],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show a single entry.

    Example:
        $ entrystore show 1
    """
    try:
        with _open_repository(db, config, verbose) as repository:
            entry = repository.get_entry_by_id(entry_id)
    except EntryStoreError as e:
        _handle_error(e, json_output, debug)
        return

    if entry is None:
        if json_output:
            print(json.dumps({"error": True, "error_type": "not_found", "id": entry_id}))
        else:
            console.print(f"[red]Entry not found: {entry_id}[/red]")
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps(_entry_dict(entry), indent=2))
    else:
        console.print(f"[bold]Entry {entry.id}[/bold]")
        console.print(f"  Timestamp: {_format_timestamp(entry)}")
        console.print(f"  Value: {entry.value}")


@app.command("list")
def list_entries(
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    List all entries, newest first.

    Example:
        $ entrystore list --db entries.db
    """
    try:
        with _open_repository(db, config, verbose) as repository:
            entries = repository.list_entries()
    except EntryStoreError as e:
        _handle_error(e, json_output, debug)
        return

    if json_output:
        print(json.dumps([_entry_dict(e) for e in entries], indent=2))
        return

    if not entries:
        console.print("[dim]No entries found.[/dim]")
        return

    console.print(_entries_table(entries))


@app.command()
def delete(
    entry_id: Annotated[
        int,
        typer.Argument(help="The entry id to delete."),
    ],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Delete an entry.

    Deleting an id that doesn't exist is not an error.

    Example:
        $ entrystore delete 1
    """
    try:
        with _open_repository(db, config, verbose) as repository:
            removed = repository.delete_entry(entry_id)
    except EntryStoreError as e:
        _handle_error(e, json_output, debug)
        return

    if json_output:
        print(json.dumps({"id": entry_id, "deleted": removed}))
    elif removed:
        console.print(f"[green]✓[/green] Deleted entry [cyan]{entry_id}[/cyan]")
    else:
        console.print(f"[dim]No entry with id {entry_id}; nothing deleted.[/dim]")


@app.command()
def watch(
    count: Annotated[
        Optional[int],
        typer.Option(
            "--count",
            "-n",
            help="Stop after this many snapshots.",
            min=1,
        ),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option(
            "--timeout",
            help="Stop if no change arrives within this many seconds.",
            min=0,
        ),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Print the entry list now and again every time it changes.

    Runs until interrupted (Ctrl+C), --count snapshots were shown, or
    --timeout seconds pass without a change.

    Example:
        $ entrystore watch --db entries.db
    """
    shown = 0
    try:
        with _open_repository(db, config, verbose) as repository:
            with repository.get_all_entries() as live:
                while count is None or shown < count:
                    try:
                        snapshot = live.get(timeout=timeout)
                    except TimeoutError:
                        break
                    if snapshot is None:
                        break
                    shown += 1
                    if json_output:
                        print(json.dumps([_entry_dict(e) for e in snapshot]))
                    else:
                        stamp = datetime.now(UTC).strftime("%H:%M:%S")
                        console.print(f"[dim]{stamp}[/dim] [bold]{len(snapshot)} entries[/bold]")
                        console.print(_entries_table(snapshot))
    except KeyboardInterrupt:
        pass
    except EntryStoreError as e:
        _handle_error(e, json_output, debug)


# =============================================================================
# Backup Commands
# =============================================================================


@app.command("export")
def export_backup(
    destination: Annotated[
        Path,
        typer.Argument(help="Where to write the JSON backup.", resolve_path=True),
    ],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Export every entry to a JSON backup file.

    Example:
        $ entrystore export backup.json
    """
    try:
        with _open_repository(db, config, verbose) as repository:
            exported = BackupService(repository).export_data(destination)
    except (EntryStoreError, OSError) as e:
        _handle_error(e, json_output, debug)
        return

    if json_output:
        print(json.dumps({"path": str(destination), "entries": exported}))
    else:
        console.print(f"[green]✓[/green] Exported {exported} entries to {destination}")


@app.command("import")
def import_backup(
    source: Annotated[
        Path,
        typer.Argument(
            help="JSON backup file to restore.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Restore a JSON backup, replacing every stored entry.

    The backup must come from the same major version. The replacement is a
    single transaction: on any error the existing entries are kept.

    Example:
        $ entrystore import backup.json
    """
    try:
        with _open_repository(db, config, verbose) as repository:
            imported = BackupService(repository).import_data(source)
    except (EntryStoreError, OSError) as e:
        _handle_error(e, json_output, debug)
        return

    if json_output:
        print(json.dumps({"path": str(source), "entries": imported}))
    else:
        console.print(f"[green]✓[/green] Imported {imported} entries from {source}")


# =============================================================================
# Diagnostics
# =============================================================================


@app.command()
def doctor(
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Check the environment and the database.

    Verifies:
    - Python version (3.11+)
    - SQLite library version
    - Database integrity, including rows missing a timestamp

    Example:
        $ entrystore doctor --db entries.db
    """
    checks = []
    all_ok = True

    # Check 1: Python version
    py_version = sys.version_info
    py_version_str = f"{py_version.major}.{py_version.minor}.{py_version.micro}"
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": py_version_str,
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })
    all_ok = all_ok and py_ok

    # Check 2: SQLite
    checks.append({
        "name": "SQLite",
        "ok": True,
        "value": sqlite3.sqlite_version,
        "message": "OK",
    })

    # Check 3: Database
    try:
        cfg = _resolve_config(db, config)
    except ConfigError as e:
        _handle_error(e, json_output, debug=False)
        return
    db_path = Path(cfg.db_path)
    db_ok = True
    if not cfg.in_memory and not db_path.exists():
        db_message = "Not found (will be created on first write)"
    else:
        try:
            with EntryStore(cfg) as store:
                report = store.integrity_check()
                total = store.count()
            db_ok = report["ok"]
            if db_ok:
                db_message = f"OK ({total} entries)"
            elif report["null_timestamps"]:
                db_message = f"Entries without timestamp: {report['null_timestamps']}"
            else:
                db_message = f"Integrity check failed: {report['sqlite']}"
        except EntryStoreError as e:
            db_ok = False
            db_message = e.message
    checks.append({
        "name": "Database",
        "ok": db_ok,
        "value": str(db_path),
        "message": db_message,
    })
    all_ok = all_ok and db_ok

    # Output results
    if json_output:
        output = {
            "ok": all_ok,
            "version": __version__,
            "checks": checks,
        }
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[bold]entrystore doctor[/bold] v{__version__}")
        console.print()

        for check in checks:
            icon = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            if check["ok"]:
                console.print(f"{icon} {check['name']}: [dim]{check['value']}[/dim] - {check['message']}")
            else:
                console.print(f"{icon} {check['name']}: [dim]{check['value']}[/dim]")
                console.print(f"    [red]{check['message']}[/red]")

        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


if __name__ == "__main__":
    app()

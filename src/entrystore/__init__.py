"""
entrystore - Durable single-table storage for timestamped entries.

entrystore keeps a list of timestamped integer entries in SQLite and
exposes it through a small API:
- Insert-or-replace, delete and point lookup, each transactional
- A live listing subscription that re-emits on every committed change
- JSON backup export/import with version compatibility checks

Example usage:
    $ entrystore add 5
    $ entrystore list
    $ entrystore watch
"""

__version__ = "0.1.0"
__author__ = "entrystore Contributors"

__all__ = [
    "__version__",
    "__author__",
]

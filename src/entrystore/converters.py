"""
Timestamp conversion between the API and the on-disk representation.

Entries carry timezone-aware datetimes; the entries table stores integer
epoch milliseconds. Both directions use integer arithmetic only, so the
conversion is exact and invertible:

    to_epoch_millis(from_epoch_millis(x)) == x
    from_epoch_millis(to_epoch_millis(t)) == t   (t at millisecond resolution)

None maps to None in both directions. It is never coerced into a present
value; callers decide whether a missing timestamp is an error.
"""

from datetime import UTC, datetime, timedelta

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ONE_MILLISECOND = timedelta(milliseconds=1)


def normalize_timestamp(value: datetime) -> datetime:
    """
    Bring a datetime to the store's resolution.

    Naive datetimes are taken to be UTC. The result is UTC and truncated
    (floored) to whole milliseconds.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def to_epoch_millis(value: datetime | None) -> int | None:
    """Convert an instant to epoch milliseconds (floored)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - EPOCH) // ONE_MILLISECOND


def from_epoch_millis(value: int | None) -> datetime | None:
    """Convert epoch milliseconds back to a UTC instant."""
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=value)

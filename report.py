"""Aggregation and rendering of enriched records.

Grouping happens once, after the worker pool has closed its output queue,
in a dict owned by the caller's run. Output order depends only on the group
key and the member ordering chosen below, never on worker completion order:

  list layout:  one block per group, a header line, then ``  - <line>``
                per record and a trailing ``Total count: N``.
  table layout: a single aligned table, one row per record, rows ordered
                by group key and then member order.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, TextIO

from enrichers import tag_sort_key
from models import EnrichmentResult, Group, Record

# ---------------------------------------------------------------------------
# Member orderings
# ---------------------------------------------------------------------------

ORDER_NUMBER = "number"
ORDER_CREATED = "created"
ORDER_RELEASED = "released"
ORDER_TAG = "tag"

_MISSING_TIME = float("inf")


def _tiebreak(record: Record) -> tuple[str, int, str]:
    return (record.collection, record.number, record.record_id)


def _newest_first(value: datetime | None) -> float:
    return -value.timestamp() if value is not None else _MISSING_TIME


MEMBER_ORDERS: dict[str, Callable[[Record], Any]] = {
    ORDER_NUMBER: lambda r: (r.number, _tiebreak(r)),
    ORDER_CREATED: lambda r: (_newest_first(r.created_at), _tiebreak(r)),
    ORDER_RELEASED: lambda r: (_newest_first(r.released_at), _tiebreak(r)),
    ORDER_TAG: lambda r: (tag_sort_key(r.status), _tiebreak(r)),
}

# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def group_results(
    results: Iterable[EnrichmentResult],
    key: Callable[[Record], str],
    keep: Callable[[Record], bool] | None = None,
) -> dict[str, list[Record]]:
    """Drain ``results`` into a fresh grouping map.

    Records rejected by ``keep`` are skipped, so a group only exists when at
    least one of its records survives.
    """
    groups: dict[str, list[Record]] = {}
    for result in results:
        record = result.record
        if keep is not None and not keep(record):
            continue
        groups.setdefault(key(record), []).append(record)
    return groups


def sort_groups(groups: dict[str, list[Record]], order: str = ORDER_NUMBER) -> list[Group]:
    """Return groups with keys ascending and members in ``order``."""
    try:
        member_key = MEMBER_ORDERS[order]
    except KeyError:
        raise ValueError(f"Unknown member order: {order!r}") from None
    return [
        Group(key=name, members=tuple(sorted(groups[name], key=member_key)))
        for name in sorted(groups)
    ]


def total_count(groups: Sequence[Group]) -> int:
    return sum(len(group.members) for group in groups)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

Column = tuple[str, Callable[[Record], str]]


def render_list(
    groups: Sequence[Group],
    line: Callable[[Record], str],
    out: TextIO | None = None,
) -> None:
    """Write grouped blocks with a header per group and a total."""
    out = out or sys.stdout
    for group in groups:
        out.write(f"{group.key}\n")
        for record in group.members:
            out.write(f"  - {line(record)}\n")
        out.write("\n")
    out.write(f"Total count: {total_count(groups)}\n")


def render_table(
    groups: Sequence[Group],
    columns: Sequence[Column],
    out: TextIO | None = None,
) -> None:
    """Write one aligned table covering every group."""
    out = out or sys.stdout
    header = [title for title, _ in columns]
    rows = [[getter(record) for _, getter in columns] for group in groups for record in group.members]

    widths = [len(title) for title in header]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]

    for row in [header, *rows]:
        cells = [cell.ljust(width) for cell, width in zip(row, widths)]
        out.write("  ".join(cells).rstrip() + "\n")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def truncate(text: str, width: int = 50) -> str:
    value = " ".join(text.split())
    return value if len(value) <= width else f"{value[: width - 3]}..."


def relative_age(when: datetime | None, now: datetime | None = None) -> str:
    """Human-readable age of ``when``: ``< 12 hours``, ``< 24 hours`` or ``N days ago``."""
    if when is None:
        return "-"
    now = now or datetime.now(UTC)
    days = round((now - when).total_seconds() / 86400)
    if days <= 0:
        return "< 12 hours"
    if days == 1:
        return "< 24 hours"
    return f"{days} days ago"


def format_date(when: datetime | None) -> str:
    return when.strftime("%a %b %d %H:%M:%S %Z %Y") if when is not None else "-"

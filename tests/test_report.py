from __future__ import annotations

import io
import random
from datetime import UTC, datetime, timedelta

import pytest

from models import EnrichmentResult, Record, RecordRef
from report import (
    ORDER_CREATED,
    ORDER_NUMBER,
    ORDER_RELEASED,
    ORDER_TAG,
    group_results,
    relative_age,
    render_list,
    render_table,
    sort_groups,
    truncate,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _record(
    collection: str,
    number: int,
    *,
    status: str = "unknown",
    terminal: bool = False,
    created_days_ago: int | None = None,
) -> Record:
    owner, name = collection.split("/")
    return Record(
        record_id=f"{collection}#{number}",
        ref=RecordRef(owner, name, number),
        title=f"Title {number}",
        status=status,
        terminal=terminal,
        created_at=NOW - timedelta(days=created_days_ago) if created_days_ago is not None else None,
    )


def _results(records: list[Record]) -> list[EnrichmentResult]:
    return [EnrichmentResult(record=r) for r in records]


SAMPLE = [
    _record("hashicorp/terraform", 30),
    _record("catsby/tfteam", 2),
    _record("hashicorp/terraform", 4),
    _record("terraform-providers/terraform-provider-aws", 9),
    _record("catsby/tfteam", 1),
    _record("hashicorp/terraform", 12),
]


def test_grouping_is_independent_of_completion_order() -> None:
    expected = sort_groups(group_results(_results(SAMPLE), key=lambda r: r.collection))

    for seed in range(10):
        shuffled = SAMPLE[:]
        random.Random(seed).shuffle(shuffled)
        groups = sort_groups(group_results(_results(shuffled), key=lambda r: r.collection))
        assert groups == expected

    assert [g.key for g in expected] == [
        "catsby/tfteam",
        "hashicorp/terraform",
        "terraform-providers/terraform-provider-aws",
    ]
    assert [r.number for r in expected[1].members] == [4, 12, 30]


def test_group_results_keep_filter_omits_empty_groups() -> None:
    records = [
        _record("a/x", 1, terminal=True),
        _record("a/x", 2),
        _record("b/y", 3),
    ]
    groups = group_results(_results(records), key=lambda r: r.collection, keep=lambda r: r.terminal)

    assert list(groups) == ["a/x"]
    assert [r.number for r in groups["a/x"]] == [1]


def test_group_results_uses_fresh_map_each_call() -> None:
    first = group_results(_results(SAMPLE[:1]), key=lambda r: r.collection)
    second = group_results(_results(SAMPLE[1:2]), key=lambda r: r.collection)

    assert list(first) == ["hashicorp/terraform"]
    assert list(second) == ["catsby/tfteam"]


def test_order_created_newest_first_missing_last() -> None:
    records = [
        _record("a/x", 1, created_days_ago=5),
        _record("a/x", 2),
        _record("a/x", 3, created_days_ago=1),
    ]
    groups = sort_groups({"a/x": records}, order=ORDER_CREATED)
    assert [r.number for r in groups[0].members] == [3, 1, 2]


def test_order_released_newest_first() -> None:
    old = _record("o/a", 0)
    old.released_at = NOW - timedelta(days=30)
    new = _record("o/b", 0)
    new.released_at = NOW - timedelta(days=1)
    none = _record("o/c", 0)

    groups = sort_groups({"o": [old, none, new]}, order=ORDER_RELEASED)
    assert [r.ref.name for r in groups[0].members] == ["b", "a", "c"]


def test_order_tag_semver_descending() -> None:
    records = [
        _record("o/a", 0, status="v0.9.0"),
        _record("o/b", 0, status="-"),
        _record("o/c", 0, status="v0.10.2"),
    ]
    groups = sort_groups({"o": records}, order=ORDER_TAG)
    assert [r.status for r in groups[0].members] == ["v0.10.2", "v0.9.0", "-"]


def test_order_tag_prereleases_newest_first() -> None:
    records = [
        _record("o/a", 0, status="v0.12.0-alpha1"),
        _record("o/b", 0, status="v0.11.14"),
        _record("o/c", 0, status="v0.12.0-beta2"),
    ]
    groups = sort_groups({"o": records}, order=ORDER_TAG)
    assert [r.status for r in groups[0].members] == ["v0.12.0-beta2", "v0.12.0-alpha1", "v0.11.14"]


def test_sort_groups_rejects_unknown_order() -> None:
    with pytest.raises(ValueError):
        sort_groups({}, order="alphabetical")


def test_render_list_layout() -> None:
    groups = sort_groups(group_results(_results(SAMPLE[:3]), key=lambda r: r.collection), order=ORDER_NUMBER)
    out = io.StringIO()

    render_list(groups, lambda r: f"{r.title} #{r.number}", out)

    assert out.getvalue() == (
        "catsby/tfteam\n"
        "  - Title 2 #2\n"
        "\n"
        "hashicorp/terraform\n"
        "  - Title 4 #4\n"
        "  - Title 30 #30\n"
        "\n"
        "Total count: 3\n"
    )


def test_render_table_rows_follow_group_then_member_order() -> None:
    groups = sort_groups(group_results(_results(SAMPLE[:3]), key=lambda r: r.collection))
    out = io.StringIO()

    render_table(groups, [("Repo", lambda r: r.collection), ("Number", lambda r: str(r.number))], out)

    lines = out.getvalue().splitlines()
    assert lines[0].split() == ["Repo", "Number"]
    assert [line.split() for line in lines[1:]] == [
        ["catsby/tfteam", "2"],
        ["hashicorp/terraform", "4"],
        ["hashicorp/terraform", "30"],
    ]
    # Columns are aligned to the widest cell.
    assert lines[1].index("2") == lines[0].index("Number")


def test_empty_render() -> None:
    out = io.StringIO()
    render_list([], lambda r: r.title, out)
    assert out.getvalue() == "Total count: 0\n"


@pytest.mark.parametrize(("delta", "expected"), [
    (timedelta(hours=3), "< 12 hours"),
    (timedelta(hours=30), "< 24 hours"),
    (timedelta(days=9, hours=2), "9 days ago"),
])
def test_relative_age(delta: timedelta, expected: str) -> None:
    assert relative_age(NOW - delta, now=NOW) == expected


def test_truncate() -> None:
    assert truncate("short") == "short"
    assert truncate("x" * 60, width=10) == "xxxxxxx..."

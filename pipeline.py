"""Generic classify -> enrich -> aggregate driver shared by every command."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from models import Group, Record, RecordRef
from pool import DEFAULT_WORKERS, WorkerPool
from report import ORDER_NUMBER, group_results, sort_groups

LOGGER = logging.getLogger(__name__)


def by_collection(record: Record) -> str:
    return record.collection


def by_author(record: Record) -> str:
    return record.author or "(unknown)"


def by_owner(record: Record) -> str:
    return record.ref.owner


@dataclass(slots=True)
class PipelineResult:
    groups: list[Group]
    submitted: int
    enriched: int
    dropped: list[RecordRef] = field(default_factory=list)


def run_pipeline(
    records: Sequence[Record],
    enrich: Callable[[Record], Record],
    *,
    group_by: Callable[[Record], str] = by_collection,
    order: str = ORDER_NUMBER,
    keep: Callable[[Record], bool] | None = None,
    workers: int = DEFAULT_WORKERS,
    cancel: threading.Event | None = None,
) -> PipelineResult:
    """Enrich ``records`` concurrently, then group and sort the survivors.

    Args:
        records: Classified records; each is submitted to the pool once.
        enrich: Per-record step from ``enrichers.make_enricher``.
        group_by: Grouping key (collection, author, owner...).
        order: Member ordering within a group, see ``report.MEMBER_ORDERS``.
        keep: Optional result-level filter applied before grouping.
        workers: Pool size.
        cancel: Event that, once set, makes workers skip remaining records.
    """
    run = WorkerPool(enrich, workers=workers, cancel=cancel).run(records)
    groups = sort_groups(group_results(run.results, key=group_by, keep=keep), order=order)

    shown = sum(len(group.members) for group in groups)
    LOGGER.info(
        "Pipeline complete. submitted=%s enriched=%s dropped=%s groups=%s shown=%s",
        run.submitted,
        run.enriched,
        len(run.dropped),
        len(groups),
        shown,
    )
    if run.dropped:
        LOGGER.warning(
            "%s record(s) dropped after failed lookups: %s",
            len(run.dropped),
            ", ".join(f"{ref.collection}#{ref.number}" for ref in run.dropped),
        )
    return PipelineResult(
        groups=groups,
        submitted=run.submitted,
        enriched=run.enriched,
        dropped=run.dropped,
    )

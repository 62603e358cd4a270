"""Paginated GitHub listing helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from errors import FatalError, ListingError, RemoteError
from github_client import ListQuery, RemoteSource
from models import RawItem

ON_ERROR_ABORT = "abort"
ON_ERROR_PARTIAL = "partial"

LOGGER = logging.getLogger(__name__)


def iter_items(
    remote: RemoteSource,
    query: ListQuery,
    on_error: str = ON_ERROR_ABORT,
) -> Iterator[RawItem]:
    """Yield every raw item of a listing, following next-page cursors.

    Pages are requested lazily, one at a time, until the remote stops
    returning a cursor. An empty page that still carries a cursor does not end
    the listing. Each call starts again from the first page.

    Args:
        remote: Remote source to list from.
        query: Listing to run.
        on_error: ``ON_ERROR_ABORT`` raises ``ListingError`` on the first failed
            page. ``ON_ERROR_PARTIAL`` logs a warning and stops, keeping what
            was already yielded. A ``FatalError`` aborts in either mode.

    Raises:
        ListingError: A page request failed and partial results are not allowed.
    """
    if on_error not in (ON_ERROR_ABORT, ON_ERROR_PARTIAL):
        raise ValueError(f"Unknown on_error policy: {on_error!r}")

    cursor: str | None = None
    pages = 0
    while True:
        try:
            page = remote.list_page(query, cursor)
        except RemoteError as exc:
            if on_error == ON_ERROR_ABORT or isinstance(exc, FatalError):
                raise ListingError(f"Listing {query.path} failed after {pages} page(s): {exc}") from exc
            LOGGER.warning(
                "Listing %s stopped after %s page(s), keeping partial results: %s",
                query.path,
                pages,
                exc,
            )
            return

        pages += 1
        yield from page.items

        if not page.next_cursor:
            LOGGER.debug("Listing %s exhausted after %s page(s)", query.path, pages)
            return
        cursor = page.next_cursor


def fetch_items(
    remote: RemoteSource,
    query: ListQuery,
    on_error: str = ON_ERROR_ABORT,
) -> list[RawItem]:
    """Materialize ``iter_items`` into a list."""
    items = list(iter_items(remote, query, on_error=on_error))
    LOGGER.info("Fetched %s items from %s params=%s", len(items), query.path, query.params)
    return items

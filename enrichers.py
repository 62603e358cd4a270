"""Per-record remote lookups run by the worker pool."""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from errors import EnrichmentError, MutationError, RemoteError
from filters import parse_datetime
from github_client import RemoteSource
from models import (
    KIND_RELEASE,
    STATUS_APPROVED,
    STATUS_REPLIED,
    STATUS_REVIEWED,
    STATUS_WAITING,
    EnrichmentMode,
    MutateIfClosed,
    Query,
    RawItem,
    Record,
    Resolver,
)

NO_TAG = "-"

LOGGER = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^v?(\d+(?:\.\d+)*)(.*)$")
_IDENTIFIER_RE = re.compile(r"\d+|[A-Za-z]+")
_OLDEST = datetime.min.replace(tzinfo=UTC)

# Closes every version/identifier tuple. It compares greater than any real
# element, so a shorter tuple sorts after the longer one it prefixes.
_END = (2,)


@functools.total_ordering
class _Descending:
    """Wraps a string so that it sorts in reverse alphabetical order."""

    __slots__ = ("value",)

    def __init__(self, value: str) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Descending) and self.value == other.value

    def __lt__(self, other: _Descending) -> bool:
        return self.value > other.value

    def __hash__(self) -> int:
        return hash(self.value)


def tag_sort_key(name: str) -> tuple[Any, ...]:
    """Sort key putting the newest semantic version first.

    ``v0.10.0`` sorts ahead of ``v0.9.3`` and ``v1.2.3.1`` ahead of
    ``v1.2.3``. For the same version a plain release sorts ahead of its
    pre-releases, and pre-releases run newest first
    (``v1.2.0``, ``v1.2.0-rc2``, ``v1.2.0-rc1``, ``v1.2.0-beta1``).
    Tags that don't look like versions sort last, alphabetically.
    """
    match = _VERSION_RE.match(name or "")
    if match is None:
        return (1, (), 0, (), name or "")
    numbers = [int(part) for part in match.group(1).split(".")]
    numbers += [0] * (3 - len(numbers))
    while len(numbers) > 3 and numbers[-1] == 0:
        numbers.pop()
    suffix = match.group(2)
    version = tuple((0, -n) for n in numbers) + (_END,)
    return (0, version, 1 if suffix else 0, _prerelease_key(suffix), name)


def _prerelease_key(suffix: str) -> tuple[tuple[Any, ...], ...]:
    # Alphanumeric identifiers outrank numeric ones, as in semver precedence.
    identifiers = []
    for token in _IDENTIFIER_RE.findall(suffix):
        if token.isdigit():
            identifiers.append((1, -int(token)))
        else:
            identifiers.append((0, _Descending(token.lower())))
    return tuple(identifiers) + (_END,)


def latest_review(reviews: Iterable[RawItem]) -> RawItem | None:
    """Return the most recently submitted review.

    Reviews without ``submitted_at`` (pending ones) count as the oldest.
    """
    ordered = sorted(reviews, key=_submitted_at, reverse=True)
    return ordered[0] if ordered else None


def review_status_resolver(team: Iterable[str]) -> Resolver:
    """Mark a record reviewed once any team member has commented on it."""
    members = frozenset(team)

    def resolve(remote: RemoteSource, record: Record) -> None:
        # Release notifications have no comment thread.
        if record.kind == KIND_RELEASE:
            return
        comments = remote.list_comments(record.ref)
        if not comments:
            return
        if any(_login(comment) in members for comment in comments):
            record.status = STATUS_REVIEWED

    return resolve


def resolve_approval_status(remote: RemoteSource, record: Record) -> None:
    """Adopt the state of the newest review verbatim.

    Known limitation: a later approval from one reviewer masks an earlier
    CHANGES_REQUESTED from another.
    """
    review = latest_review(remote.list_reviews(record.ref))
    if review is None:
        return
    state = review.get("state")
    if isinstance(state, str) and state:
        record.status = state
    record.terminal = record.status == STATUS_APPROVED


def waiting_status_resolver(team: Iterable[str]) -> Resolver:
    """``replied`` when the newest comment is from outside the team, else ``waiting``."""
    members = frozenset(team)

    def resolve(remote: RemoteSource, record: Record) -> None:
        comments = remote.list_comments(record.ref)
        record.status = STATUS_WAITING
        if not comments:
            return
        newest = max(comments, key=lambda c: parse_datetime(c.get("created_at")) or _OLDEST)
        if _login(newest) not in members:
            record.status = STATUS_REPLIED
            record.terminal = True

    return resolve


def resolve_latest_tag(remote: RemoteSource, record: Record) -> None:
    """Find the newest version tag of a repository and when it was cut."""
    tags = remote.list_tags(record.ref)
    if not tags:
        LOGGER.info("No tags for %s", record.collection)
        record.status = NO_TAG
        return

    tag = min(tags, key=lambda t: tag_sort_key(t.get("name") or ""))
    record.status = tag.get("name") or NO_TAG

    # Tags are not GitHub Releases, so the release date is the tagged commit's.
    sha = (tag.get("commit") or {}).get("sha")
    if not sha:
        return
    commit = remote.get_commit(record.ref, sha)
    record.released_at = parse_datetime((commit.get("author") or {}).get("date"))


def mark_read_if_closed(remote: RemoteSource, record: Record, dry_run: bool) -> None:
    """Mark the record's notification thread read when its issue is closed.

    A dry run sets ``terminal`` without the mutating call so the report shows
    what a live run would clean up.
    """
    # Release notifications carry a release id, not an issue number.
    if record.kind == KIND_RELEASE:
        return
    issue = remote.get_issue(record.ref)
    if issue.get("state") != "closed":
        return
    if dry_run:
        record.terminal = True
        return
    try:
        _mark_read(remote, record)
    except MutationError as exc:
        LOGGER.warning("%s", exc)
        return
    record.terminal = True


def make_enricher(mode: EnrichmentMode, remote: RemoteSource) -> Callable[[Record], Record]:
    """Bind ``mode`` to ``remote`` once, returning the per-record worker step.

    Remote failures come out as ``EnrichmentError`` so the pool drops the
    record and moves on.
    """
    if isinstance(mode, Query):
        resolve = mode.resolve

        def step(record: Record) -> None:
            resolve(remote, record)

    elif isinstance(mode, MutateIfClosed):
        dry_run = mode.dry_run

        def step(record: Record) -> None:
            mark_read_if_closed(remote, record, dry_run)

    else:
        raise TypeError(f"Unsupported enrichment mode: {mode!r}")

    def enrich(record: Record) -> Record:
        try:
            step(record)
        except RemoteError as exc:
            raise EnrichmentError(f"lookup failed for {record.collection}#{record.number}: {exc}") from exc
        return record

    return enrich


def _mark_read(remote: RemoteSource, record: Record) -> None:
    try:
        remote.mark_thread_read(record.record_id)
    except RemoteError as exc:
        raise MutationError(
            f"Error marking {record.collection}#{record.number} thread {record.record_id} as read: {exc}"
        ) from exc


def _submitted_at(review: RawItem) -> datetime:
    return parse_datetime(review.get("submitted_at")) or _OLDEST


def _login(item: RawItem) -> str | None:
    user = item.get("user")
    return user.get("login") if isinstance(user, dict) else None

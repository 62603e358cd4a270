"""Classifiers: raw GitHub listing items -> pipeline records (no network calls)."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

from models import (
    KIND_ISSUE,
    KIND_PULL,
    KIND_RELEASE,
    KIND_REPOSITORY,
    RawItem,
    Record,
    RecordRef,
)

LOGGER = logging.getLogger(__name__)

# Path templates for the two URL shapes GitHub hands back. Notification
# subjects use the API form, search results carry the html form.
API_TEMPLATE = "/repos/{owner}/{name}/{kind}/{number}"
HTML_TEMPLATE = "/{owner}/{name}/{kind}/{number}"


def parse_record_ref(url: str | None, template: str = API_TEMPLATE) -> RecordRef | None:
    """Match ``url``'s path against ``template`` and return its RecordRef.

    Literal template segments must match exactly, ``{owner}``/``{name}`` take
    any non-empty segment, and ``{number}`` must parse as an integer. Trailing
    path segments beyond the template are not allowed. Returns None on any
    mismatch instead of raising.
    """
    if not url:
        return None
    path = urlsplit(url).path
    segments = path.strip("/").split("/")
    pattern = template.strip("/").split("/")
    if len(segments) != len(pattern):
        return None

    fields: dict[str, str] = {}
    for segment, expected in zip(segments, pattern):
        if expected.startswith("{") and expected.endswith("}"):
            if not segment:
                return None
            fields[expected[1:-1]] = segment
        elif segment != expected:
            return None

    try:
        number = int(fields.get("number", "0"))
    except ValueError:
        return None
    if "owner" not in fields or "name" not in fields:
        return None
    return RecordRef(owner=fields["owner"], name=fields["name"], number=number)


def matches_any(value: str | None, accepted: Iterable[str]) -> bool:
    """Return True when ``value`` contains one of the accepted substrings."""
    if not value:
        return False
    return any(token in value for token in accepted)


def classify_notification(item: RawItem, accepted: Iterable[str]) -> Record | None:
    """Keep public, non-commit notifications from accepted repositories."""
    repository = _as_dict(item.get("repository"))
    subject = _as_dict(item.get("subject"))

    if not matches_any(_as_str(repository.get("name")), accepted):
        return None
    if repository.get("private") is True:
        return None
    # Commits are never closed or merged, so there is nothing to look up.
    if subject.get("type") == "Commit":
        return None

    ref = parse_record_ref(_as_str(subject.get("url")), API_TEMPLATE)
    thread_id = _as_str(item.get("id"))
    if ref is None or not thread_id:
        return None

    kind = {"releases": KIND_RELEASE, "pulls": KIND_PULL}.get(_url_kind(subject.get("url")), KIND_ISSUE)
    return Record(
        record_id=thread_id,
        ref=ref,
        kind=kind,
        title=_as_str(subject.get("title")) or "",
        url=_as_str(subject.get("url")) or "",
        created_at=parse_datetime(item.get("updated_at")),
    )


def classify_pull_request(item: RawItem, accepted: Iterable[str]) -> Record | None:
    """Keep open pull requests whose html URL belongs to an accepted repository."""
    html_url = _as_str(item.get("html_url"))
    if not matches_any(html_url, accepted):
        return None
    ref = parse_record_ref(html_url, HTML_TEMPLATE)
    if ref is None:
        return None
    return Record(
        record_id=html_url,
        ref=ref,
        kind=KIND_PULL,
        title=_as_str(item.get("title")) or "",
        url=html_url,
        author=_as_str(_as_dict(item.get("user")).get("login")) or "",
        created_at=parse_datetime(item.get("created_at")),
    )


def classify_issue(item: RawItem) -> Record | None:
    """Map a search result (issue or pull request) to a record."""
    html_url = _as_str(item.get("html_url"))
    ref = parse_record_ref(html_url, HTML_TEMPLATE)
    if ref is None:
        return None
    return Record(
        record_id=html_url,
        ref=ref,
        kind=KIND_PULL if item.get("pull_request") else KIND_ISSUE,
        title=_as_str(item.get("title")) or "",
        url=html_url,
        author=_as_str(_as_dict(item.get("user")).get("login")) or "",
        created_at=parse_datetime(item.get("created_at")),
    )


def classify_repository(item: RawItem, require_issues: bool = False) -> Record | None:
    """Keep public repositories (optionally only those with issues enabled)."""
    if item.get("private") is True:
        return None
    if require_issues and not item.get("has_issues"):
        return None
    owner = _as_str(_as_dict(item.get("owner")).get("login"))
    name = _as_str(item.get("name"))
    if not owner or not name:
        return None
    ref = RecordRef(owner=owner, name=name)
    return Record(
        record_id=ref.collection,
        ref=ref,
        kind=KIND_REPOSITORY,
        title=name,
        url=_as_str(item.get("html_url")) or "",
    )


def classify_member(item: RawItem, excluded: Iterable[str] = ()) -> str | None:
    """Return the member's login unless it is an excluded (bot) account."""
    login = _as_str(item.get("login"))
    if not login or login in set(excluded):
        return None
    return login


def classify(items: Iterable[RawItem], classifier: Callable[[RawItem], Any]) -> list[Any]:
    """Apply ``classifier`` to every item, keeping survivors in input order."""
    kept: list[Any] = []
    total = 0
    for item in items:
        total += 1
        result = classifier(item)
        if result is not None:
            kept.append(result)
    LOGGER.info(
        "Classifier: total=%s, kept=%s, dropped=%s",
        total,
        len(kept),
        total - len(kept),
    )
    return kept


def _url_kind(url: Any) -> str:
    if not isinstance(url, str):
        return ""
    parts = urlsplit(url).path.strip("/").split("/")
    return parts[-2] if len(parts) >= 2 else ""


def parse_datetime(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None

    # GitHub returns RFC3339 timestamps with a trailing Z.
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None

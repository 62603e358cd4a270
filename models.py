"""Shared typed models for the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:
    from github_client import RemoteSource

RawItem = dict[str, Any]

STATUS_UNKNOWN = "unknown"
STATUS_REVIEWED = "reviewed"
STATUS_WAITING = "waiting"
STATUS_REPLIED = "replied"
STATUS_APPROVED = "APPROVED"
STATUS_COMMENTED = "COMMENTED"
STATUS_CHANGES_REQUESTED = "CHANGES_REQUESTED"

KIND_ISSUE = "issue"
KIND_PULL = "pull"
KIND_RELEASE = "release"
KIND_REPOSITORY = "repository"


@dataclass(frozen=True, slots=True)
class RecordRef:
    """Typed pointer to one issue, pull request or repository."""

    owner: str
    name: str
    number: int = 0

    @property
    def collection(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(slots=True)
class Record:
    """Classified work item handed to exactly one worker.

    ``status``, ``terminal`` and ``released_at`` are written by the worker
    that dequeues the record and are read-only after it is published.
    """

    record_id: str
    ref: RecordRef
    kind: str = KIND_ISSUE
    title: str = ""
    url: str = ""
    author: str = ""
    created_at: datetime | None = None
    status: str = STATUS_UNKNOWN
    terminal: bool = False
    released_at: datetime | None = None

    @property
    def collection(self) -> str:
        return self.ref.collection

    @property
    def number(self) -> int:
        return self.ref.number

    @property
    def html_url(self) -> str:
        if self.url.startswith("https://github.com/"):
            return self.url
        if self.kind == KIND_REPOSITORY:
            return f"https://github.com/{self.collection}"
        if self.kind == KIND_RELEASE:
            return f"https://github.com/{self.collection}/releases"
        return f"https://github.com/{self.collection}/issues/{self.number}"


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    """A record whose per-record remote operation completed."""

    record: Record


@dataclass(frozen=True, slots=True)
class Group:
    """Records sharing one grouping key, already in display order."""

    key: str
    members: tuple[Record, ...]


Resolver = Callable[["RemoteSource", Record], None]


@dataclass(frozen=True, slots=True)
class Query:
    """Read-only enrichment: ``resolve`` computes the record's status."""

    resolve: Resolver


@dataclass(frozen=True, slots=True)
class MutateIfClosed:
    """Mark the notification thread read when its issue is closed."""

    dry_run: bool = False


EnrichmentMode = Union[Query, MutateIfClosed]

from __future__ import annotations

import threading
from collections.abc import Callable

import pytest

from config import Settings
from errors import RecoverableError
from github_client import ListQuery, Page
from models import RawItem, RecordRef


class FakeRemote:
    """In-memory RemoteSource. Thread-safe call log, canned responses per ref."""

    def __init__(self) -> None:
        self.pages: dict[str, list[Page]] = {}
        self.comments: dict[RecordRef, list[RawItem]] = {}
        self.reviews: dict[RecordRef, list[RawItem]] = {}
        self.tags: dict[RecordRef, list[RawItem]] = {}
        self.issues: dict[RecordRef, RawItem] = {}
        self.commits: dict[str, RawItem] = {}
        self.failing: set[RecordRef] = set()
        self.failing_mutations: set[str] = set()
        self.calls: list[tuple[str, object]] = []
        self.on_detail: Callable[[RecordRef], None] | None = None
        self._lock = threading.Lock()

    def _record(self, name: str, arg: object) -> None:
        with self._lock:
            self.calls.append((name, arg))

    def calls_to(self, name: str) -> list[object]:
        with self._lock:
            return [arg for call, arg in self.calls if call == name]

    def _detail(self, name: str, ref: RecordRef):
        self._record(name, ref)
        if self.on_detail is not None:
            self.on_detail(ref)
        if ref in self.failing:
            raise RecoverableError(f"404 for {ref.collection}#{ref.number}", 404)

    def list_page(self, query: ListQuery, cursor: str | None = None) -> Page:
        self._record("list_page", (query.path, cursor))
        pages = self.pages.get(query.path, [Page(items=[])])
        index = int(cursor) if cursor else 0
        page = pages[index]
        if isinstance(page, Exception):
            raise page
        return page

    def list_comments(self, ref: RecordRef) -> list[RawItem]:
        self._detail("list_comments", ref)
        return list(self.comments.get(ref, []))

    def list_reviews(self, ref: RecordRef) -> list[RawItem]:
        self._detail("list_reviews", ref)
        return list(self.reviews.get(ref, []))

    def list_tags(self, ref: RecordRef) -> list[RawItem]:
        self._detail("list_tags", ref)
        return list(self.tags.get(ref, []))

    def get_issue(self, ref: RecordRef) -> RawItem:
        self._detail("get_issue", ref)
        return dict(self.issues.get(ref, {"state": "open"}))

    def get_commit(self, ref: RecordRef, sha: str) -> RawItem:
        self._detail("get_commit", ref)
        return dict(self.commits.get(sha, {}))

    def mark_thread_read(self, thread_id: str) -> None:
        self._record("mark_thread_read", thread_id)
        if thread_id in self.failing_mutations:
            raise RecoverableError(f"could not mark thread {thread_id}", 500)


def paged(*pages: list[RawItem]) -> list[Page]:
    """Build a page chain whose cursors are the next page's index."""
    return [
        Page(items=items, next_cursor=str(i + 1) if i + 1 < len(pages) else None)
        for i, items in enumerate(pages)
    ]


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        token="test-token",
        workers=3,
        team_members=("catsby", "jbardin"),
        accepted_repos=("terraform", "tfteam"),
    )

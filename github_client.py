"""GitHub REST API client used as the pipeline's remote source."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from config import GITHUB_API_URL
from errors import FatalError, RecoverableError
from models import RawItem, RecordRef

REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3
PER_PAGE = 100

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ListQuery:
    """One paginated listing: endpoint path, query params, and envelope key.

    ``items_key`` is ``"items"`` for the search API (which wraps results in an
    object) and ``None`` for endpoints that return a bare JSON list.
    """

    path: str
    params: dict[str, Any] = field(default_factory=dict)
    items_key: str | None = None


@dataclass(frozen=True, slots=True)
class Page:
    items: list[RawItem]
    next_cursor: str | None = None


class RemoteSource(Protocol):
    """Capabilities the pipeline needs from the remote system.

    Implementations must be safe to share across worker threads.
    """

    def list_page(self, query: ListQuery, cursor: str | None = None) -> Page: ...

    def list_comments(self, ref: RecordRef) -> list[RawItem]: ...

    def list_reviews(self, ref: RecordRef) -> list[RawItem]: ...

    def list_tags(self, ref: RecordRef) -> list[RawItem]: ...

    def get_issue(self, ref: RecordRef) -> RawItem: ...

    def get_commit(self, ref: RecordRef, sha: str) -> RawItem: ...

    def mark_thread_read(self, thread_id: str) -> None: ...


class GitHubClient:
    """Token-authenticated GitHub client.

    Holds no per-connection state, so one instance can be handed to every
    worker in the pool.
    """

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    # -- listing -----------------------------------------------------------

    def list_page(self, query: ListQuery, cursor: str | None = None) -> Page:
        """Fetch one page. ``cursor`` is the next-page URL from a previous call."""
        if cursor:
            response = self._request("GET", cursor)
        else:
            params = {"per_page": PER_PAGE, **query.params}
            response = self._request("GET", self._url(query.path), params=params)

        body = _json(response)
        if query.items_key is not None:
            body = body.get(query.items_key, []) if isinstance(body, dict) else []
        if not isinstance(body, list):
            raise RecoverableError(f"Unexpected listing payload for {query.path}: expected a list")

        return Page(items=body, next_cursor=_next_link(response))

    # -- per-record detail reads --------------------------------------------

    def list_comments(self, ref: RecordRef) -> list[RawItem]:
        return self._collect(f"/repos/{ref.owner}/{ref.name}/issues/{ref.number}/comments")

    def list_reviews(self, ref: RecordRef) -> list[RawItem]:
        return self._collect(f"/repos/{ref.owner}/{ref.name}/pulls/{ref.number}/reviews")

    def list_tags(self, ref: RecordRef) -> list[RawItem]:
        return self._collect(f"/repos/{ref.owner}/{ref.name}/tags")

    def get_issue(self, ref: RecordRef) -> RawItem:
        return _json(self._request("GET", self._url(f"/repos/{ref.owner}/{ref.name}/issues/{ref.number}")))

    def get_commit(self, ref: RecordRef, sha: str) -> RawItem:
        return _json(self._request("GET", self._url(f"/repos/{ref.owner}/{ref.name}/git/commits/{sha}")))

    # -- mutation -------------------------------------------------------------

    def mark_thread_read(self, thread_id: str) -> None:
        self._request("PATCH", self._url(f"/notifications/threads/{thread_id}"))

    # -- internals ------------------------------------------------------------

    def _collect(self, path: str) -> list[RawItem]:
        """Follow every page of a detail listing and return all items."""
        query = ListQuery(path=path)
        items: list[RawItem] = []
        cursor: str | None = None
        while True:
            page = self.list_page(query, cursor)
            items.extend(page.items)
            if not page.next_cursor:
                return items
            cursor = page.next_cursor

    def _url(self, path: str) -> str:
        return f"{self.api_url}{path}"

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> requests.Response:
        """Send a request with exponential backoff on rate limits and 5xx."""
        delay_seconds = 1.0
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = requests.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    timeout=self.timeout,
                )
                if _is_retryable(response) and attempt < self.max_retries:
                    LOGGER.debug(
                        "GitHub %s %s returned %s, retrying in %.1fs (attempt %s/%s)",
                        method,
                        url,
                        response.status_code,
                        delay_seconds,
                        attempt,
                        self.max_retries,
                    )
                    time.sleep(delay_seconds)
                    delay_seconds *= 2
                    continue
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status == 401:
                    raise FatalError(f"GitHub rejected the API token: {method} {url}", status) from exc
                raise RecoverableError(f"GitHub {method} {url} failed: {exc}", status) from exc
            except requests.RequestException as exc:
                last_error = exc
                if attempt >= self.max_retries:
                    break
                time.sleep(delay_seconds)
                delay_seconds *= 2

        raise RecoverableError(f"GitHub {method} {url} failed after retries: {last_error}")


def _is_retryable(response: requests.Response) -> bool:
    if response.status_code == 429 or response.status_code >= 500:
        return True
    # Secondary rate limits come back as 403 with the remaining quota at zero.
    return response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"


def _json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RecoverableError(f"GitHub returned a non-JSON body for {response.url}") from exc


def _next_link(response: requests.Response) -> str | None:
    link = response.links.get("next") if response.links else None
    return link.get("url") if link else None

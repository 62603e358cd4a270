"""CLI entrypoint for the tfteam GitHub review tools."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import TextIO

from dotenv import load_dotenv

from config import HASHI_PROVIDER_REPOS, Settings, load_settings
from enrichers import (
    make_enricher,
    resolve_approval_status,
    resolve_latest_tag,
    review_status_resolver,
    waiting_status_resolver,
)
from errors import ConfigError, ListingError
from filters import (
    classify,
    classify_issue,
    classify_member,
    classify_notification,
    classify_pull_request,
    classify_repository,
)
from gh_feed import ON_ERROR_ABORT, ON_ERROR_PARTIAL, fetch_items
from github_client import GitHubClient, ListQuery, RemoteSource
from models import (
    KIND_PULL,
    KIND_REPOSITORY,
    STATUS_APPROVED,
    STATUS_CHANGES_REQUESTED,
    STATUS_COMMENTED,
    STATUS_REPLIED,
    STATUS_REVIEWED,
    STATUS_UNKNOWN,
    MutateIfClosed,
    Query,
    RawItem,
    Record,
    RecordRef,
)
from pipeline import PipelineResult, by_author, by_collection, by_owner, run_pipeline
from report import (
    ORDER_CREATED,
    ORDER_NUMBER,
    ORDER_RELEASED,
    ORDER_TAG,
    Column,
    format_date,
    relative_age,
    render_list,
    render_table,
    truncate,
)

# GitHub search rejects very long queries, so repo:/author: terms are batched.
SEARCH_TERMS_PER_QUERY = 5
WAITING_WINDOW_DAYS = 3

PR_STATUS_FILTERS = {
    "approved": STATUS_APPROVED,
    "changes": STATUS_CHANGES_REQUESTED,
    "commented": STATUS_COMMENTED,
    "none": STATUS_UNKNOWN,
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(prog="tfteam", description="Terraform team GitHub review helpers")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent lookups (default TFTEAM_WORKERS or 5)")
    parser.add_argument("--table", action="store_true", help="Render one table instead of grouped lists")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    commands = parser.add_subparsers(dest="command", required=True)

    notifications = commands.add_parser(
        "notifications",
        help="Notifications with no team member comment, or clean up closed ones",
    )
    notifications.add_argument("--cleanup", action="store_true", help="Mark notifications for closed issues/PRs read")
    notifications.add_argument(
        "--dry-run",
        action="store_true",
        help="With --cleanup, only show what would be marked read",
    )

    prs = commands.add_parser("prs", help="Open pull requests by team members with their review state")
    prs.add_argument("--status", choices=sorted(PR_STATUS_FILTERS), default=None, help="Only show PRs in this state")
    prs.add_argument("--sort", choices=["number", "created"], default="number", help="Order within each author")

    releases = commands.add_parser("releases", help="Latest version tag of every provider and of core")
    releases.add_argument("--sort", choices=["released", "tag"], default="released", help="Order within each owner")

    for name, help_text in (
        ("triage", "Open issues with no label"),
        ("waiting", f"Issues labeled waiting-response updated in the past {WAITING_WINDOW_DAYS} days"),
    ):
        sub = commands.add_parser(name, help=help_text)
        kind = sub.add_mutually_exclusive_group()
        kind.add_argument("-p", "--pulls", action="store_true", help="Only list pull requests")
        kind.add_argument("-a", "--all", action="store_true", help="List issues and pull requests across every provider")
        sub.add_argument(
            "-t",
            "--type",
            choices=["hashi", "h", "all", "a"],
            default="hashi",
            help="Provider set to search (default: hashi)",
        )
        if name == "triage":
            sub.add_argument("--unreviewed", action="store_true", help="Hide issues a team member already commented on")
        else:
            sub.add_argument("--replied", action="store_true", help="Only show issues where the author replied last")

    args = parser.parse_args(argv)
    if args.command == "notifications" and args.dry_run and not args.cleanup:
        parser.error("--dry-run requires --cleanup")
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be >= 1")
    return args


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def run_notifications(
    remote: RemoteSource,
    settings: Settings,
    *,
    cleanup: bool = False,
    dry_run: bool = False,
    table: bool = False,
    workers: int | None = None,
    out: TextIO | None = None,
) -> PipelineResult:
    """Review state of notifications, or mark the closed ones read."""
    out = out or sys.stdout
    items = fetch_items(remote, ListQuery("/notifications"), on_error=ON_ERROR_ABORT)
    records = classify(items, partial(classify_notification, accepted=settings.accepted_repos))

    if cleanup:
        title = "Notifications cleanup" + (" - dry run" if dry_run else "")
        mode = MutateIfClosed(dry_run=dry_run)
        keep = _is_terminal
    else:
        title = "Notifications that have no TF Team Member comment"
        mode = Query(review_status_resolver(settings.team_members))
        keep = _not_reviewed

    _banner(out, title)
    result = run_pipeline(
        records,
        make_enricher(mode, remote),
        group_by=by_collection,
        order=ORDER_NUMBER,
        keep=keep,
        workers=workers or settings.workers,
    )
    _render(result, table, NOTIFICATION_COLUMNS, _notification_line, out)
    return result


def run_prs(
    remote: RemoteSource,
    settings: Settings,
    *,
    status: str | None = None,
    sort: str = "number",
    table: bool = False,
    workers: int | None = None,
    out: TextIO | None = None,
) -> PipelineResult:
    """Open PRs authored by team members, grouped by author with approval state."""
    out = out or sys.stdout
    member_items = fetch_items(
        remote,
        ListQuery(f"/teams/{settings.team_id}/members", {"role": "all"}),
        on_error=ON_ERROR_ABORT,
    )
    members = classify(member_items, partial(classify_member, excluded=settings.excluded_members))

    queries = [
        ListQuery("/search/issues", {"q": f"state:open type:pr {terms}"}, items_key="items")
        for terms in _search_terms("author", members)
    ]
    items = _search(remote, queries, on_error=ON_ERROR_ABORT)
    records = _unique(classify(items, partial(classify_pull_request, accepted=settings.accepted_repos)))

    keep = None
    if status is not None:
        wanted = PR_STATUS_FILTERS[status]
        keep = lambda record: record.status == wanted  # noqa: E731

    result = run_pipeline(
        records,
        make_enricher(Query(resolve_approval_status), remote),
        group_by=by_author,
        order=ORDER_CREATED if sort == "created" else ORDER_NUMBER,
        keep=keep,
        workers=workers or settings.workers,
    )
    _render(result, table, PR_COLUMNS, _pr_line, out)
    return result


def run_releases(
    remote: RemoteSource,
    settings: Settings,
    *,
    sort: str = "released",
    table: bool = False,
    workers: int | None = None,
    out: TextIO | None = None,
) -> PipelineResult:
    """Latest version tag of each public provider repository plus core."""
    out = out or sys.stdout
    items = fetch_items(
        remote,
        ListQuery(f"/orgs/{settings.providers_org}/repos", {"type": "public"}),
        on_error=ON_ERROR_ABORT,
    )
    records = classify(items, classify_repository)
    core = _core_record(settings.core_repo)
    if core is not None and all(r.collection != core.collection for r in records):
        records.append(core)

    result = run_pipeline(
        records,
        make_enricher(Query(resolve_latest_tag), remote),
        group_by=by_owner,
        order=ORDER_TAG if sort == "tag" else ORDER_RELEASED,
        workers=workers or settings.workers,
    )
    _render(result, table, RELEASE_COLUMNS, _release_line, out)
    return result


def run_triage(
    remote: RemoteSource,
    settings: Settings,
    *,
    pulls: bool = False,
    all_items: bool = False,
    provider_type: str = "hashi",
    unreviewed: bool = False,
    table: bool = False,
    workers: int | None = None,
    out: TextIO | None = None,
) -> PipelineResult:
    """Open issues with no label, annotated with whether the team has commented."""
    out = out or sys.stdout
    repos = _repo_scope(remote, settings, all_repos=all_items or provider_type in ("all", "a"))
    kind = _kind_filter(pulls, all_items)
    queries = [
        ListQuery("/search/issues", {"q": _join_terms("state:open no:label", terms, kind), "sort": "updated"}, "items")
        for terms in _search_terms("repo", repos)
    ]
    records = _unique(classify(_search(remote, queries, on_error=ON_ERROR_PARTIAL), classify_issue))

    _banner(out, "Unlabeled issues")
    result = run_pipeline(
        records,
        make_enricher(Query(review_status_resolver(settings.team_members)), remote),
        group_by=by_collection,
        order=ORDER_CREATED,
        keep=_not_reviewed if unreviewed else None,
        workers=workers or settings.workers,
    )
    _render(result, table, ISSUE_COLUMNS, _issue_line, out)
    return result


def run_waiting(
    remote: RemoteSource,
    settings: Settings,
    *,
    pulls: bool = False,
    all_items: bool = False,
    provider_type: str = "hashi",
    replied: bool = False,
    table: bool = False,
    workers: int | None = None,
    now: datetime | None = None,
    out: TextIO | None = None,
) -> PipelineResult:
    """Recently updated waiting-response issues, flagging those with a reply."""
    out = out or sys.stdout
    repos = _repo_scope(remote, settings, all_repos=all_items or provider_type in ("all", "a"))
    kind = _kind_filter(pulls, all_items)
    since = ((now or datetime.now(UTC)) - timedelta(days=WAITING_WINDOW_DAYS)).date().isoformat()
    queries = [
        ListQuery(
            "/search/issues",
            {"q": _join_terms("state:open label:waiting-response", terms, kind, f"updated:>={since}"), "sort": "updated"},
            "items",
        )
        for terms in _search_terms("repo", repos)
    ]
    records = _unique(classify(_search(remote, queries, on_error=ON_ERROR_PARTIAL), classify_issue))

    _banner(out, "Issues waiting on a response")
    result = run_pipeline(
        records,
        make_enricher(Query(waiting_status_resolver(settings.team_members)), remote),
        group_by=by_collection,
        order=ORDER_CREATED,
        keep=(lambda r: r.status == STATUS_REPLIED) if replied else None,
        workers=workers or settings.workers,
    )
    _render(result, table, ISSUE_COLUMNS, _issue_line, out)
    return result


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


def _short_repo(record: Record) -> str:
    return record.ref.name.removeprefix("terraform-")


def _notification_line(record: Record) -> str:
    return f"{record.title} - {record.html_url}"


def _pr_line(record: Record) -> str:
    approved = " - ✅" if record.status == STATUS_APPROVED else ""
    return f"{truncate(record.title)}  {record.html_url}{approved}"


def _release_line(record: Record) -> str:
    return f"{record.ref.name}  {record.status}  {format_date(record.released_at)}  {relative_age(record.released_at)}"


def _issue_line(record: Record) -> str:
    item_type = "[p]" if record.kind == KIND_PULL else "[i]"
    return f"#{record.number:6d} {item_type} {record.html_url:<75} {record.title} ({record.status})"


NOTIFICATION_COLUMNS: list[Column] = [
    ("Repo", lambda r: r.collection),
    ("Number", lambda r: str(r.number)),
    ("Title", lambda r: truncate(r.title)),
    ("Link", lambda r: r.html_url),
]
PR_COLUMNS: list[Column] = [
    ("Status", lambda r: r.status),
    ("Repo", _short_repo),
    ("Author", lambda r: r.author),
    ("Title", lambda r: truncate(r.title)),
    ("Link", lambda r: r.html_url),
]
RELEASE_COLUMNS: list[Column] = [
    ("Owner", lambda r: r.ref.owner),
    ("Repo", lambda r: r.ref.name),
    ("Tag", lambda r: r.status),
    ("Date", lambda r: format_date(r.released_at)),
    ("Age", lambda r: relative_age(r.released_at)),
]
ISSUE_COLUMNS: list[Column] = [
    ("Status", lambda r: r.status),
    ("Repo", _short_repo),
    ("Author", lambda r: r.author),
    ("Title", lambda r: truncate(r.title)),
    ("Link", lambda r: r.html_url),
]


def _render(
    result: PipelineResult,
    table: bool,
    columns: list[Column],
    line: Callable[[Record], str],
    out: TextIO,
) -> None:
    if table:
        render_table(result.groups, columns, out)
    else:
        render_list(result.groups, line, out)


def _banner(out: TextIO, title: str) -> None:
    out.write(f"------\n{title}\n------\n\n")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_terminal(record: Record) -> bool:
    return record.terminal


def _not_reviewed(record: Record) -> bool:
    return record.status != STATUS_REVIEWED


def _kind_filter(pulls: bool, all_items: bool) -> str:
    if all_items:
        return ""
    return "is:pr" if pulls else "is:issue"


def _join_terms(*parts: str) -> str:
    return " ".join(part for part in parts if part)


def _search_terms(qualifier: str, values: Sequence[str]) -> list[str]:
    """Split ``values`` into ``qualifier:value`` strings small enough for search."""
    return [
        " ".join(f"{qualifier}:{value}" for value in values[start : start + SEARCH_TERMS_PER_QUERY])
        for start in range(0, len(values), SEARCH_TERMS_PER_QUERY)
    ]


def _search(remote: RemoteSource, queries: Iterable[ListQuery], on_error: str) -> list[RawItem]:
    items: list[RawItem] = []
    for query in queries:
        items.extend(fetch_items(remote, query, on_error=on_error))
    return items


def _unique(records: list[Record]) -> list[Record]:
    """Drop repeated records so each one is submitted to the pool once."""
    seen: set[str] = set()
    unique: list[Record] = []
    for record in records:
        if record.record_id in seen:
            continue
        seen.add(record.record_id)
        unique.append(record)
    return unique


def _repo_scope(remote: RemoteSource, settings: Settings, all_repos: bool) -> list[str]:
    if not all_repos:
        return list(HASHI_PROVIDER_REPOS)
    items = fetch_items(
        remote,
        ListQuery(f"/orgs/{settings.providers_org}/repos", {"type": "public"}),
        on_error=ON_ERROR_ABORT,
    )
    repos = classify(items, partial(classify_repository, require_issues=True))
    return [record.collection for record in repos]


def _core_record(core_repo: str) -> Record | None:
    owner, _, name = core_repo.partition("/")
    if not owner or not name:
        logging.warning("Ignoring malformed TFTEAM_CORE_REPO=%r", core_repo)
        return None
    ref = RecordRef(owner=owner, name=name)
    return Record(record_id=ref.collection, ref=ref, kind=KIND_REPOSITORY, title=name)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Initialize config and execute one command. Returns the exit status."""
    load_dotenv()
    args = parse_args(argv)
    level = logging.DEBUG if args.verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 1

    remote = GitHubClient(settings.token, api_url=settings.api_url)
    common = {"table": args.table, "workers": args.workers}

    try:
        if args.command == "notifications":
            run_notifications(remote, settings, cleanup=args.cleanup, dry_run=args.dry_run, **common)
        elif args.command == "prs":
            run_prs(remote, settings, status=args.status, sort=args.sort, **common)
        elif args.command == "releases":
            run_releases(remote, settings, sort=args.sort, **common)
        elif args.command == "triage":
            run_triage(
                remote,
                settings,
                pulls=args.pulls,
                all_items=args.all,
                provider_type=args.type,
                unreviewed=args.unreviewed,
                **common,
            )
        else:
            run_waiting(
                remote,
                settings,
                pulls=args.pulls,
                all_items=args.all,
                provider_type=args.type,
                replied=args.replied,
                **common,
            )
    except ListingError as exc:
        logging.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


def run_cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run_cli()

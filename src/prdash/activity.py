"""Organization activity feed.

Raw commit and pull-request search results are mapped into tagged
``ActivityItem`` records, filtered, sorted newest first and sliced into
pages. The cursor is a plain page counter. Filtering happens after the
fetch, so the fetch breadth grows with the requested page to leave enough
items for a full page.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import ValidationError
from .gh_client import GitHubClient, dig
from .models import ActivityItem, ActivityPage, Actor
from .windows import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

ACTIVITY_TYPES = ("commit", "review", "pr_opened", "pr_closed", "pr_merged")
PR_ACTIVITY_TYPES = frozenset({"review", "pr_opened", "pr_closed", "pr_merged"})
_TYPE_ALIASES = {"merge": "pr_merged"}

DEFAULT_PAGE_SIZE = 20
MAX_FETCH = 100

PR_SEARCH_QUERY = """
query($q: String!, $first: Int!) {
  search(query: $q, type: ISSUE, first: $first) {
    nodes {
      ... on PullRequest {
        number
        title
        url
        createdAt
        updatedAt
        closedAt
        mergedAt
        author { login ... on User { name } }
        mergedBy { login ... on User { name } }
        repository { nameWithOwner }
        reviews(last: 50) {
          nodes {
            databaseId
            state
            submittedAt
            author { login ... on User { name } }
          }
        }
        timelineItems(itemTypes: [CLOSED_EVENT], last: 1) {
          nodes { ... on ClosedEvent { actor { login ... on User { name } } } }
        }
      }
    }
  }
}
"""


def normalize_types(types: Optional[Iterable[str]]) -> Set[str]:
    """Validate a type filter; an empty filter selects every type."""
    selected: Set[str] = set()
    for raw in types or ():
        activity_type = _TYPE_ALIASES.get(raw, raw)
        if activity_type not in ACTIVITY_TYPES:
            raise ValidationError(
                f"Invalid activity type {raw!r}: expected one of {', '.join(ACTIVITY_TYPES)}."
            )
        selected.add(activity_type)
    return selected or set(ACTIVITY_TYPES)


def parse_cursor(cursor: Optional[str]) -> int:
    """Turn an opaque cursor into a 1-based page number."""
    if cursor is None or str(cursor).strip() == "":
        return 1
    try:
        page = int(str(cursor).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid cursor {cursor!r}.") from exc
    if page < 1:
        raise ValidationError(f"Invalid cursor {cursor!r}.")
    return page


def fetch_breadth(page: int, per_page: int) -> int:
    return min(MAX_FETCH, per_page * max(3, page + 1))


def _person(node: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not node or not node.get("login"):
        return None
    return {"login": str(node["login"]), "name": node.get("name")}


def _actor(person: Optional[Dict[str, Any]]) -> Optional[Actor]:
    if person is None:
        return None
    return Actor(login=person["login"], name=person.get("name"))


def map_commit(item: Dict[str, Any]) -> Optional[ActivityItem]:
    """Map a REST commit search hit to a ``commit`` item."""
    commit = item.get("commit") or {}
    actor = _actor(_person(item.get("author")))
    occurred_at = dig(commit, ("committer", "date")) or dig(commit, ("author", "date"))
    sha = item.get("sha")
    if actor is None or not occurred_at or not sha:
        return None
    if actor.name is None:
        actor.name = dig(commit, ("author", "name"))

    message = str(commit.get("message") or "")
    return ActivityItem(
        id=f"commit:{sha}",
        type="commit",
        occurredAt=str(occurred_at),
        repo=str(dig(item, ("repository", "full_name")) or ""),
        actor=actor,
        data={
            "sha": sha,
            "message": message.splitlines()[0] if message else "",
            "url": item.get("html_url"),
            "commitCount": 1,
            "branch": None,
        },
    )


def map_pull_request(node: Dict[str, Any], wanted: Set[str]) -> List[ActivityItem]:
    """Map one pull request search hit to its opened/closed/merged/review items."""
    if not node or node.get("number") is None:
        return []

    repo = str(dig(node, ("repository", "nameWithOwner")) or "")
    pr_id = f"{repo}#{node['number']}"
    author = _person(node.get("author"))
    base = {"prNumber": node["number"], "prTitle": node.get("title"), "prUrl": node.get("url"), "author": author}
    items: List[ActivityItem] = []

    def _add(item_id: str, item_type: str, occurred_at: Optional[str], actor: Optional[Actor], data: Dict[str, Any]) -> None:
        if item_type in wanted and actor is not None and occurred_at:
            items.append(ActivityItem(id=item_id, type=item_type, occurredAt=occurred_at, repo=repo, actor=actor, data=data))

    _add(f"open:{pr_id}", "pr_opened", node.get("createdAt"), _actor(author), dict(base))

    merged_at = node.get("mergedAt")
    closed_at = node.get("closedAt")
    if merged_at:
        merged_by = _person(node.get("mergedBy"))
        _add(
            f"merge:{pr_id}:{merged_at}",
            "pr_merged",
            merged_at,
            _actor(merged_by or author),
            {**base, "mergedBy": merged_by},
        )
    elif closed_at:
        closers = dig(node, ("timelineItems", "nodes")) or []
        closed_by = _person((closers[-1] or {}).get("actor")) if closers else None
        _add(
            f"close:{pr_id}:{closed_at}",
            "pr_closed",
            closed_at,
            _actor(closed_by or author),
            {**base, "closedBy": closed_by},
        )

    for review in dig(node, ("reviews", "nodes")) or []:
        if not review or review.get("databaseId") is None:
            continue
        _add(
            f"review:{review['databaseId']}",
            "review",
            review.get("submittedAt"),
            _actor(_person(review.get("author"))),
            {**base, "state": review.get("state")},
        )

    return items


def _logins(item: ActivityItem) -> List[str]:
    logins = [item.actor.login]
    for key in ("author", "mergedBy", "closedBy"):
        person = item.data.get(key)
        if isinstance(person, dict) and person.get("login"):
            logins.append(person["login"])
    return logins


def _names(item: ActivityItem) -> List[str]:
    names = [item.actor.name] if item.actor.name else []
    for key in ("author", "mergedBy", "closedBy"):
        person = item.data.get(key)
        if isinstance(person, dict) and person.get("name"):
            names.append(person["name"])
    return names


def matches_filters(
    item: ActivityItem,
    repo: Optional[str] = None,
    username: Optional[str] = None,
    fullname: Optional[str] = None,
) -> bool:
    """Case-insensitive substring filters on repository, logins and display names."""
    if repo and repo.lower() not in item.repo.lower():
        return False
    if username and not any(username.lower() in login.lower() for login in _logins(item)):
        return False
    if fullname and not any(fullname.lower() in name.lower() for name in _names(item)):
        return False
    return True


def _fetch_items(
    client: GitHubClient,
    org: str,
    wanted: Set[str],
    cutoff: datetime,
    breadth: int,
) -> Tuple[List[ActivityItem], bool]:
    """Fetch raw items from the needed sources; also report upstream truncation."""
    items: List[ActivityItem] = []
    truncated = False

    if "commit" in wanted:
        hits = client.search_commits(f"org:{org} committer-date:>={cutoff.date().isoformat()}", breadth)
        truncated = truncated or len(hits) >= breadth
        items.extend(item for item in (map_commit(hit) for hit in hits) if item is not None)

    if wanted & PR_ACTIVITY_TYPES:
        search = f"org:{org} is:pr updated:>={format_timestamp(cutoff)} sort:updated-desc"
        data = client.run_query(PR_SEARCH_QUERY, {"q": search, "first": breadth})
        nodes = dig(data, ("search", "nodes")) or []
        truncated = truncated or len(nodes) >= breadth
        for node in nodes:
            items.extend(map_pull_request(node, wanted))

    return items, truncated


def build_activity_page(
    client: GitHubClient,
    org: str,
    types: Optional[Iterable[str]] = None,
    repo: Optional[str] = None,
    username: Optional[str] = None,
    fullname: Optional[str] = None,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None,
    now: Optional[datetime] = None,
    max_age_days: int = 90,
) -> ActivityPage:
    """Assemble one page of the organization activity feed.

    An empty page with a non-null ``nextCursor`` means everything on this page
    was filtered out but more data may follow; a null cursor is the end of
    the feed.

    Raises:
        ValidationError: On an invalid type, cursor or page size.
        ApiError: If an upstream search fails.
    """
    wanted = normalize_types(types)
    page = parse_cursor(cursor)
    per_page = DEFAULT_PAGE_SIZE if page_size is None else page_size
    if not 1 <= per_page <= MAX_FETCH:
        raise ValidationError(f"Invalid page size {page_size!r}: expected 1-{MAX_FETCH}.")

    cutoff = (now or utc_now()) - timedelta(days=max_age_days)
    breadth = fetch_breadth(page, per_page)
    raw_items, truncated = _fetch_items(client, org, wanted, cutoff, breadth)

    seen: Set[str] = set()
    filtered: List[Tuple[datetime, ActivityItem]] = []
    for item in raw_items:
        occurred_at = parse_timestamp(item.occurredAt)
        if occurred_at is None or occurred_at < cutoff or item.id in seen:
            continue
        seen.add(item.id)
        if matches_filters(item, repo=repo, username=username, fullname=fullname):
            filtered.append((occurred_at, item))

    filtered.sort(key=lambda entry: entry[1].id)
    filtered.sort(key=lambda entry: entry[0], reverse=True)

    start = (page - 1) * per_page
    end = page * per_page
    page_items = [item for _, item in filtered[start:end]]

    # A later page fetches wider until the breadth cap is reached.
    more_upstream = truncated and breadth < MAX_FETCH
    next_cursor = str(page + 1) if len(filtered) > end or more_upstream else None

    logger.info(
        "Built activity page",
        extra={
            "org": org,
            "page": page,
            "breadth": breadth,
            "raw_items": len(raw_items),
            "filtered_items": len(filtered),
            "returned": len(page_items),
            "next_cursor": next_cursor,
        },
    )
    return ActivityPage(items=page_items, nextCursor=next_cursor)

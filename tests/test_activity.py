"""Tests for the activity feed assembler."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prdash.activity import build_activity_page, fetch_breadth, map_pull_request
from prdash.errors import ValidationError
from prdash.windows import parse_timestamp

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _ago(**kwargs) -> str:
    return (NOW - timedelta(**kwargs)).isoformat().replace("+00:00", "Z")


def _person(login, name=None):
    return {"login": login, "name": name}


def _pr(number, created, merged=None, closed=None, merged_by=None, closer=None, reviews=(), repo="acme/core", author="alice"):
    return {
        "number": number,
        "title": f"PR {number}",
        "url": f"https://github.com/{repo}/pull/{number}",
        "createdAt": created,
        "updatedAt": merged or closed or created,
        "closedAt": closed or merged,
        "mergedAt": merged,
        "author": _person(author, author.title()),
        "mergedBy": merged_by,
        "repository": {"nameWithOwner": repo},
        "reviews": {"nodes": list(reviews)},
        "timelineItems": {"nodes": [{"actor": closer}] if closer else []},
    }


def _commit(sha, date, login="carol", repo="acme/web"):
    return {
        "sha": sha,
        "html_url": f"https://github.com/{repo}/commit/{sha}",
        "author": {"login": login} if login else None,
        "repository": {"full_name": repo},
        "commit": {
            "message": f"Fix {sha}\n\nDetails",
            "author": {"name": "Carol C", "date": date},
            "committer": {"date": date},
        },
    }


def _client(pr_nodes=(), commits=()) -> Mock:
    """Fake gateway returning at most ``first``/``per_page`` items like the real searches."""
    client = Mock()
    client.run_query.side_effect = lambda query, variables: {
        "search": {"nodes": list(pr_nodes)[: variables["first"]]}
    }
    client.search_commits.side_effect = lambda query, per_page: list(commits)[:per_page]
    return client


def test_items_are_merged_and_sorted_newest_first():
    """Verify commit and PR events are combined in strict reverse-chronological order."""
    pr_nodes = [
        _pr(1, _ago(hours=5), merged=_ago(hours=1), merged_by=_person("bob", "Bob B"),
            reviews=[{"databaseId": 11, "state": "APPROVED", "submittedAt": _ago(hours=2), "author": _person("dave")}]),
    ]
    client = _client(pr_nodes, commits=[_commit("abc", _ago(hours=3))])

    page = build_activity_page(client, "acme", now=NOW)

    assert [item.type for item in page.items] == ["pr_merged", "review", "commit", "pr_opened"]
    assert [item.id for item in page.items] == [
        f"merge:acme/core#1:{_ago(hours=1)}",
        "review:11",
        "commit:abc",
        "open:acme/core#1",
    ]
    assert page.items[0].actor.login == "bob"
    assert page.items[2].data["message"] == "Fix abc"
    assert page.nextCursor is None


def test_type_filter_skips_unneeded_sources():
    """Verify commit-only feeds skip the PR search and PR-only feeds skip commit search."""
    client = _client([_pr(1, _ago(hours=1))], commits=[_commit("abc", _ago(hours=2))])

    commits_only = build_activity_page(client, "acme", types=["commit"], now=NOW)
    client.run_query.assert_not_called()
    assert [item.type for item in commits_only.items] == ["commit"]

    client = _client([_pr(1, _ago(hours=1))], commits=[_commit("abc", _ago(hours=2))])
    merges = build_activity_page(client, "acme", types=["merge", "pr_opened"], now=NOW)
    client.search_commits.assert_not_called()
    assert [item.type for item in merges.items] == ["pr_opened"]


def test_closed_without_merge_uses_closer_as_actor():
    """Verify close events credit the closing actor and keep the author in the payload."""
    node = _pr(2, _ago(days=2), closed=_ago(days=1), closer=_person("erin", "Erin E"))

    items = map_pull_request(node, {"pr_closed"})

    assert len(items) == 1
    assert items[0].id == f"close:acme/core#2:{_ago(days=1)}"
    assert items[0].actor.login == "erin"
    assert items[0].data["author"]["login"] == "alice"


def test_username_filter_checks_author_and_merger():
    """Verify username filtering matches any actor-like login on the item."""
    node = _pr(3, _ago(hours=5), merged=_ago(hours=1), merged_by=_person("bob", "Bob B"))
    client = _client([node])

    by_author = build_activity_page(client, "acme", types=["pr_merged"], username="ALI", now=NOW)
    by_merger = build_activity_page(client, "acme", types=["pr_merged"], username="bo", now=NOW)
    nobody = build_activity_page(client, "acme", types=["pr_merged"], username="zed", now=NOW)

    assert len(by_author.items) == 1
    assert len(by_merger.items) == 1
    assert nobody.items == []


def test_fullname_and_repo_filters_are_case_insensitive():
    """Verify display-name and repository substring filters ignore case."""
    client = _client(
        [_pr(1, _ago(hours=1), repo="acme/core"), _pr(2, _ago(hours=2), repo="acme/web", author="bob")]
    )

    page = build_activity_page(client, "acme", repo="WEB", fullname="bO", now=NOW)

    assert [item.id for item in page.items] == ["open:acme/web#2"]


def test_items_without_actor_or_older_than_max_age_are_dropped():
    """Verify unresolvable actors and items beyond the max-age window are discarded."""
    client = _client(
        [_pr(1, _ago(days=100)), _pr(2, _ago(days=1))],
        commits=[_commit("ghost", _ago(hours=1), login=None), _commit("old", _ago(days=91))],
    )

    page = build_activity_page(client, "acme", now=NOW)

    assert [item.id for item in page.items] == ["open:acme/core#2"]


def test_concatenated_pages_are_unique_and_non_increasing():
    """Verify walking every page yields unique ids in non-increasing time order."""
    nodes = [_pr(i, _ago(hours=i)) for i in range(1, 46)]
    client = _client(nodes)

    items = []
    cursor = None
    pages = 0
    while True:
        page = build_activity_page(client, "acme", types=["pr_opened"], cursor=cursor, page_size=20, now=NOW)
        items.extend(page.items)
        pages += 1
        cursor = page.nextCursor
        if cursor is None:
            break

    assert pages == 3
    assert len(items) == 45
    assert len({item.id for item in items}) == 45
    times = [parse_timestamp(item.occurredAt) for item in items]
    assert all(earlier >= later for earlier, later in zip(times, times[1:]))


def test_filtered_out_page_with_more_upstream_keeps_cursor():
    """Verify an empty filtered page still returns a cursor when upstream was truncated."""
    nodes = [_pr(i, _ago(hours=i)) for i in range(1, 200)]
    client = _client(nodes)

    page = build_activity_page(client, "acme", types=["pr_opened"], username="nobody", page_size=20, now=NOW)

    assert page.items == []
    assert page.nextCursor == "2"


def test_exhausted_window_returns_null_cursor():
    """Verify an empty page returns a null cursor when the max-age window is exhausted."""
    client = _client([_pr(i, _ago(days=95 + i)) for i in range(5)])

    page = build_activity_page(client, "acme", types=["pr_opened"], now=NOW)

    assert page.items == []
    assert page.nextCursor is None


def test_page_beyond_available_data_is_empty_not_error():
    """Verify requesting a page past the end yields no items and a null cursor."""
    client = _client([_pr(1, _ago(hours=1))])

    page = build_activity_page(client, "acme", cursor="9", now=NOW)

    assert page.items == []
    assert page.nextCursor is None


def test_fetch_breadth_grows_with_page_and_is_capped():
    """Verify over-fetch breadth is perPage * max(3, page + 1) capped at 100."""
    assert fetch_breadth(1, 20) == 60
    assert fetch_breadth(3, 20) == 80
    assert fetch_breadth(10, 20) == 100
    assert fetch_breadth(1, 5) == 15


def test_invalid_cursor_type_or_page_size_raise_validation_error():
    """Verify malformed cursors, types and page sizes are rejected."""
    client = _client()

    with pytest.raises(ValidationError):
        build_activity_page(client, "acme", cursor="abc", now=NOW)
    with pytest.raises(ValidationError):
        build_activity_page(client, "acme", cursor="0", now=NOW)
    with pytest.raises(ValidationError):
        build_activity_page(client, "acme", types=["deploy"], now=NOW)
    with pytest.raises(ValidationError):
        build_activity_page(client, "acme", page_size=0, now=NOW)
